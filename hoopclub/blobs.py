"""Blob storage used for club logos."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Union

from .errors import ExternalCollaboratorError
from .storage import split_path

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Stores blobs as files below ``root`` and serves them from ``base_url``."""

    def __init__(self, root: Union[str, Path], base_url: str = "/uploads") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _file(self, path: str) -> Path:
        return self.root.joinpath(*split_path(path))

    def upload(self, path: str, data: bytes) -> None:
        target = self._file(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise ExternalCollaboratorError(f"Upload of {path} failed: {exc}") from exc
        logger.info("Stored blob %s (%d bytes)", path, len(data))

    def get_url(self, path: str) -> str:
        if not self._file(path).exists():
            raise ExternalCollaboratorError(f"Blob {path} does not exist")
        return f"{self.base_url}/{'/'.join(split_path(path))}"

    def read(self, path: str) -> bytes:
        try:
            return self._file(path).read_bytes()
        except OSError as exc:
            raise ExternalCollaboratorError(f"Blob {path} cannot be read: {exc}") from exc


def upload_with_retry(
    blobs: LocalBlobStore,
    path: str,
    data: bytes,
    *,
    attempts: int = 3,
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Upload ``data`` and return its URL, retrying with a fixed delay."""
    last_error: ExternalCollaboratorError = ExternalCollaboratorError(f"Upload of {path} was not attempted")
    for attempt in range(1, attempts + 1):
        try:
            blobs.upload(path, data)
            return blobs.get_url(path)
        except ExternalCollaboratorError as exc:
            last_error = exc
            if attempt < attempts:
                logger.warning("Upload of %s failed (attempt %d/%d), retrying in %.1fs", path, attempt, attempts, delay)
                sleep(delay)
    logger.error("Upload of %s failed after %d attempts", path, attempts)
    raise last_error
