"""Process-wide context: store, identity, blobs, settings and live views."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

from .blobs import LocalBlobStore
from .config import Config
from .errors import ValidationError
from .identity import IdentityProvider
from .live import LiveView
from .services import ClubService
from .storage import RecordStore
from .translations import LANGUAGES

logger = logging.getLogger(__name__)

THEMES = ("light", "dark")


@dataclass
class Settings:
    theme: str = "light"
    language: str = "en"

    def validate(self) -> None:
        if self.theme not in THEMES:
            raise ValidationError(f"theme must be one of {', '.join(THEMES)}", field="theme")
        if self.language not in LANGUAGES:
            raise ValidationError(f"language must be one of {', '.join(LANGUAGES)}", field="language")

    def to_dict(self) -> dict:
        return {"theme": self.theme, "language": self.language}


class ClubContext:
    """Owns the collaborators shared by every request or CLI command.

    Live views opened through :meth:`watch` are tracked here and released by
    :meth:`close`, so shutting the context down never leaks a subscription.
    """

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityProvider,
        blobs: LocalBlobStore,
        *,
        config: Any = Config,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.blobs = blobs
        self.config = config
        self.clock = clock
        self.settings = Settings(
            theme=getattr(config, "DEFAULT_THEME", "light"),
            language=getattr(config, "DEFAULT_LANGUAGE", "en"),
        )
        self._views: List[LiveView] = []

    @classmethod
    def from_config(cls, config: Any = Config, *, clock: Optional[Callable[[], datetime]] = None) -> "ClubContext":
        store = RecordStore(config.DATA_FILE)
        blobs = LocalBlobStore(config.UPLOAD_FOLDER, config.UPLOAD_URL)
        logger.info("Record store at %s", config.DATA_FILE or "<memory>")
        return cls(store, IdentityProvider(store), blobs, config=config, clock=clock)

    def service_for(self, owner_id: str) -> ClubService:
        return ClubService(
            self.store,
            owner_id,
            blobs=self.blobs,
            clock=self.clock,
            retry_attempts=getattr(self.config, "BLOB_RETRY_ATTEMPTS", 3),
            retry_delay=getattr(self.config, "BLOB_RETRY_DELAY", 1.0),
        )

    def update_settings(self, *, theme: Optional[str] = None, language: Optional[str] = None) -> Settings:
        candidate = Settings(theme=theme or self.settings.theme, language=language or self.settings.language)
        candidate.validate()
        self.settings = candidate
        return candidate

    def watch(self, view: LiveView) -> LiveView:
        """Track ``view`` so :meth:`close` releases it."""
        self._views.append(view)
        return view

    def release(self, view: LiveView) -> None:
        view.close()
        if view in self._views:
            self._views.remove(view)

    @property
    def open_views(self) -> int:
        return sum(1 for view in self._views if not view.closed)

    def close(self) -> None:
        for view in list(self._views):
            view.close()
        self._views.clear()
        self.identity.sign_out()
        logger.debug("Club context closed")

    def __enter__(self) -> "ClubContext":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
