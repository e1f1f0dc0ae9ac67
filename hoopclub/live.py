"""Live views: a store subscription that re-runs an aggregation on every snapshot."""
from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable, Generic, List, Optional, Type, TypeVar

from .errors import ValidationError
from .storage import RecordStore, decode_collection

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def collection(model_cls: Type[T]) -> Callable[[Any], List[T]]:
    return partial(decode_collection, model_cls)


class LiveView(Generic[R]):
    """Keeps ``result`` in sync with the data at ``path``.

    Each delivery is treated as a full replacement: the snapshot is decoded and
    ``aggregate`` recomputed from scratch. A malformed record leaves ``result``
    empty and exposes the :class:`ValidationError` through ``error``.
    """

    def __init__(
        self,
        store: RecordStore,
        path: str,
        decode: Callable[[Any], Any],
        aggregate: Callable[[Any], R],
        *,
        on_update: Optional[Callable[["LiveView[R]"], None]] = None,
    ) -> None:
        self.path = path
        self.result: Optional[R] = None
        self.error: Optional[ValidationError] = None
        self.deliveries = 0
        self._decode = decode
        self._aggregate = aggregate
        self._on_update = on_update
        self._subscription = store.subscribe(path, self._on_snapshot)

    def _on_snapshot(self, exists: bool, value: Any) -> None:
        try:
            self.result = self._aggregate(self._decode(value if exists else None))
            self.error = None
        except ValidationError as exc:
            logger.warning("Live view on %s received malformed data: %s", self.path, exc)
            self.result = None
            self.error = exc
        self.deliveries += 1
        if self._on_update is not None:
            self._on_update(self)

    @property
    def closed(self) -> bool:
        return not self._subscription.active

    def close(self) -> None:
        self._subscription.unsubscribe()

    def __enter__(self) -> "LiveView[R]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
