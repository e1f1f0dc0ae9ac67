"""Hierarchical record store and the decode step that guards it.

The store keeps one JSON tree, addressed by slash separated paths such as
``clubs/<owner>/payments``. It mirrors the operations of a realtime database:
append with a generated key, set, partial update, remove, read and subscribe.
Every subscriber receives a full snapshot of its path on subscription and after
each mutation that changes it.
"""
from __future__ import annotations

import copy
import json
import logging
import math
import os
import threading
import time
from dataclasses import fields
from datetime import date
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)
from uuid import uuid4

from .errors import ExternalCollaboratorError, ValidationError

logger = logging.getLogger(__name__)

DATA_FILE = Path("data/hoopclub.json")
FORBIDDEN_KEY_CHARS = set(".#$[]")
_NOTHING = object()

T = TypeVar("T")
Callback = Callable[[bool, Any], None]


def split_path(path: str) -> Tuple[str, ...]:
    """Return the segments of ``path`` after validating each of them."""
    parts = tuple(part for part in path.strip("/").split("/") if part != "")
    for part in parts:
        if FORBIDDEN_KEY_CHARS.intersection(part):
            raise ValueError(f"Invalid path segment {part!r} in {path!r}")
    return parts


def join_path(*parts: Any) -> str:
    return "/".join(str(part).strip("/") for part in parts if str(part).strip("/"))


_key_lock = threading.Lock()
_last_key_ms = 0
_key_sequence = 0


def generate_key() -> str:
    """Return a unique key that sorts in creation order, even within one millisecond."""
    global _last_key_ms, _key_sequence
    with _key_lock:
        stamp = time.time_ns() // 1_000_000
        if stamp <= _last_key_ms:
            stamp = _last_key_ms
            _key_sequence += 1
        else:
            _key_sequence = 0
        _last_key_ms = stamp
        sequence = _key_sequence
    return f"{stamp:013d}{sequence:06d}{uuid4().hex[:6]}"


def now_ms() -> int:
    return int(time.time() * 1000)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (dict, list)) and not value)


def _overlaps(left: Tuple[str, ...], right: Tuple[str, ...]) -> bool:
    size = min(len(left), len(right))
    return left[:size] == right[:size]


class Subscription:
    """Handle returned by :meth:`RecordStore.subscribe`.

    Usable as a context manager so the listener is always released.
    """

    def __init__(self, store: "RecordStore", parts: Tuple[str, ...], callback: Callback) -> None:
        self._store = store
        self.parts = parts
        self.callback = callback
        self.active = True
        self._last: Any = None
        self._delivered = False
        self._delivering = False
        self._pending: Any = _NOTHING

    @property
    def path(self) -> str:
        return "/".join(self.parts)

    def deliver(self, value: Any) -> None:
        """Hand ``value`` to the callback unless it repeats the last delivery.

        A delivery triggered from inside the callback (a write-back) is queued
        and delivered once the callback returns, so only the latest snapshot
        is seen and the callback never nests.
        """
        if not self.active:
            return
        if self._delivering:
            self._pending = copy.deepcopy(value)
            return
        self._delivering = True
        try:
            while self.active:
                if not self._delivered or value != self._last:
                    self._last = copy.deepcopy(value)
                    self._delivered = True
                    self.callback(not _is_empty(value), copy.deepcopy(value))
                if self._pending is _NOTHING:
                    break
                value, self._pending = self._pending, _NOTHING
        finally:
            self._delivering = False
            self._pending = _NOTHING

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._store._detach(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class RecordStore:
    """JSON backed key-value tree. ``data_file=None`` keeps everything in memory."""

    def __init__(self, data_file: Union[str, os.PathLike, None] = DATA_FILE) -> None:
        self.data_file = Path(data_file) if data_file is not None else None
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []
        self._data: Dict[str, Any] = self._load()

    # Persistence ------------------------------------------------------
    def ensure_storage(self) -> None:
        """Create the storage file if it does not exist."""
        if self.data_file is None:
            return
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            if not self.data_file.exists():
                self.data_file.write_text("{}", encoding="utf-8")
        except OSError as exc:
            raise ExternalCollaboratorError(f"Cannot create record store at {self.data_file}: {exc}") from exc

    def _load(self) -> Dict[str, Any]:
        if self.data_file is None:
            return {}
        self.ensure_storage()
        try:
            data = json.loads(self.data_file.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            raise ExternalCollaboratorError(f"Cannot read record store {self.data_file}: {exc}") from exc
        if not isinstance(data, dict):
            raise ExternalCollaboratorError(f"Record store {self.data_file} does not hold an object")
        return data

    def _persist(self) -> None:
        if self.data_file is None:
            return
        self.ensure_storage()
        tmp_file = self.data_file.with_suffix(self.data_file.suffix + ".tmp")
        try:
            tmp_file.write_text(json.dumps(self._data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_file, self.data_file)
        except OSError as exc:
            raise ExternalCollaboratorError(f"Cannot write record store {self.data_file}: {exc}") from exc

    def reload(self) -> None:
        """Re-read the backing file and notify subscribers of external changes."""
        if self.data_file is None:
            return
        with self._lock:
            self._data = self._load()
            self._notify(())

    # Tree helpers -----------------------------------------------------
    def _read(self, parts: Tuple[str, ...]) -> Any:
        node: Any = self._data
        for part in parts:
            if not isinstance(node, dict):
                return None
            node = node.get(part)
            if node is None:
                return None
        return node

    def _write(self, parts: Tuple[str, ...], value: Any) -> None:
        if not parts:
            raise ValueError("Cannot replace the root of the record store")
        if _is_empty(value):
            self._delete(parts)
            return
        node = self._data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)

    def _delete(self, parts: Tuple[str, ...]) -> None:
        trail = [self._data]
        node: Any = self._data
        for part in parts[:-1]:
            node = node.get(part) if isinstance(node, dict) else None
            if not isinstance(node, dict):
                return
            trail.append(node)
        node.pop(parts[-1], None)
        for depth in range(len(parts) - 1, 0, -1):
            if trail[depth]:
                break
            trail[depth - 1].pop(parts[depth - 1], None)

    def _notify(self, parts: Tuple[str, ...]) -> None:
        for subscription in list(self._subscriptions):
            if _overlaps(subscription.parts, parts):
                subscription.deliver(self._read(subscription.parts))

    def _detach(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        logger.debug("Unsubscribed from %s", subscription.path)

    # Public operations ----------------------------------------------
    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._read(split_path(path)))

    def exists(self, path: str) -> bool:
        return not _is_empty(self.get(path))

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        with self._lock:
            self._write(parts, value)
            self._persist()
            self._notify(parts)

    def append(self, path: str, value: Any) -> str:
        """Store ``value`` under a freshly generated child key and return the key."""
        parts = split_path(path)
        key = generate_key()
        with self._lock:
            while self._read(parts + (key,)) is not None:
                key = generate_key()
            self._write(parts + (key,), value)
            self._persist()
            self._notify(parts + (key,))
        return key

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        """Merge ``partial`` into the object at ``path``; ``None`` values delete."""
        parts = split_path(path)
        if not isinstance(partial, dict):
            raise ValueError("update() expects a mapping of fields")
        with self._lock:
            for field_path, value in partial.items():
                self._write(parts + split_path(field_path), value)
            self._persist()
            self._notify(parts)

    def remove(self, path: str) -> None:
        parts = split_path(path)
        with self._lock:
            self._delete(parts)
            self._persist()
            self._notify(parts)

    def subscribe(self, path: str, callback: Callback) -> Subscription:
        """Deliver the value at ``path`` now and after every change to it."""
        parts = split_path(path)
        subscription = Subscription(self, parts, callback)
        with self._lock:
            self._subscriptions.append(subscription)
            logger.debug("Subscribed to %s", subscription.path)
            subscription.deliver(self._read(parts))
        return subscription

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


# Decoding ---------------------------------------------------------------
def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    if get_origin(annotation) is Union:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0], True
    return annotation, False


def _coerce(value: Any, annotation: Any, field_name: str, key: Optional[str]) -> Any:
    annotation, optional = _unwrap_optional(annotation)
    if value is None or (optional and value == ""):
        if optional:
            return None
        raise ValidationError(f"{field_name} is required", field=field_name, key=key)

    def fail(expected: str) -> ValidationError:
        return ValidationError(
            f"{field_name} must be {expected} (got {value!r})", field=field_name, key=key
        )

    if annotation is date:
        if not isinstance(value, str):
            raise fail("an ISO date")
        try:
            return date.fromisoformat(value[:10])
        except ValueError as exc:
            raise fail("an ISO date") from exc
    if annotation is bool:
        if not isinstance(value, bool):
            raise fail("a boolean")
        return value
    if annotation is int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise fail("an integer")
        if isinstance(value, float) and not value.is_integer():
            raise fail("an integer")
        return int(value)
    if annotation is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise fail("a number")
        return float(value)
    if annotation is str:
        if not isinstance(value, str):
            raise fail("text")
        return value
    origin = get_origin(annotation)
    if origin is set:
        if isinstance(value, dict):
            return {str(item) for item, flag in value.items() if flag}
        if isinstance(value, list):
            return {str(item) for item in value if item is not None}
        raise fail("a set of keys")
    if origin is dict:
        if not isinstance(value, dict):
            raise fail("an object")
        return copy.deepcopy(value)
    return value


def decode_record(model_cls: Type[T], payload: Any, key: Optional[str] = None) -> T:
    """Build ``model_cls`` from a camelCase snapshot, rejecting malformed data."""
    if not isinstance(payload, dict):
        raise ValidationError(f"{model_cls.__name__} {key or ''} is not an object".strip(), key=key)
    type_hints = get_type_hints(model_cls)
    kwargs: Dict[str, Any] = {}
    for model_field in fields(model_cls):  # type: ignore[arg-type]
        if model_field.name == "id":
            kwargs["id"] = key
            continue
        wire_name = camel_case(model_field.name)
        if wire_name not in payload:
            continue
        kwargs[model_field.name] = _coerce(
            payload[wire_name], type_hints[model_field.name], model_field.name, key
        )
    try:
        entity = model_cls(**kwargs)  # type: ignore[call-arg]
    except TypeError as exc:
        raise ValidationError(f"{model_cls.__name__} {key or ''} is missing required fields: {exc}", key=key) from exc
    validate = getattr(entity, "validate", None)
    if validate is not None:
        try:
            validate()
        except ValidationError as exc:
            exc.key = key
            raise
    return entity


def decode_collection(model_cls: Type[T], snapshot: Any) -> List[T]:
    """Decode a keyed collection; an absent snapshot is an empty collection."""
    if _is_empty(snapshot):
        return []
    if isinstance(snapshot, list):
        items: Iterable[Tuple[Optional[str], Any]] = (
            (str(index), item) for index, item in enumerate(snapshot) if item is not None
        )
    elif isinstance(snapshot, dict):
        items = snapshot.items()
    else:
        raise ValidationError(f"Expected a collection of {model_cls.__name__} records")
    records: List[T] = []
    for key, payload in items:
        try:
            records.append(decode_record(model_cls, payload, key))
        except ValidationError as exc:
            logger.warning("Rejected %s record %s: %s", model_cls.__name__, key, exc)
            raise
    return records


def encode_record(entity: Any) -> Dict[str, Any]:
    """Serialise a model to its camelCase wire form, without ``id`` or ``None`` fields."""
    payload: Dict[str, Any] = {}
    for model_field in fields(entity):
        if model_field.name == "id":
            continue
        value = getattr(entity, model_field.name)
        if value is None:
            continue
        if isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, set):
            value = {item: True for item in sorted(value)}
        else:
            value = copy.deepcopy(value)
        payload[camel_case(model_field.name)] = value
    return payload


def encode_fields(updates: Dict[str, Any]) -> Dict[str, Any]:
    """camelCase a partial update, keeping ``None`` so the store deletes the field."""
    payload: Dict[str, Any] = {}
    for name, value in updates.items():
        if isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, set):
            value = {item: True for item in sorted(value)} or None
        payload[camel_case(name)] = value
    return payload
