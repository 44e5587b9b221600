"""Storage for feature flags and related versioned data."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional


@dataclass
class DeletedItem:
    """Placeholder stored in place of a removed item."""

    key: str
    version: int
    deleted: bool = True


def _make_generic_deleted(key: str, version: int) -> DeletedItem:
    return DeletedItem(key, version)


@dataclass(frozen=True)
class VersionedDataKind:
    """A named collection of versioned items, such as feature flags.

    Items stored under a kind have ``key``, ``version`` and ``deleted`` attributes.
    """

    namespace: str
    deleted_item_factory: Callable[[str, int], Any] = _make_generic_deleted

    def __str__(self) -> str:
        return self.namespace

    def make_deleted_item(self, key: str, version: int) -> Any:
        """Create the placeholder that marks ``key`` as deleted at ``version``."""
        return self.deleted_item_factory(key, version)


class InMemoryFeatureStore:
    """Thread-safe feature store that keeps everything in memory."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._data: dict[VersionedDataKind, dict[str, Any]] = {}
        self._initialized = False
        self._lock = threading.RLock()
        self._logger = logger or logging.getLogger("flagcore.feature_store")

    def get(self, kind: VersionedDataKind, key: str) -> Any:
        """Return the item, or ``None`` if it is missing or deleted."""
        with self._lock:
            item = self._data.get(kind, {}).get(key)
        if item is None:
            self._logger.warning('Key: %s not found in "%s".', key, kind)
            return None
        if item.deleted:
            self._logger.warning('Attempted to get deleted item in "%s". Key: %s', kind, key)
            return None
        return item

    def all(self, kind: VersionedDataKind) -> dict[str, Any]:
        """Return all items of ``kind`` that are not deleted."""
        with self._lock:
            items = self._data.get(kind, {})
            return {key: item for key, item in items.items() if not item.deleted}

    def init(self, all_data: Mapping[VersionedDataKind, Mapping[str, Any]]) -> None:
        """Replace the whole contents of the store."""
        with self._lock:
            self._data = {kind: dict(items) for kind, items in all_data.items()}
            self._initialized = True

    def delete(self, kind: VersionedDataKind, key: str, version: int) -> None:
        """Mark ``key`` deleted unless the stored item has an equal or newer version."""
        with self._lock:
            items = self._data.setdefault(kind, {})
            old = items.get(key)
            if old is None or old.version < version:
                items[key] = kind.make_deleted_item(key, version)

    def upsert(self, kind: VersionedDataKind, item: Any) -> None:
        """Store ``item`` unless the stored one has an equal or newer version."""
        with self._lock:
            items = self._data.setdefault(kind, {})
            old = items.get(item.key)
            if old is None or old.version < item.version:
                items[item.key] = item

    def initialized(self) -> bool:
        """True once ``init`` has been called."""
        with self._lock:
            return self._initialized