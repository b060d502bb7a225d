"""Per-user memory settings, created with defaults on first access."""

from __future__ import annotations

import logging
import time

from src.chatmemory.memory.errors import StorageError
from src.chatmemory.memory.models import MemorySettings
from src.chatmemory.memory.storage.base import (
    DocumentStore,
    SETTINGS,
    SHORT_TERM,
    SEMANTIC,
    EPISODIC,
)

logger = logging.getLogger(__name__)

# Fields callers may not patch
READ_ONLY_FIELDS = frozenset({"user_id", "created_at", "updated_at"})

BOOL_FIELDS = frozenset({
    "memory_enabled",
    "short_term_memory_enabled",
    "semantic_memory_enabled",
    "episodic_memory_enabled",
    "allow_cross_conversation_memory",
    "allow_model_provider_sharing",
    "adaptive_model_selection",
})

# field -> (minimum, maximum or None)
INT_RANGES = {
    "max_semantic_memories": (1, None),
    "max_episodic_memories": (1, None),
    "data_retention_days": (0, None),
}
FLOAT_RANGES = {
    "memory_importance_threshold": (0.0, 1.0),
}
CHOICES = {
    "export_format": frozenset({"json", "markdown", "csv"}),
    "preferred_model_provider": frozenset({"auto", "gemini", "gpt", "claude"}),
}


def validate_setting(key: str, value) -> None:
    """Raise ``ValueError`` unless ``value`` is acceptable for ``key``."""
    if key in BOOL_FIELDS:
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be a boolean, got {value!r}")
        return

    if key in INT_RANGES:
        low, high = INT_RANGES[key]
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{key} must be an integer, got {value!r}")
    elif key in FLOAT_RANGES:
        low, high = FLOAT_RANGES[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{key} must be a number, got {value!r}")
    elif key in CHOICES:
        if value not in CHOICES[key]:
            raise ValueError(f"{key} must be one of {sorted(CHOICES[key])}, got {value!r}")
        return
    else:
        return

    if value < low or (high is not None and value > high):
        bounds = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise ValueError(f"{key} must be {bounds}, got {value!r}")


class MemorySettingsRegistry:
    """Loads, patches and cascades deletion of ``MemorySettings``."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(self, user_id: str) -> MemorySettings:
        data = await self._store.get(SETTINGS, user_id)
        if data is not None:
            return MemorySettings.from_dict(data)

        settings = MemorySettings(user_id=user_id)
        try:
            await self._store.put(SETTINGS, {"id": user_id, **settings.to_dict()})
        except Exception as e:
            # Defaults are still usable even if they could not be persisted
            logger.warning("Could not persist default settings for %s: %s", user_id, e)
        return settings

    async def update(self, user_id: str, patch: dict) -> MemorySettings:
        """Apply ``patch`` to the user's settings.

        Raises:
            ValueError: if ``patch`` names an unknown or read-only field,
                or a value has the wrong type or is out of range
            StorageError: if the settings could not be saved
        """
        unknown = [k for k in patch if k not in MemorySettings.__dataclass_fields__ or k in READ_ONLY_FIELDS]
        if unknown:
            raise ValueError(f"Unknown or read-only settings fields: {', '.join(sorted(unknown))}")
        for key, value in patch.items():
            validate_setting(key, value)

        settings = await self.get(user_id)
        for key, value in patch.items():
            setattr(settings, key, value)
        settings.updated_at = time.time()

        try:
            await self._store.put(SETTINGS, {"id": user_id, **settings.to_dict()})
        except Exception as e:
            raise StorageError(f"Failed to update settings for {user_id}: {e}") from e

        logger.info("Updated memory settings for %s: %s", user_id, sorted(patch))
        return settings

    async def clear_all(self, user_id: str) -> dict[str, int]:
        """Delete every memory document and the settings of ``user_id``.

        Idempotent. Returns the number of documents removed per collection.
        """
        removed: dict[str, int] = {}
        try:
            for collection in (SHORT_TERM, SEMANTIC, EPISODIC):
                removed[collection] = await self._store.delete_where(collection, {"user_id": user_id})
            removed[SETTINGS] = int(await self._store.delete(SETTINGS, user_id))
        except Exception as e:
            raise StorageError(f"Failed to clear memories for {user_id}: {e}") from e

        logger.info("Cleared all memories for %s: %s", user_id, removed)
        return removed
