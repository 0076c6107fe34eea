"""
Durable Discord id -> profile id mapping.

Discord ids are 64-bit snowflakes; characters are stored under small
integer profile ids. The mapping lives in one JSON file that is rewritten
in full on every new entry:

    {"lastIndex": 2, "entries": {"1234...": 1, "5678...": 2}}

Read, decide and write happen under one asyncio.Lock, so two first-time
logins of the same Discord user racing each other get the same profile id.
Disk IO runs in a worker thread so the event loop keeps ticking.

Usage:
    store = IdentityStore(Path("profiles.json"))
    profile_id = await store.resolve_profile_id("123456789012345678")
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from core.errors import MalformedPayloadError

logger = logging.getLogger(__name__)


class IdentityMapping(BaseModel):
    """On-disk layout. A legacy ``users`` key is read as ``entries``."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    last_index: int = Field(0, validation_alias=AliasChoices("lastIndex", "last_index"))
    entries: dict[str, int] = Field(
        default_factory=dict, validation_alias=AliasChoices("entries", "users"),
    )

    @model_validator(mode='after')
    def index_covers_entries(self):
        """lastIndex never trails an assigned id, even when the key is missing."""
        self.last_index = max(self.last_index, max(self.entries.values(), default=0))
        return self

    def to_json(self) -> str:
        return json.dumps({"lastIndex": self.last_index, "entries": self.entries}, indent=2)


class IdentityStore:

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def resolve_profile_id(self, provider_user_id: str) -> int:
        """
        Return the profile id for a Discord user, assigning one on first sight.

        A new entry is on disk before this returns. Safe to retry: a second
        call finds the entry already assigned.

        Raises:
            ValueError: empty provider id
            MalformedPayloadError: the mapping file is corrupt
        """
        key = (provider_user_id or "").strip()
        if not key:
            raise ValueError("provider_user_id must not be empty")

        async with self._lock:
            mapping = await asyncio.to_thread(self._load, True)

            existing = mapping.entries.get(key)
            if existing is not None:
                logger.debug(f"Using stored profileId {existing} for Discord user {key}",
                             extra={'provider_user_id': key, 'profile_id': existing})
                return existing

            mapping.last_index += 1
            profile_id = mapping.last_index
            mapping.entries[key] = profile_id
            await asyncio.to_thread(self._save, mapping)

        logger.info(f"Assigned new profileId {profile_id} for Discord user {key}",
                    extra={'provider_user_id': key, 'profile_id': profile_id})
        return profile_id

    async def lookup(self, provider_user_id: str) -> Optional[int]:
        """Read-only lookup; never creates the file."""
        mapping = await asyncio.to_thread(self._load, False)
        return mapping.entries.get((provider_user_id or "").strip())

    # =========================================================================
    # Disk IO (worker thread)
    # =========================================================================

    def _load(self, create: bool) -> IdentityMapping:
        if not self.path.exists():
            mapping = IdentityMapping()
            if create:
                self._save(mapping)
            return mapping

        try:
            raw = self.path.read_text(encoding="utf-8")
            return IdentityMapping.model_validate(json.loads(raw) if raw.strip() else {})
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            raise MalformedPayloadError(f"Identity mapping {self.path} is corrupt: {e}") from e

    def _save(self, mapping: IdentityMapping) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(mapping.to_json(), encoding="utf-8")
        os.replace(tmp, self.path)
