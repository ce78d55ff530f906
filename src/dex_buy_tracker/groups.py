"""Per-group alert configuration.

Groups are loaded from a JSON file keyed by destination group id::

    {
      "-1001234567890": {
        "chain": "bsc",
        "token_address": "0x...",
        "pair_address": "0x...",
        "min_buy_usd": 50,
        "dollars_per_emoji": 50,
        "emoji": "🟢"
      }
    }

The store hands out immutable snapshots; the resync loop replaces a group's
derived pool set through ``set_pool_addresses``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_DOLLARS_PER_EMOJI = Decimal("50")
DEFAULT_EMOJI = "🟢"


class GroupConfigError(Exception):
    """Raised when group configuration is missing or invalid."""


class GroupConfig(BaseModel):
    """Alert configuration of one destination group."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    chain: str
    token_address: str
    pair_address: str
    all_pair_addresses: tuple[str, ...] = ()
    min_buy_usd: Decimal = Field(default=Decimal("0"), ge=0)
    max_buy_usd: Decimal | None = Field(default=None, ge=0)
    dollars_per_emoji: Decimal = DEFAULT_DOLLARS_PER_EMOJI
    emoji: str = DEFAULT_EMOJI
    animation_file_id: str | None = None
    image_file_id: str | None = None
    image_url: str | None = None
    tg_group_link: str | None = None

    @field_validator("chain")
    @classmethod
    def normalize_chain(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("chain must not be empty")
        return v

    @field_validator("token_address", "pair_address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        v = v.strip().lower()
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError(f"Invalid EVM address: {v!r}")
        return v

    @field_validator("all_pair_addresses", mode="before")
    @classmethod
    def normalize_pool_set(cls, v: Any) -> tuple[str, ...]:
        if v is None:
            return ()
        return tuple(str(a).strip().lower() for a in v)

    @field_validator("emoji")
    @classmethod
    def default_emoji(cls, v: str) -> str:
        return v.strip() or DEFAULT_EMOJI

    @model_validator(mode="before")
    @classmethod
    def include_main_pair(cls, data: Any) -> Any:
        # The pool set always contains the main pair.
        if isinstance(data, dict):
            pair = str(data.get("pair_address") or "").strip().lower()
            pools = [str(a).strip().lower() for a in data.get("all_pair_addresses") or ()]
            if pair and pair not in pools:
                pools.insert(0, pair)
            data = {**data, "all_pair_addresses": _dedupe(pools)}
        return data

    @model_validator(mode="after")
    def check_bounds(self) -> GroupConfig:
        if self.max_buy_usd is not None and self.max_buy_usd < self.min_buy_usd:
            raise ValueError("max_buy_usd must be >= min_buy_usd")
        return self

    @property
    def has_only_main_pair(self) -> bool:
        return self.all_pair_addresses == (self.pair_address,)

    def watches(self, chain: str, pool_address: str) -> bool:
        return chain.lower() == self.chain and pool_address.lower() in self.all_pair_addresses


def _dedupe(addresses: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for address in addresses:
        seen.setdefault(address.lower(), None)
    return tuple(seen)


class GroupConfigStore:
    """In-memory group configuration keyed by group id.

    Example:
        ```python
        store = GroupConfigStore.load(Path("groups.json"))
        for group_id, config in store.items():
            print(group_id, config.chain, config.pair_address)
        ```
    """

    def __init__(self, groups: dict[str, GroupConfig] | None = None) -> None:
        self._groups: dict[str, GroupConfig] = dict(groups or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupConfigStore:
        """Build a store from a mapping of group id to raw configuration.

        Raises:
            GroupConfigError: If any group fails validation.
        """
        groups: dict[str, GroupConfig] = {}
        for group_id, raw in data.items():
            try:
                groups[str(group_id)] = GroupConfig.model_validate(raw)
            except ValidationError as e:
                raise GroupConfigError(f"Invalid configuration for group {group_id}: {e}") from e
        return cls(groups)

    @classmethod
    def load(cls, path: Path) -> GroupConfigStore:
        """Load groups from a JSON file.

        Raises:
            GroupConfigError: If the file is missing, unreadable or invalid.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise GroupConfigError(f"Groups file not found: {path}") from e
        except (OSError, ValueError) as e:
            raise GroupConfigError(f"Failed to read groups file {path}: {e}") from e

        if not isinstance(data, dict):
            raise GroupConfigError(f"Groups file {path} must contain a JSON object")

        store = cls.from_dict(data)
        logger.info("Loaded %d group(s) from %s", len(store), path)
        return store

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._groups

    def get(self, group_id: str) -> GroupConfig | None:
        return self._groups.get(group_id)

    def items(self) -> list[tuple[str, GroupConfig]]:
        """Snapshot of (group id, config) pairs."""
        return list(self._groups.items())

    def chains(self) -> set[str]:
        return {config.chain for config in self._groups.values()}

    def set_pool_addresses(self, group_id: str, addresses: Iterable[str]) -> GroupConfig:
        """Replace a group's derived pool set; the first address becomes the main pair.

        Raises:
            KeyError: If the group is unknown.
            ValueError: If ``addresses`` is empty.
        """
        current = self._groups[group_id]
        pools = _dedupe(addresses)
        if not pools:
            raise ValueError("Pool set must not be empty")
        updated = current.model_copy(update={"pair_address": pools[0], "all_pair_addresses": pools})
        self._groups[group_id] = updated
        return updated

    def groups_for_pool(self, chain: str, pool_address: str) -> list[tuple[str, GroupConfig]]:
        """Groups whose pool set contains the given pool."""
        return [(gid, cfg) for gid, cfg in self._groups.items() if cfg.watches(chain, pool_address)]
