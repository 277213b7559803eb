"""
xnft — Harness configuration

Endpoints and ids of the ledgers under test, plus the polling windows
used by the correlator.  Values come from keyword arguments or, through
``HarnessConfig.from_env()``, from the environment:

    RELAY_URL, RELAY_QUARTZ_URL, RELAY_QUARTZ_ID,
    RELAY_KARURA_URL, RELAY_KARURA_ID,
    XNFT_MAX_BLOCKS, XNFT_DELIVERY_MAX_BLOCKS, XNFT_BLOCK_TIME
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

from .correlator import DEFAULT_MAX_BLOCKS, DELIVERY_MAX_BLOCKS

DEFAULT_QUARTZ_ID = 2095
DEFAULT_KARURA_ID = 2000

_ENV_KEYS = {
    "relay_url": ("RELAY_URL", str),
    "quartz_url": ("RELAY_QUARTZ_URL", str),
    "quartz_id": ("RELAY_QUARTZ_ID", int),
    "karura_url": ("RELAY_KARURA_URL", str),
    "karura_id": ("RELAY_KARURA_ID", int),
    "max_blocks": ("XNFT_MAX_BLOCKS", int),
    "delivery_max_blocks": ("XNFT_DELIVERY_MAX_BLOCKS", int),
    "block_time": ("XNFT_BLOCK_TIME", float),
}

_FIELDS = frozenset(_ENV_KEYS) | {"session_length", "delivery_delay"}


class HarnessConfig:
    """Configuration for a bridge harness run."""

    def __init__(self, **kwargs):
        unknown = set(kwargs) - _FIELDS
        if unknown:
            raise TypeError(f"unexpected config key(s): {', '.join(sorted(unknown))}")
        self.relay_url: Optional[str] = kwargs.get("relay_url", None)
        self.quartz_url: Optional[str] = kwargs.get("quartz_url", None)
        self.quartz_id: int = kwargs.get("quartz_id", DEFAULT_QUARTZ_ID)
        self.karura_url: Optional[str] = kwargs.get("karura_url", None)
        self.karura_id: int = kwargs.get("karura_id", DEFAULT_KARURA_ID)
        self.max_blocks: int = kwargs.get("max_blocks", DEFAULT_MAX_BLOCKS)
        self.delivery_max_blocks: int = kwargs.get("delivery_max_blocks", DELIVERY_MAX_BLOCKS)
        # Devnet knobs
        self.block_time: float = kwargs.get("block_time", 0.01)
        self.session_length: int = kwargs.get("session_length", 3)
        self.delivery_delay: int = kwargs.get("delivery_delay", 2)

        if self.max_blocks < 1 or self.delivery_max_blocks < 1:
            raise ValueError("block windows must be at least 1")
        if self.quartz_id == self.karura_id:
            raise ValueError(f"parachain ids must differ, both are {self.quartz_id}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "HarnessConfig":
        """Build a config from environment variables; *overrides* win."""
        environ = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}
        for attr, (key, cast) in _ENV_KEYS.items():
            raw = environ.get(key)
            if raw is None or raw == "":
                continue
            try:
                kwargs[attr] = cast(raw)
            except ValueError:
                raise ValueError(f"{key} must be a {cast.__name__}, got {raw!r}")
        kwargs.update(overrides)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))
