"""
xnft — Bridge Asset Registry / Derivative Resolver

Answers "what is the local representation, on ledger D, of token T that
lives on ledger S?" and registers foreign assets so that D is allowed to
mint such representations at all.

Resolution is two lookups against D's state:

  1. ``asset id -> derivative collection``  (miss: ``NoDerivativeCollection``)
  2. ``(collection, asset instance) -> local token`` (miss: ``NoDerivativeToken``)

Ledgers that model derivative lifecycles answer step 2 with a
``DerivativeStatus``; ``Active`` and ``Stashed`` both resolve to the same
local token, ``NotExists`` is a miss.

Registration is a privileged call (wrapped in ``sudo.sudo``) and is
idempotent: registering an asset id that already has a collection logs
and returns the existing id instead of submitting anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .client import Signer, sudo
from .errors import NoDerivativeCollection, NoDerivativeToken
from .executor import TransactionExecutor
from .ledger import DerivativeScheme, Ledger
from .location import AssetId, AssetInstance, Location
from .nft import Token

logger = logging.getLogger("xnft.registry")


@dataclass(frozen=True)
class DerivativeStatus:
    """Lifecycle of one derivative token on a destination ledger."""

    ACTIVE = "Active"
    STASHED = "Stashed"
    NOT_EXISTS = "NotExists"

    state: str = NOT_EXISTS
    token_id: Optional[int] = None

    @classmethod
    def active(cls, token_id: int) -> "DerivativeStatus":
        return cls(cls.ACTIVE, token_id)

    @classmethod
    def stashed(cls, token_id: int) -> "DerivativeStatus":
        return cls(cls.STASHED, token_id)

    @classmethod
    def not_exists(cls) -> "DerivativeStatus":
        return cls()

    @classmethod
    def from_json(cls, value: Any) -> "DerivativeStatus":
        """Decode a ledger answer.

        Accepts ``{"Active": n}``, ``{"Stashed": n}``, ``"NotExists"``,
        ``None`` and a bare token id (plain instance mappings).  Variant
        tags are matched case-insensitively (``{"active": n}``).
        """
        if value is None:
            return cls.not_exists()
        if isinstance(value, int) and not isinstance(value, bool):
            return cls.active(value)
        if isinstance(value, str):
            tag, token_id = value, None
        elif isinstance(value, dict) and len(value) == 1:
            tag, token_id = next(iter(value.items()))
        else:
            raise ValueError(f"unrecognised derivative status: {value!r}")

        state = _STATES.get(str(tag).lower())
        if state == cls.NOT_EXISTS:
            return cls.not_exists()
        if state is None or token_id is None:
            raise ValueError(f"unrecognised derivative status: {value!r}")
        return cls(state, int(token_id))

    @property
    def exists(self) -> bool:
        return self.state != self.NOT_EXISTS

    @property
    def is_active(self) -> bool:
        return self.state == self.ACTIVE

    def __str__(self) -> str:
        if not self.exists:
            return self.NOT_EXISTS
        return f"{self.state}({self.token_id})"


_STATES = {s.lower(): s for s in (DerivativeStatus.ACTIVE,
                                  DerivativeStatus.STASHED,
                                  DerivativeStatus.NOT_EXISTS)}


def _foreign_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, dict):
        if "ForeignAsset" in value:
            return int(value["ForeignAsset"])
        (_, inner), = value.items()
        return int(inner)
    return int(value)


class DerivativeRegistry:
    """Derivative lookups and foreign-asset registration on one ledger."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self.executor = TransactionExecutor(ledger)

    @property
    def scheme(self) -> DerivativeScheme:
        if self.ledger.config.derivatives is None:
            raise ValueError(f"{self.ledger.name} keeps no foreign-asset registry")
        return self.ledger.config.derivatives

    # -- Lookups -------------------------------------------------------------

    async def collection_of(self, asset_id: AssetId) -> Optional[int]:
        """Local collection registered for a foreign *asset_id*, if any."""
        found = await self.ledger.query_state(self.scheme.collection_query, asset_id.to_wire())
        return None if found is None else int(found)

    async def status_of(self, collection_id: int,
                        instance: AssetInstance) -> DerivativeStatus:
        found = await self.ledger.query_state(
            self.scheme.instance_query, collection_id, instance.to_wire())
        return DerivativeStatus.from_json(found)

    async def derivative_of(self, token: Token) -> Token:
        """The token on this ledger that represents *token*."""
        collection_id = await self.collection_of(token.asset_id)
        if collection_id is None:
            raise NoDerivativeCollection(str(token), self.ledger.name)

        status = await self.status_of(collection_id, token.asset_instance)
        if not status.exists:
            raise NoDerivativeToken(str(token), self.ledger.name)

        return Token(self.ledger, collection_id, status.token_id)

    async def fungible_id_of(self, location: Location) -> Optional[int]:
        scheme = self.scheme
        if scheme.fungible_by_location:
            key = location.to_wire()
        else:
            key = AssetId.concrete(location).to_wire()
        return _foreign_id(await self.ledger.query_state(scheme.fungible_query, key))

    # -- Registration ----------------------------------------------------------

    async def register_foreign_asset(self, signer: Signer, asset_id: AssetId,
                                     description: str = "") -> int:
        """Register a derivative collection for *asset_id* (idempotent)."""
        existing = await self.collection_of(asset_id)
        if existing is not None:
            logger.info("%s: foreign asset %s is already registered as collection #%d",
                        self.ledger.name, asset_id.location or asset_id.abstract, existing)
            return existing

        scheme = self.scheme
        result = await self.executor.execute(signer, sudo(scheme.register(asset_id, description)))
        collection_id = result.first(scheme.registered).collection_id
        logger.info("%s: registered foreign asset %s as collection #%d",
                    self.ledger.name, asset_id.location or asset_id.abstract, collection_id)
        return collection_id

    async def register_fungible_foreign_asset(self, signer: Signer, location: Location,
                                              metadata: Dict[str, Any]) -> int:
        """Register a foreign currency at *location* (idempotent)."""
        existing = await self.fungible_id_of(location)
        if existing is not None:
            logger.info("%s: foreign currency %s is already registered as #%d",
                        self.ledger.name, location, existing)
            return existing

        scheme = self.scheme
        result = await self.executor.execute(
            signer, sudo(scheme.register_fungible(location, metadata)))
        currency_id = result.first(scheme.fungible_registered).collection_id
        logger.info("%s: registered foreign currency %s (%s) as #%d",
                    self.ledger.name, location, metadata.get("symbol", "?"), currency_id)
        return currency_id


async def derivative_of(destination: Ledger, token: Token) -> Token:
    """Resolve the derivative of *token* on *destination*."""
    return await DerivativeRegistry(destination).derivative_of(token)
