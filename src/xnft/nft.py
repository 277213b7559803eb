"""
xnft — Collections and tokens

A ``Collection`` is ``(ledger, collection_id)``; a ``Token`` adds the
token id.  Both are cheap handles: they hold no state of their own and
ask their ledger whenever ownership matters.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import OwnershipMismatch
from .ledger import Ledger
from .location import AssetId, AssetInstance, MultiAsset


@dataclass(frozen=True)
class Collection:
    ledger: Ledger
    collection_id: int

    @property
    def asset_id(self) -> AssetId:
        return self.ledger.asset_id(self.collection_id)

    def token(self, token_id: int) -> "Token":
        return Token(self.ledger, self.collection_id, token_id)

    def __str__(self) -> str:
        return f"{self.ledger.name}/Collection({self.collection_id})"


@dataclass(frozen=True)
class Token:
    ledger: Ledger
    collection_id: int
    token_id: int

    @property
    def collection(self) -> Collection:
        return Collection(self.ledger, self.collection_id)

    @property
    def asset_id(self) -> AssetId:
        return self.ledger.asset_id(self.collection_id)

    @property
    def asset_instance(self) -> AssetInstance:
        return self.ledger.asset_instance(self.token_id)

    def as_multiasset(self) -> MultiAsset:
        return MultiAsset.non_fungible(self.asset_id, self.asset_instance)

    async def is_owned_by(self, account: bytes) -> bool:
        return await self.ledger.check_token_owner(self.collection_id, self.token_id, account)

    async def check_owner(self, account: bytes) -> None:
        """Raise ``OwnershipMismatch`` unless *account* owns this token."""
        if not await self.is_owned_by(account):
            raise OwnershipMismatch(str(self), self.ledger.address(account))

    def __str__(self) -> str:
        return (f"{self.ledger.name}/Collection({self.collection_id})"
                f"/Token({self.token_id})")
