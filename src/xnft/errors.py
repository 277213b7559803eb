"""
xnft — Error taxonomy

Every failure the harness surfaces is an ``XnftError``.  Errors carry
structured fields and ``to_dict()`` so scenario reports can serialize
them.  Nothing here is retried automatically: the only retry in the
system is the bounded block polling of the correlator.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class XnftError(Exception):
    """Base class for all harness errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message}


class SubmissionRejected(XnftError):
    """The local ledger refused the transaction.

    ``reasons`` holds one entry per failure marker: ``"section.method"``
    for module errors, the raw description otherwise.
    """

    def __init__(self, reasons: Sequence[str]):
        self.reasons: List[str] = list(reasons)
        super().__init__("; ".join(self.reasons))

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["reasons"] = list(self.reasons)
        return d


class EventNotFound(XnftError):
    """A caller asked for an event its own transaction did not emit."""

    def __init__(self, event: str):
        self.event = event
        super().__init__(f'the expected event "{event}" is not found')


class EventTimeoutError(XnftError, TimeoutError):
    """The bounded block poll ended without a matching event."""

    def __init__(self, criteria: str, max_blocks: int):
        self.criteria = criteria
        self.max_blocks = max_blocks
        super().__init__(
            f'no events matching the criteria "{criteria}" within {max_blocks} block(s)'
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(criteria=self.criteria, max_blocks=self.max_blocks)
        return d


class SubscriptionClosed(XnftError):
    """A block stream ended (ledger disconnected) while it was awaited."""


class NoDerivativeCollection(XnftError):
    def __init__(self, token: str, ledger: str):
        self.token = token
        self.ledger = ledger
        super().__init__(f"no derivative collection is found for {token} on {ledger}")


class NoDerivativeToken(XnftError):
    def __init__(self, token: str, ledger: str):
        self.token = token
        self.ledger = ledger
        super().__init__(f"no derivative token is found for {token} on {ledger}")


class BridgeDeliveryFailed(XnftError):
    """The destination rejected the message or never observed it."""

    def __init__(self, message_hash: str, reason: str, destination: str = ""):
        self.message_hash = message_hash
        self.reason = reason
        self.destination = destination
        super().__init__(
            f"message {message_hash} was not delivered to {destination or '?'}: {reason}"
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(message_hash=self.message_hash, reason=self.reason,
                 destination=self.destination)
        return d


class OwnershipMismatch(XnftError):
    """Custody after a transfer is not what the protocol requires."""

    def __init__(self, token: str, expected_owner: str,
                 actual_owner: Optional[str] = None):
        self.token = token
        self.expected_owner = expected_owner
        self.actual_owner = actual_owner
        super().__init__(f"{token} should be owned by {expected_owner}")


class InvalidTransition(XnftError):
    """A transfer lifecycle moved along an edge the state machine lacks."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"illegal transfer transition {current} -> {target}")
