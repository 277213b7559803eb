"""
xnft devnet — an in-process relay/parachain network for exercising the
harness without live nodes.
"""

from .backend import DevnetLedger
from .keyring import DEV_ACCOUNTS, DevAccount, dev_account, verify_signature
from .messages import XcmMessage, message_hash
from .network import DevnetNetwork
from .runtime import (
    AcalaRuntime,
    DispatchError,
    ParachainRuntime,
    RelayRuntime,
    Runtime,
    UniqueRuntime,
)

__all__ = [
    "DevnetLedger",
    "DevnetNetwork",
    "DevAccount",
    "DEV_ACCOUNTS",
    "dev_account",
    "verify_signature",
    "XcmMessage",
    "message_hash",
    "Runtime",
    "RelayRuntime",
    "ParachainRuntime",
    "UniqueRuntime",
    "AcalaRuntime",
    "DispatchError",
]
