"""
xnft — cross-ledger NFT bridging verification harness

Verifies that an NFT registered on its reserve ledger can be represented
as a derivative on another ledger, moved back and forth, and keeps its
ownership and custody invariants throughout.

Features:
- Location model and sovereign / pallet account derivation
- Ledger client boundary with one generic, preset-configured Ledger
- Transaction executor and bounded block-polling event correlator
- Derivative registry and the cross-chain transfer protocol
- Harness scenarios (round trip, local derivative transfer, reserve spoofing)
- In-process devnet (relay + unique / acala flavoured parachains)
- JSON-RPC transport (xnft.rpc) for driving ledgers in another process
"""

from .location import (
    AccountId32, GeneralIndex, GeneralKey, PalletInstance, Parachain,
    Location, AssetId, AssetInstance, Fungibility, MultiAsset,
    account_location, parachain_location, parachain_account_location,
    parachain_collection_location, versioned, unversioned,
)
from .sovereign import (
    SovereignKind, derive_sovereign, sibling_sovereign, child_sovereign,
    pallet_account, pallet_sub_account, ss58_encode, ss58_decode,
)
from .errors import (
    XnftError, SubmissionRejected, EventNotFound, EventTimeoutError,
    SubscriptionClosed, NoDerivativeCollection, NoDerivativeToken,
    BridgeDeliveryFailed, OwnershipMismatch, InvalidTransition,
)
from .events import ChainEvent, EventKind, EventFilter, event_predicate, decode
from .client import (
    Call, sudo, BlockEvents, TxStatus, Signer,
    Subscription, SubscriptionHub, LedgerBackend,
)
from .ledger import Ledger, LedgerConfig, LedgerRole, NftScheme, DerivativeScheme
from .executor import TransactionExecutor, TransactionResult, send_and_wait
from .correlator import wait_for, wait_for_event, message_outcome
from .nft import Collection, Token
from .registry import DerivativeRegistry, DerivativeStatus, derivative_of
from .protocol import CrossChainTransfer, TransferReport, TransferState, transfer_call
from .chains import relay_config, quartz_config, karura_config
from .config import HarnessConfig
from .harness import BridgeHarness, ScenarioResult

__version__ = "0.1.0"
