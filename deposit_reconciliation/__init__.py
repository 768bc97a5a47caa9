"""
Deposit Reconciliation

Cross-chain detection and crediting of user-reported USDT deposits.

Components:
- hash_validator: Transaction hash syntax check and canonical form
- network_lookup: Lookup service boundary (aiohttp client, probe results)
- address_registry: Platform deposit addresses per network
- reconciliation_engine: Concurrent multi-network search and verdicts
- intent_tracker: Per-hash lifecycle guard (no double search, no double credit)
- deposit_ledger: SQLite ledger with idempotent deposit creation
- deposit_session: UI boundary (on_input / confirm_deposit)
- pending_verifier: Re-verification of pending deposits
- vip_eligibility / tier_catalog / vip_service: VIP upgrade arithmetic

Pipeline:
1. Validate - Reject malformed hashes before any lookup
2. Search - Probe BSC, ETHEREUM, POLYGON and TRON concurrently
3. Aggregate - Confirmed beats pending, then canonical network order
4. Verify - Recipient must be our deposit address, token an accepted one
5. Credit - Idempotent ledger write, intent marked written
6. Eligibility - Confirmed deposit totals feed VIP upgrades
"""

from .exceptions import (
    ReconciliationError,
    InvalidIdentifier,
    NetworkProbeFailure,
    MalformedLookupResponse,
    AlreadyInProgress,
    AmbiguousMatch,
    MissingDepositAddress,
    IllegalIntentTransition,
    DuplicateDeposit,
    RecipientMismatchError,
    UnsupportedToken,
    BelowMinimumDeposit,
    DepositNotFound,
    IllegalDepositState,
    TierSelectionError,
)
from .hash_validator import (
    TransactionIdentifier,
    validate,
    normalize,
)
from .network_lookup import (
    Network,
    ConfirmationStatus,
    NetworkProbeResult,
    NetworkLookupClient,
    HttpNetworkLookupClient,
    graceful_shutdown,
)
from .address_registry import (
    KnownAddressRegistry,
)
from .reconciliation_engine import (
    ReconciliationEngine,
    ReconciliationVerdict,
)
from .intent_tracker import (
    DepositIntentTracker,
    DepositIntent,
    IntentState,
    BeginResult,
)
from .deposit_ledger import (
    DepositLedger,
    DepositRecord,
)
from .deposit_session import (
    DepositSession,
    SessionEvent,
)
from .pending_verifier import (
    PendingDepositVerifier,
    VerificationOutcome,
)
from .vip_eligibility import (
    VipTier,
    CumulativeDeposits,
    UpgradeInfo,
    compute_upgrade,
    upgrade_options,
    projected_earnings,
)
from .tier_catalog import (
    DEFAULT_TIERS,
    TierCatalogParser,
    load_tiers,
)
from .vip_service import (
    VipUpgradeService,
)
from .config import (
    load_config,
    setup_logging,
)

__all__ = [
    # Errors
    'ReconciliationError',
    'InvalidIdentifier',
    'NetworkProbeFailure',
    'MalformedLookupResponse',
    'AlreadyInProgress',
    'AmbiguousMatch',
    'MissingDepositAddress',
    'IllegalIntentTransition',
    'DuplicateDeposit',
    'RecipientMismatchError',
    'UnsupportedToken',
    'BelowMinimumDeposit',
    'DepositNotFound',
    'IllegalDepositState',
    'TierSelectionError',

    # Identifiers
    'TransactionIdentifier',
    'validate',
    'normalize',

    # Network lookup
    'Network',
    'ConfirmationStatus',
    'NetworkProbeResult',
    'NetworkLookupClient',
    'HttpNetworkLookupClient',
    'graceful_shutdown',
    'KnownAddressRegistry',

    # Reconciliation
    'ReconciliationEngine',
    'ReconciliationVerdict',
    'DepositIntentTracker',
    'DepositIntent',
    'IntentState',
    'BeginResult',

    # Ledger and UI boundary
    'DepositLedger',
    'DepositRecord',
    'DepositSession',
    'SessionEvent',
    'PendingDepositVerifier',
    'VerificationOutcome',

    # VIP
    'VipTier',
    'CumulativeDeposits',
    'UpgradeInfo',
    'compute_upgrade',
    'upgrade_options',
    'projected_earnings',
    'DEFAULT_TIERS',
    'TierCatalogParser',
    'load_tiers',
    'VipUpgradeService',

    # Configuration
    'load_config',
    'setup_logging',
]

__version__ = '1.0.0'
__author__ = 'Deposit Reconciliation'
__description__ = 'Cross-chain deposit detection and reconciliation'
