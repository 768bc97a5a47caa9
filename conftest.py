"""
Test fixtures and configuration.
"""

import asyncio
from decimal import Decimal

import pytest

from deposit_reconciliation.address_registry import KnownAddressRegistry
from deposit_reconciliation.deposit_ledger import DepositLedger
from deposit_reconciliation.hash_validator import TransactionIdentifier
from deposit_reconciliation.intent_tracker import DepositIntentTracker
from deposit_reconciliation.network_lookup import (
    ConfirmationStatus,
    Network,
    NetworkLookupClient,
    NetworkProbeResult,
)
from deposit_reconciliation.reconciliation_engine import ReconciliationEngine, ReconciliationVerdict

TX_HASH = "a1b2" + "c3d4" * 15
OTHER_TX_HASH = "f" * 64

BSC_ADDRESS = "0x" + "b" * 40
ETH_ADDRESS = "0x" + "e" * 40
POLYGON_ADDRESS = "0x" + "9" * 40
TRON_ADDRESS = "TXyzPlatformTronDepositAddress001"

PLATFORM_ADDRESSES = {
    "BSC": BSC_ADDRESS,
    "ETHEREUM": ETH_ADDRESS,
    "POLYGON": POLYGON_ADDRESS,
    "TRON": TRON_ADDRESS,
}

STRANGER_ADDRESS = "0x" + "1" * 40


def found(network, recipient, amount="50", confirmed=True, block_number=123456, sender="0x" + "5" * 40, token="USDT"):
    """Probe result for a transfer found on a network"""
    return NetworkProbeResult(
        network=network,
        found=True,
        recipient_address=recipient,
        sender_address=sender,
        amount=Decimal(str(amount)),
        block_number=block_number,
        confirmation=ConfirmationStatus.CONFIRMED if confirmed else ConfirmationStatus.PENDING,
        token_symbol=token,
    )


def make_verdict(
    tx_hash=TX_HASH,
    found=True,
    network=Network.BSC,
    amount="50",
    matching=True,
    confirmed=True,
):
    """Verdict built directly, bypassing the engine"""
    tx_id = TransactionIdentifier.parse(tx_hash)
    if not found:
        return ReconciliationVerdict.not_found(tx_id)

    return ReconciliationVerdict(
        tx_id=tx_id,
        found=True,
        matched_network=network,
        suggested_amount=Decimal(str(amount)),
        suggested_network=network,
        recipient_address=PLATFORM_ADDRESSES[network.value] if matching else STRANGER_ADDRESS,
        sender_address="0x" + "5" * 40,
        is_recipient_matching=matching,
        block_number=123456,
        is_confirmed=confirmed,
        expected_recipient=PLATFORM_ADDRESSES[network.value],
        token_symbol="USDT",
        is_token_accepted=True,
    )


class FakeLookupClient(NetworkLookupClient):
    """
    In-memory lookup service

    results / delays / errors are keyed by Network, or by (tx_hash, Network)
    to give one transaction its own behaviour. Unknown keys -> not found.
    """

    def __init__(self, results=None, delays=None, errors=None):
        self.results = results or {}
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls = []
        self.completed = []

    def _lookup(self, table, network, tx_id):
        if (tx_id.value, network) in table:
            return table[(tx_id.value, network)]
        return table.get(network)

    async def probe(self, network, tx_id):
        self.calls.append((network, tx_id.value))

        delay = self._lookup(self.delays, network, tx_id)
        if delay:
            await asyncio.sleep(delay)

        self.completed.append(network)

        error = self._lookup(self.errors, network, tx_id)
        if error is not None:
            raise error

        result = self._lookup(self.results, network, tx_id)
        return result if result is not None else NetworkProbeResult.not_found(network)


@pytest.fixture
def registry():
    return KnownAddressRegistry(PLATFORM_ADDRESSES)


@pytest.fixture
def lookup():
    return FakeLookupClient()


@pytest.fixture
def engine(lookup, registry):
    return ReconciliationEngine(lookup, registry, probe_timeout=0.2)


@pytest.fixture
def tracker():
    return DepositIntentTracker()


@pytest.fixture
def ledger(tmp_path):
    db = DepositLedger(str(tmp_path / "ledger.db"))
    yield db
    db.close()
