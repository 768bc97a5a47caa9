"""Tests for the cross-network reconciliation engine"""

from decimal import Decimal

import pytest

from conftest import (
    BSC_ADDRESS,
    ETH_ADDRESS,
    OTHER_TX_HASH,
    POLYGON_ADDRESS,
    STRANGER_ADDRESS,
    TRON_ADDRESS,
    TX_HASH,
    FakeLookupClient,
    found,
)
from deposit_reconciliation.address_registry import KnownAddressRegistry
from deposit_reconciliation.exceptions import InvalidIdentifier, MalformedLookupResponse, NetworkProbeFailure
from deposit_reconciliation.hash_validator import TransactionIdentifier
from deposit_reconciliation.network_lookup import Network
from deposit_reconciliation.reconciliation_engine import ReconciliationEngine, ReconciliationVerdict


@pytest.mark.asyncio
async def test_invalid_identifier_makes_no_lookup(engine, lookup):
    with pytest.raises(InvalidIdentifier):
        await engine.reconcile("0x1234")
    assert lookup.calls == []


@pytest.mark.asyncio
async def test_nothing_found(engine, lookup):
    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found is False
    assert verdict.matched_network is None
    assert verdict.suggested_amount is None
    assert verdict.recipient_address is None
    assert verdict.is_recipient_matching is False
    assert verdict.probe_errors == {}
    assert sorted(n.value for n, _ in lookup.calls) == ["BSC", "ETHEREUM", "POLYGON", "TRON"]


@pytest.mark.asyncio
async def test_single_match_on_bsc(engine, lookup):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS, amount="50")

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found
    assert verdict.matched_network == Network.BSC
    assert verdict.suggested_network == Network.BSC
    assert verdict.suggested_amount == Decimal("50")
    assert verdict.is_recipient_matching
    assert verdict.expected_recipient == BSC_ADDRESS
    assert verdict.is_confirmed
    assert verdict.ambiguous is False
    assert verdict.is_amount_matching is None


@pytest.mark.asyncio
async def test_recipient_mismatch_still_found(engine, lookup):
    lookup.results[Network.TRON] = found(Network.TRON, STRANGER_ADDRESS)

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found
    assert verdict.matched_network == Network.TRON
    assert verdict.is_recipient_matching is False
    assert verdict.expected_recipient == TRON_ADDRESS


@pytest.mark.asyncio
async def test_recipient_match_ignores_case_and_whitespace(engine, lookup):
    lookup.results[Network.ETHEREUM] = found(Network.ETHEREUM, "  " + ETH_ADDRESS.upper().replace("0X", "0x") + " ")

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.is_recipient_matching


@pytest.mark.asyncio
async def test_missing_deposit_address_is_not_matching():
    lookup = FakeLookupClient({Network.POLYGON: found(Network.POLYGON, POLYGON_ADDRESS)})
    engine = ReconciliationEngine(lookup, KnownAddressRegistry({"BSC": BSC_ADDRESS}))

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found
    assert verdict.is_recipient_matching is False
    assert verdict.expected_recipient is None


@pytest.mark.asyncio
async def test_timeout_is_recorded_not_fatal(engine, lookup):
    lookup.delays[Network.ETHEREUM] = 5
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS)

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found
    assert verdict.matched_network == Network.BSC
    assert verdict.probe_errors == {"ETHEREUM": "Timeout"}


@pytest.mark.asyncio
async def test_probe_failures_become_data(engine, lookup):
    lookup.errors[Network.BSC] = NetworkProbeFailure("BSC", "HTTP 503")
    lookup.errors[Network.ETHEREUM] = ConnectionError("refused")

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found is False
    assert verdict.probe_errors["BSC"] == "HTTP 503"
    assert "refused" in verdict.probe_errors["ETHEREUM"]
    assert not verdict.all_probes_failed


@pytest.mark.asyncio
async def test_all_probes_failed(engine, lookup):
    for network in Network:
        lookup.errors[network] = NetworkProbeFailure(network.value, "down")

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found is False
    assert verdict.all_probes_failed


@pytest.mark.asyncio
async def test_malformed_response_raised_after_all_probes(engine, lookup):
    lookup.errors[Network.BSC] = MalformedLookupResponse("BSC", "garbage")
    lookup.delays[Network.TRON] = 0.05

    with pytest.raises(MalformedLookupResponse):
        await engine.reconcile(TX_HASH)

    assert Network.TRON in lookup.completed


@pytest.mark.asyncio
async def test_confirmed_beats_pending(engine, lookup):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS, confirmed=False)
    lookup.results[Network.POLYGON] = found(Network.POLYGON, POLYGON_ADDRESS, confirmed=True)

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.matched_network == Network.POLYGON
    assert verdict.ambiguous


@pytest.mark.asyncio
async def test_canonical_order_breaks_ties(engine, lookup):
    lookup.results[Network.TRON] = found(Network.TRON, TRON_ADDRESS)
    lookup.results[Network.ETHEREUM] = found(Network.ETHEREUM, ETH_ADDRESS)
    lookup.delays[Network.ETHEREUM] = 0.02

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.matched_network == Network.ETHEREUM
    assert verdict.ambiguous


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(engine, lookup):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS)
    lookup.errors[Network.TRON] = NetworkProbeFailure("TRON", "HTTP 502")

    first = await engine.reconcile(TX_HASH)
    second = await engine.reconcile("0X" + TX_HASH.upper())

    assert first == second


@pytest.mark.asyncio
@pytest.mark.parametrize("expected,matching", [
    ("50", True),
    ("50.009", True),
    (Decimal("49.98"), False),
    (None, None),
])
async def test_expected_amount(engine, lookup, expected, matching):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS, amount="50")

    verdict = await engine.reconcile(TX_HASH, expected_amount=expected)

    assert verdict.is_amount_matching is matching


@pytest.mark.asyncio
async def test_network_subset_deduplicated(engine, lookup):
    await engine.reconcile(OTHER_TX_HASH, networks=["BSC", "BEP20", "trc20"])

    assert [n for n, _ in lookup.calls] == [Network.BSC, Network.TRON]


def test_found_verdict_requires_network():
    with pytest.raises(ValueError):
        ReconciliationVerdict(tx_id=TransactionIdentifier.parse(TX_HASH), found=True)


@pytest.mark.asyncio
async def test_verdict_to_dict(engine, lookup):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS, amount="50")

    data = (await engine.reconcile(TX_HASH)).to_dict()

    assert data["found_on_network"] == "BSC"
    assert data["suggested_amount"] == "50"
    assert data["total_networks_checked"] == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("token,accepted", [
    ("USDT", True),
    (" usdc ", True),
    ("BUSD", True),
    ("SCAMCOIN", False),
    (None, False),
])
async def test_token_acceptance(engine, lookup, token, accepted):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS, amount="5000", token=token)

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.found
    assert verdict.is_recipient_matching
    assert verdict.is_token_accepted is accepted
    assert verdict.to_dict()["is_token_accepted"] is accepted


@pytest.mark.asyncio
async def test_custom_accepted_tokens(lookup, registry):
    engine = ReconciliationEngine(lookup, registry, accepted_tokens=["usdt"])
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS, token="USDC")

    verdict = await engine.reconcile(TX_HASH)

    assert engine.accepted_tokens == ("USDT",)
    assert verdict.is_token_accepted is False


@pytest.mark.asyncio
async def test_not_found_verdict_accepts_no_token(engine):
    verdict = await engine.reconcile(TX_HASH)
    assert verdict.is_token_accepted is False


@pytest.mark.asyncio
async def test_verdicts_are_hashable(engine, lookup):
    lookup.results[Network.BSC] = found(Network.BSC, BSC_ADDRESS)
    lookup.errors[Network.TRON] = NetworkProbeFailure("TRON", "HTTP 502")

    first = await engine.reconcile(TX_HASH)
    second = await engine.reconcile(TX_HASH)

    assert first.probe_errors == {"TRON": "HTTP 502"}
    assert hash(first) == hash(second)
    assert len({first, second}) == 1


@pytest.mark.asyncio
async def test_configured_network_order_does_not_break_ties(lookup, registry):
    engine = ReconciliationEngine(lookup, registry, networks=["TRON", "POLYGON", "ETHEREUM"], probe_timeout=0.2)
    lookup.results[Network.TRON] = found(Network.TRON, TRON_ADDRESS)
    lookup.results[Network.POLYGON] = found(Network.POLYGON, POLYGON_ADDRESS)

    verdict = await engine.reconcile(TX_HASH)

    assert verdict.matched_network == Network.POLYGON
    assert verdict.ambiguous
