"""Tests for the lookup client boundary and payload parsing"""

from decimal import Decimal
from unittest.mock import AsyncMock

import aiohttp
import pytest

from conftest import TX_HASH
from deposit_reconciliation.exceptions import MalformedLookupResponse, NetworkProbeFailure
from deposit_reconciliation.hash_validator import TransactionIdentifier
from deposit_reconciliation.network_lookup import (
    ConfirmationStatus,
    HttpNetworkLookupClient,
    Network,
    NetworkProbeResult,
    parse_probe_payload,
)

TX_ID = TransactionIdentifier.parse(TX_HASH)


@pytest.mark.parametrize("alias,expected", [
    ("BSC", Network.BSC),
    ("bep20", Network.BSC),
    ("BNB", Network.BSC),
    ("ERC20", Network.ETHEREUM),
    ("eth", Network.ETHEREUM),
    ("MATIC", Network.POLYGON),
    (" polygon ", Network.POLYGON),
    ("TRC20", Network.TRON),
    (Network.TRON, Network.TRON),
])
def test_network_aliases(alias, expected):
    assert Network.from_name(alias) is expected


def test_unknown_network():
    with pytest.raises(ValueError):
        Network.from_name("SOLANA")


def test_canonical_order():
    assert Network.canonical_order() == [Network.BSC, Network.ETHEREUM, Network.POLYGON, Network.TRON]
    assert [n.rank for n in Network.canonical_order()] == [0, 1, 2, 3]


def test_found_result_cannot_carry_error():
    with pytest.raises(ValueError):
        NetworkProbeResult(network=Network.BSC, found=True, error="boom")


def test_parse_not_found():
    result = parse_probe_payload(Network.BSC, {"found": False})
    assert result == NetworkProbeResult.not_found(Network.BSC)


def test_parse_found_with_decimal_amount():
    result = parse_probe_payload(Network.ETHEREUM, {
        "found": True,
        "to": "0xABC",
        "from": "0xDEF",
        "amount": "50.25",
        "block_number": 100,
        "token_symbol": "USDT",
    })

    assert result.found
    assert result.recipient_address == "0xABC"
    assert result.sender_address == "0xDEF"
    assert result.amount == Decimal("50.25")
    assert result.is_confirmed
    assert result.token_symbol == "USDT"


def test_parse_raw_amount_uses_decimals():
    result = parse_probe_payload(Network.TRON, {
        "found": True,
        "recipient": "TXyz",
        "raw_amount": hex(50_000_000),
        "decimals": 6,
        "block_number": "0x10",
    })

    assert result.amount == Decimal("50")
    assert result.block_number == 16


def test_parse_raw_amount_defaults_to_18_decimals():
    result = parse_probe_payload(Network.BSC, {
        "found": True,
        "to": "0xabc",
        "raw_amount": 30 * 10 ** 18,
        "confirmed": False,
    })

    assert result.amount == Decimal("30")
    assert result.confirmation == ConfirmationStatus.PENDING


def test_parse_without_block_is_pending():
    result = parse_probe_payload(Network.BSC, {"found": True, "to": "0xabc", "amount": 1})
    assert not result.is_confirmed


@pytest.mark.parametrize("payload", [
    None,
    [],
    "found",
    {},
    {"found": True, "amount": 1},
    {"found": True, "to": "0xabc"},
    {"found": True, "to": "0xabc", "amount": "lots"},
    {"found": True, "to": "0xabc", "amount": 1, "block_number": "tip"},
])
def test_parse_malformed(payload):
    with pytest.raises(MalformedLookupResponse):
        parse_probe_payload(Network.BSC, payload)


def make_client(**kwargs):
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("backoff_base", 0)
    return HttpNetworkLookupClient("http://lookup.test/api/", **kwargs)


def test_url_format():
    client = make_client()
    assert client._url_for(Network.POLYGON, TX_ID) == f"http://lookup.test/api/transactions/polygon/{TX_ID.value}"


@pytest.mark.asyncio
async def test_probe_retries_transient_failures():
    client = make_client()
    expected = NetworkProbeResult.not_found(Network.BSC)
    client._fetch_once = AsyncMock(side_effect=[
        NetworkProbeFailure("BSC", "HTTP 503"),
        aiohttp.ClientConnectionError("reset"),
        expected,
    ])

    assert await client.probe(Network.BSC, TX_ID) == expected
    assert client._fetch_once.await_count == 3


@pytest.mark.asyncio
async def test_probe_gives_up_after_retries():
    client = make_client(max_retries=1)
    client._fetch_once = AsyncMock(side_effect=NetworkProbeFailure("BSC", "HTTP 429"))

    with pytest.raises(NetworkProbeFailure) as exc_info:
        await client.probe(Network.BSC, TX_ID)

    assert exc_info.value.reason == "HTTP 429"
    assert client._fetch_once.await_count == 2


@pytest.mark.asyncio
async def test_malformed_response_is_not_retried():
    client = make_client()
    client._fetch_once = AsyncMock(side_effect=MalformedLookupResponse("BSC", "missing 'found' flag"))

    with pytest.raises(MalformedLookupResponse):
        await client.probe(Network.BSC, TX_ID)

    assert client._fetch_once.await_count == 1


@pytest.mark.asyncio
async def test_close_without_session():
    client = make_client()
    await client.close()
    assert client._session is None


@pytest.mark.parametrize("key", ["token_symbol", "tokenSymbol", "symbol"])
def test_parse_token_symbol_aliases(key):
    result = parse_probe_payload(Network.BSC, {"found": True, "to": "0xABC", "amount": "50", key: "USDC"})
    assert result.token_symbol == "USDC"
