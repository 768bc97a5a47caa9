#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Network Lookup Client

Boundary to the remote transaction lookup service. Given a transaction hash and
a network, returns the transfer details the service found on that chain, or a
"not found" result.

Features:
- Network name normalization (BEP20/BSC/BNB, ERC20/ETH, MATIC/POLYGON, TRC20/TRON)
- Amount normalization from chain-native units to the common quote unit
- Retry with exponential backoff for transient service failures
- "Not found" is a normal result, never an exception

Author: Deposit Reconciliation
Version: 1.0.0
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional

import aiohttp
from loguru import logger

from .exceptions import MalformedLookupResponse, NetworkProbeFailure
from .hash_validator import TransactionIdentifier


class Network(Enum):
    """Supported chains, declared in canonical probe order"""
    BSC = 'BSC'
    ETHEREUM = 'ETHEREUM'
    POLYGON = 'POLYGON'
    TRON = 'TRON'

    @classmethod
    def canonical_order(cls) -> List['Network']:
        return list(cls)

    @property
    def rank(self) -> int:
        return list(Network).index(self)

    @classmethod
    def from_name(cls, name) -> 'Network':
        """
        Normalize any known network alias to a Network

        Raises:
            ValueError: If the name is not a known alias
        """
        if isinstance(name, Network):
            return name

        network_upper = str(name).strip().upper()
        if network_upper in NETWORK_ALIASES:
            return NETWORK_ALIASES[network_upper]

        raise ValueError(f"Unknown network: {name}")


# Standard network -> names used by wallets, explorers and the lookup service
NETWORK_NAME_MAPPING = {
    Network.BSC: ['BSC', 'BEP20', 'BNB', 'BEP20(BSC)', 'BNB SMART CHAIN'],
    Network.ETHEREUM: ['ETHEREUM', 'ETH', 'ERC20'],
    Network.POLYGON: ['POLYGON', 'MATIC', 'POL', 'PLASMA'],
    Network.TRON: ['TRON', 'TRX', 'TRC20'],
}

# Reverse mapping: alias -> Network
NETWORK_ALIASES: Dict[str, Network] = {
    alias: network
    for network, aliases in NETWORK_NAME_MAPPING.items()
    for alias in aliases
}


class ConfirmationStatus(Enum):
    CONFIRMED = 'confirmed'
    PENDING = 'pending'


@dataclass(frozen=True)
class NetworkProbeResult:
    """Outcome of one lookup on one network"""
    network: Network
    found: bool
    recipient_address: Optional[str] = None
    sender_address: Optional[str] = None
    amount: Optional[Decimal] = None
    block_number: Optional[int] = None
    confirmation: Optional[ConfirmationStatus] = None
    token_symbol: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.found and self.error is not None:
            raise ValueError("A found probe result cannot carry an error")

    @classmethod
    def not_found(cls, network: Network) -> 'NetworkProbeResult':
        return cls(network=network, found=False)

    @classmethod
    def failure(cls, network: Network, reason: str) -> 'NetworkProbeResult':
        return cls(network=network, found=False, error=reason)

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation == ConfirmationStatus.CONFIRMED

    def __repr__(self):
        if self.found:
            status = "CONFIRMED" if self.is_confirmed else "PENDING"
            return f"[FOUND] {self.network.value}: {self.amount} -> {self.recipient_address} ({status})"
        if self.error:
            return f"[ERROR] {self.network.value}: {self.error}"
        return f"[NO] {self.network.value}"


def normalize_amount(payload: Dict, network: Network) -> Decimal:
    """
    Convert an amount from the lookup payload to quote units

    The service reports either a decimal 'amount' already in quote units, or a
    'raw_amount' integer together with the token 'decimals'
    (6 for USDT on Ethereum/Polygon/TRON, 18 on BSC).

    Raises:
        MalformedLookupResponse: If neither shape is present or parseable
    """
    try:
        if payload.get('amount') is not None:
            return Decimal(str(payload['amount']))

        if payload.get('raw_amount') is not None:
            raw_amount = payload['raw_amount']
            if isinstance(raw_amount, str) and raw_amount.lower().startswith('0x'):
                raw_amount = int(raw_amount, 16)
            decimals = int(payload.get('decimals', 18))
            return Decimal(int(raw_amount)) / (Decimal(10) ** decimals)

    except (InvalidOperation, TypeError, ValueError) as e:
        raise MalformedLookupResponse(network.value, f"unparseable amount: {e}")

    raise MalformedLookupResponse(network.value, "missing amount")


def parse_probe_payload(network: Network, payload) -> NetworkProbeResult:
    """
    Build a NetworkProbeResult from a lookup service JSON body

    Raises:
        MalformedLookupResponse: If payload is not the expected shape
    """
    if not isinstance(payload, dict):
        raise MalformedLookupResponse(network.value, f"expected object, got {type(payload).__name__}")

    if 'found' not in payload:
        raise MalformedLookupResponse(network.value, "missing 'found' flag")

    if not payload['found']:
        return NetworkProbeResult.not_found(network)

    recipient = payload.get('to') or payload.get('recipient')
    if not recipient:
        raise MalformedLookupResponse(network.value, "found transfer without recipient")

    block_number = payload.get('block_number')
    if block_number is not None:
        try:
            if isinstance(block_number, str) and block_number.lower().startswith('0x'):
                block_number = int(block_number, 16)
            else:
                block_number = int(block_number)
        except (TypeError, ValueError):
            raise MalformedLookupResponse(network.value, f"bad block number {block_number!r}")

    confirmed = payload.get('confirmed')
    if confirmed is None:
        # No explicit flag: mined into a block means confirmed
        confirmed = block_number is not None and block_number > 0

    return NetworkProbeResult(
        network=network,
        found=True,
        recipient_address=str(recipient),
        sender_address=payload.get('from') or payload.get('sender'),
        amount=normalize_amount(payload, network),
        block_number=block_number,
        confirmation=ConfirmationStatus.CONFIRMED if confirmed else ConfirmationStatus.PENDING,
        token_symbol=payload.get('token_symbol') or payload.get('tokenSymbol') or payload.get('symbol'),
    )


class NetworkLookupClient(ABC):
    """
    Lookup boundary consumed by the reconciliation engine

    Implementations may fail or time out, but must return a not-found result
    (never raise) when the transaction simply is not on the network.
    """

    @abstractmethod
    async def probe(self, network: Network, tx_id: TransactionIdentifier) -> NetworkProbeResult:
        ...

    async def close(self):
        """Release transport resources"""


class HttpNetworkLookupClient(NetworkLookupClient):
    """
    aiohttp client for the remote lookup service

    GET {base_url}/transactions/{network}/{tx_hash}
    - 200 + {"found": true, ...} -> transfer details
    - 200 + {"found": false} or 404 -> not found
    - 429 / 5xx / transport errors -> retried, then NetworkProbeFailure
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        total_timeout: float = 10.0,
        connect_timeout: float = 3.0,
        max_retries: int = 2,
        backoff_base: float = 0.5,
    ):
        """
        Initialize lookup client

        Args:
            base_url: Lookup service root URL
            api_key: Optional bearer token for the service
            total_timeout: Total request timeout in seconds
            connect_timeout: Connection timeout in seconds
            max_retries: Retry attempts for transient failures
            backoff_base: First backoff delay in seconds (doubles per attempt)
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"🔍 Lookup client initialized for {self.base_url} (retries: {max_retries})")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            headers = {'Accept': 'application/json'}
            if self.api_key:
                headers['Authorization'] = f"Bearer {self.api_key}"
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=headers)
        return self._session

    def _url_for(self, network: Network, tx_id: TransactionIdentifier) -> str:
        return f"{self.base_url}/transactions/{network.value.lower()}/{tx_id.value}"

    async def _fetch_once(self, network: Network, tx_id: TransactionIdentifier) -> NetworkProbeResult:
        """Single lookup attempt (called by retry loop)"""
        session = await self._get_session()

        async with session.get(self._url_for(network, tx_id)) as response:
            if response.status == 404:
                return NetworkProbeResult.not_found(network)

            if response.status in self.RETRYABLE_STATUS:
                raise NetworkProbeFailure(network.value, f"HTTP {response.status}")

            if response.status >= 400:
                body = await response.text()
                raise NetworkProbeFailure(network.value, f"HTTP {response.status}: {body[:100]}")

            try:
                payload = await response.json(content_type=None)
            except ValueError as e:
                raise MalformedLookupResponse(network.value, f"invalid JSON: {e}")

        return parse_probe_payload(network, payload)

    async def probe(self, network: Network, tx_id: TransactionIdentifier) -> NetworkProbeResult:
        """
        Look up a transaction on one network with retry logic

        Raises:
            NetworkProbeFailure: If the service keeps failing
            MalformedLookupResponse: If the service answers with garbage
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Probing {network.value} for {tx_id!r} (attempt {attempt + 1}/{self.max_retries + 1})")
                result = await self._fetch_once(network, tx_id)
                logger.debug(f"{result!r}")
                return result

            except NetworkProbeFailure as e:
                last_error = e.reason
                logger.warning(f"Retryable error from {network.value} (attempt {attempt + 1}): {e.reason}")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"Transport error from {network.value} (attempt {attempt + 1}): {last_error[:100]}")

            # Wait before retry (exponential backoff)
            if attempt < self.max_retries:
                wait_time = self.backoff_base * (2 ** attempt)
                await asyncio.sleep(wait_time)

        raise NetworkProbeFailure(network.value, last_error or "unknown error")

    async def close(self):
        """Close HTTP session"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("Lookup client session closed")
        self._session = None


async def graceful_shutdown(client: NetworkLookupClient, timeout: float = 5.0):
    """
    Close the lookup client without leaking sockets or SSL transports

    Args:
        client: Lookup client to close
        timeout: Maximum time to wait for shutdown (seconds)

    Example:
        client = HttpNetworkLookupClient(base_url)
        try:
            # ... reconcile ...
        finally:
            await graceful_shutdown(client)
    """
    try:
        logger.info("Starting graceful shutdown...")
        await asyncio.wait_for(client.close(), timeout=timeout)

        # aiohttp SSL transports need a tick to finish closing
        await asyncio.sleep(0.25)
        logger.info("✓ Graceful shutdown complete")

    except asyncio.TimeoutError:
        logger.warning(f"Shutdown timeout after {timeout}s, abandoning lookup session")


# Standalone test
async def main():
    """Probe one hash on every network"""
    import os
    import sys
    from dotenv import load_dotenv

    load_dotenv()

    if len(sys.argv) < 2:
        print("usage: python -m deposit_reconciliation.network_lookup <tx_hash>")
        return

    tx_id = TransactionIdentifier.parse(sys.argv[1])
    client = HttpNetworkLookupClient(
        base_url=os.getenv('LOOKUP_BASE_URL', 'http://localhost:8080/api'),
        api_key=os.getenv('LOOKUP_API_KEY'),
    )

    print("=" * 80)
    print(f"LOOKUP {tx_id.value}")
    print("=" * 80)

    try:
        for network in Network.canonical_order():
            try:
                result = await client.probe(network, tx_id)
                print(f"  {result!r}")
            except NetworkProbeFailure as e:
                print(f"  [ERROR] {network.value}: {e.reason}")
    finally:
        await graceful_shutdown(client)


if __name__ == "__main__":
    asyncio.run(main())
