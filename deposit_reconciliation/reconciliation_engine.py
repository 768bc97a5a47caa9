"""
Reconciliation Engine

Searches every supported network for a user-supplied transaction hash and folds
the per-network results into one verdict:

1. Hash validation (fail fast, no lookups)
2. Concurrent probes, one per network, each with a bounded wait
3. Partial failures recorded as data, never abort the other probes
4. Deterministic winner selection (confirmed first, then canonical order)
5. Recipient check against the platform deposit address
6. Token check against the accepted deposit tokens
7. Optional amount check against the expected amount
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .address_registry import KnownAddressRegistry
from .exceptions import (
    AmbiguousMatch,
    InvalidIdentifier,
    MalformedLookupResponse,
    MissingDepositAddress,
    NetworkProbeFailure,
)
from .hash_validator import TransactionIdentifier, validate
from .network_lookup import Network, NetworkLookupClient, NetworkProbeResult

TIMEOUT_REASON = 'Timeout'

DEFAULT_ACCEPTED_TOKENS = ('USDT', 'USDC', 'BUSD')


@dataclass(frozen=True)
class ReconciliationVerdict:
    """Aggregated outcome of one reconciliation attempt"""
    tx_id: TransactionIdentifier
    found: bool
    matched_network: Optional[Network] = None
    suggested_amount: Optional[Decimal] = None
    suggested_network: Optional[Network] = None
    recipient_address: Optional[str] = None
    sender_address: Optional[str] = None
    is_recipient_matching: bool = False
    block_number: Optional[int] = None
    is_confirmed: Optional[bool] = None
    expected_recipient: Optional[str] = None
    is_amount_matching: Optional[bool] = None
    token_symbol: Optional[str] = None
    is_token_accepted: bool = False
    ambiguous: bool = False
    probe_errors: Dict[str, str] = field(default_factory=dict, hash=False)
    probes: Tuple[NetworkProbeResult, ...] = ()

    def __post_init__(self):
        if self.found != (self.matched_network is not None):
            raise ValueError("matched_network must be set exactly when found is True")

    @classmethod
    def not_found(
        cls,
        tx_id: TransactionIdentifier,
        probes: Tuple[NetworkProbeResult, ...] = ()
    ) -> 'ReconciliationVerdict':
        return cls(
            tx_id=tx_id,
            found=False,
            probe_errors=_collect_errors(probes),
            probes=probes,
        )

    @property
    def all_probes_failed(self) -> bool:
        return bool(self.probes) and all(p.error is not None for p in self.probes)

    def to_dict(self) -> Dict:
        """Plain representation for the UI and the audit log"""
        return {
            'transaction_hash': self.tx_id.value,
            'found': self.found,
            'found_on_network': self.matched_network.value if self.matched_network else None,
            'suggested_amount': str(self.suggested_amount) if self.suggested_amount is not None else None,
            'suggested_network': self.suggested_network.value if self.suggested_network else None,
            'recipient_address': self.recipient_address,
            'sender_address': self.sender_address,
            'is_recipient_matching': self.is_recipient_matching,
            'block_number': self.block_number,
            'is_confirmed': self.is_confirmed,
            'is_amount_matching': self.is_amount_matching,
            'token_symbol': self.token_symbol,
            'is_token_accepted': self.is_token_accepted,
            'ambiguous': self.ambiguous,
            'probe_errors': dict(self.probe_errors),
            'total_networks_checked': len(self.probes),
        }


def _collect_errors(probes: Iterable[NetworkProbeResult]) -> Dict[str, str]:
    return {p.network.value: p.error for p in probes if p.error is not None}


def select_match(found: List[NetworkProbeResult]) -> Optional[NetworkProbeResult]:
    """
    Pick the winning probe among those that found the transaction

    Confirmed beats pending; ties fall back to canonical network order.
    """
    if not found:
        return None
    return min(found, key=lambda p: (0 if p.is_confirmed else 1, p.network.rank))


class ReconciliationEngine:
    """
    Cross-network transaction search and verification

    Stateless apart from its collaborators: reconciling the same hash against
    unchanged chain state yields the same verdict.
    """

    def __init__(
        self,
        lookup_client: NetworkLookupClient,
        address_registry: KnownAddressRegistry,
        networks: Optional[Iterable] = None,
        probe_timeout: float = 10.0,
        amount_tolerance: Decimal = Decimal('0.01'),
        accepted_tokens: Optional[Iterable[str]] = None,
    ):
        """
        Initialize engine

        Args:
            lookup_client: Lookup service boundary
            address_registry: Platform deposit addresses
            networks: Default network set (defaults to all, canonical order)
            probe_timeout: Maximum wait per network probe (seconds)
            amount_tolerance: Allowed difference for expected-amount checks
            accepted_tokens: Token symbols credited as deposits (USDT, USDC, BUSD by default)
        """
        self.lookup_client = lookup_client
        self.address_registry = address_registry
        self.networks = self._normalize_networks(networks) if networks else Network.canonical_order()
        self.probe_timeout = probe_timeout
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self.accepted_tokens = tuple(
            str(symbol).strip().upper() for symbol in (accepted_tokens or DEFAULT_ACCEPTED_TOKENS)
        )

        logger.info(
            f"Reconciliation engine initialized "
            f"(networks: {', '.join(n.value for n in self.networks)}, timeout: {probe_timeout}s)"
        )

    @classmethod
    def from_config(
        cls,
        config: Dict,
        lookup_client: NetworkLookupClient,
        address_registry: Optional[KnownAddressRegistry] = None
    ) -> 'ReconciliationEngine':
        return cls(
            lookup_client=lookup_client,
            address_registry=address_registry or KnownAddressRegistry.from_config(config),
            networks=config.get('networks'),
            probe_timeout=float(config['lookup']['probe_timeout_seconds']),
            amount_tolerance=Decimal(str(config['deposits']['amount_tolerance'])),
            accepted_tokens=config['deposits'].get('accepted_tokens'),
        )

    @staticmethod
    def _normalize_networks(networks: Iterable) -> List[Network]:
        """Normalize names to Network, dropping duplicates but keeping order"""
        normalized = []
        for name in networks:
            network = Network.from_name(name)
            if network not in normalized:
                normalized.append(network)
        return normalized

    async def _probe(self, network: Network, tx_id: TransactionIdentifier) -> NetworkProbeResult:
        """
        One bounded probe; failures become data

        MalformedLookupResponse is re-raised so the caller can surface it
        after every probe has finished.
        """
        try:
            return await asyncio.wait_for(
                self.lookup_client.probe(network, tx_id),
                timeout=self.probe_timeout
            )

        except asyncio.TimeoutError:
            logger.warning(f"⏱ {network.value} probe timed out after {self.probe_timeout}s")
            return NetworkProbeResult.failure(network, TIMEOUT_REASON)

        except MalformedLookupResponse:
            raise

        except NetworkProbeFailure as e:
            logger.warning(f"⚠ {network.value} probe failed: {e.reason}")
            return NetworkProbeResult.failure(network, e.reason)

        except Exception as e:
            logger.error(f"✗ {network.value} probe raised {type(e).__name__}: {e}")
            return NetworkProbeResult.failure(network, f"{type(e).__name__}: {e}")

    async def probe_all(
        self,
        tx_id: TransactionIdentifier,
        networks: Optional[Iterable] = None
    ) -> Tuple[NetworkProbeResult, ...]:
        """
        Probe every network concurrently and wait for all of them

        Raises:
            MalformedLookupResponse: After all probes completed, if any
                collaborator answered with an uninterpretable payload
        """
        targets = self._normalize_networks(networks) if networks else list(self.networks)

        outcomes = await asyncio.gather(
            *(self._probe(network, tx_id) for network in targets),
            return_exceptions=True
        )

        results = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)

        return tuple(results)

    def _amount_matches(self, amount: Optional[Decimal], expected_amount) -> Optional[bool]:
        if expected_amount is None:
            return None
        if amount is None:
            return False
        return abs(amount - Decimal(str(expected_amount))) <= self.amount_tolerance

    def _token_accepted(self, token_symbol: Optional[str]) -> bool:
        """Unreported symbols are never accepted"""
        if not token_symbol:
            return False
        return token_symbol.strip().upper() in self.accepted_tokens

    def _check_recipient(self, network: Network, recipient: Optional[str]) -> Tuple[bool, Optional[str]]:
        """Returns (is_matching, expected_address)"""
        try:
            expected = self.address_registry.address_for(network)
        except MissingDepositAddress as e:
            logger.warning(f"⚠ {e} - recipient cannot be confirmed")
            return False, None

        return self.address_registry.matches(network, recipient), expected

    def aggregate(
        self,
        tx_id: TransactionIdentifier,
        probes: Tuple[NetworkProbeResult, ...],
        expected_amount=None
    ) -> ReconciliationVerdict:
        """Fold per-network probe results into one verdict"""
        found = [p for p in probes if p.found]
        match = select_match(found)

        if match is None:
            return ReconciliationVerdict.not_found(tx_id, probes)

        ambiguous = len(found) > 1
        if ambiguous:
            warning = AmbiguousMatch(
                tx_id.value,
                [p.network.value for p in sorted(found, key=lambda p: p.network.rank)],
                match.network.value
            )
            logger.warning(f"⚠ {warning}")

        is_matching, expected_recipient = self._check_recipient(match.network, match.recipient_address)
        token_accepted = self._token_accepted(match.token_symbol)
        if not token_accepted:
            logger.warning(
                f"⚠ {tx_id!r} on {match.network.value} transferred {match.token_symbol or 'an unreported token'}, "
                f"accepted: {', '.join(self.accepted_tokens)}"
            )

        return ReconciliationVerdict(
            tx_id=tx_id,
            found=True,
            matched_network=match.network,
            suggested_amount=match.amount,
            suggested_network=match.network,
            recipient_address=match.recipient_address,
            sender_address=match.sender_address,
            is_recipient_matching=is_matching,
            block_number=match.block_number,
            is_confirmed=match.is_confirmed,
            expected_recipient=expected_recipient,
            is_amount_matching=self._amount_matches(match.amount, expected_amount),
            token_symbol=match.token_symbol,
            is_token_accepted=token_accepted,
            ambiguous=ambiguous,
            probe_errors=_collect_errors(probes),
            probes=probes,
        )

    async def reconcile(
        self,
        tx_id,
        networks: Optional[Iterable] = None,
        expected_amount=None
    ) -> ReconciliationVerdict:
        """
        Search all networks for a transaction and verify it

        Args:
            tx_id: Raw hash string or TransactionIdentifier
            networks: Networks to search (defaults to the engine's set)
            expected_amount: Optional amount the user claims to have sent

        Returns:
            ReconciliationVerdict (found=False is a normal outcome)

        Raises:
            InvalidIdentifier: If the hash is malformed (no lookup is made)
            MalformedLookupResponse: If the lookup service returned garbage
        """
        if not isinstance(tx_id, TransactionIdentifier):
            if not validate(tx_id):
                raise InvalidIdentifier(tx_id)
            tx_id = TransactionIdentifier.parse(tx_id)

        logger.info(f"🔍 Reconciling {tx_id!r}")

        probes = await self.probe_all(tx_id, networks)
        verdict = self.aggregate(tx_id, probes, expected_amount)

        if not verdict.found:
            if verdict.probe_errors:
                logger.warning(
                    f"✗ {tx_id!r} not found "
                    f"({len(verdict.probe_errors)}/{len(probes)} networks failed: {verdict.probe_errors})"
                )
            else:
                logger.info(f"✗ {tx_id!r} not found on any network")
        elif verdict.is_recipient_matching:
            logger.info(
                f"✓ {tx_id!r} found on {verdict.matched_network.value}: "
                f"{verdict.suggested_amount} ({'confirmed' if verdict.is_confirmed else 'pending'})"
            )
        else:
            logger.warning(
                f"⚠ {tx_id!r} found on {verdict.matched_network.value}, "
                f"but recipient {verdict.recipient_address} is not our address"
            )

        return verdict


# Standalone test
async def main():
    """Reconcile a hash from the command line"""
    import sys

    from .config import load_config, setup_logging
    from .network_lookup import HttpNetworkLookupClient, graceful_shutdown

    if len(sys.argv) < 2:
        print("usage: python -m deposit_reconciliation.reconciliation_engine <tx_hash> [expected_amount]")
        return

    config = load_config()
    setup_logging(config)

    client = HttpNetworkLookupClient(
        base_url=config['lookup']['base_url'],
        api_key=config['lookup']['api_key'],
        max_retries=int(config['lookup']['max_retries']),
    )
    engine = ReconciliationEngine.from_config(config, client)

    try:
        expected = sys.argv[2] if len(sys.argv) > 2 else None
        verdict = await engine.reconcile(sys.argv[1], expected_amount=expected)

        print("\n" + "=" * 80)
        for key, value in verdict.to_dict().items():
            print(f"  {key:24s}: {value}")
        print("=" * 80)
    finally:
        await graceful_shutdown(client)


if __name__ == "__main__":
    asyncio.run(main())
