"""
Pending Deposit Verifier

Re-reconciles PENDING ledger deposits and confirms the ones the chain now
backs up. A deposit is confirmed only when the transfer is found, confirmed,
sent to our address in an accepted token, on the recorded network, and for
the recorded amount.
Everything else stays pending with the reason reported.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from .deposit_ledger import STATUS_PENDING, DepositLedger
from .exceptions import DepositNotFound, IllegalDepositState, ReconciliationError
from .reconciliation_engine import ReconciliationEngine, ReconciliationVerdict


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of re-verifying one deposit"""
    deposit_id: int
    verified: bool
    message: str
    verdict: Optional[ReconciliationVerdict] = None


class PendingDepositVerifier:
    """Batch and single re-verification of pending deposits"""

    def __init__(self, engine: ReconciliationEngine, ledger: DepositLedger, max_concurrency: int = 5):
        """
        Initialize verifier

        Args:
            engine: Reconciliation engine
            ledger: Deposit ledger
            max_concurrency: Deposits reconciled at the same time
        """
        self.engine = engine
        self.ledger = ledger
        self.max_concurrency = max_concurrency

    @staticmethod
    def _rejection(record, verdict: ReconciliationVerdict) -> Optional[str]:
        """Why the verdict does not back the deposit (None if it does)"""
        if not verdict.found:
            return "Transaction not found on any network"
        if verdict.matched_network.value != record.network:
            return f"Transaction is on {verdict.matched_network.value}, deposit recorded on {record.network}"
        if not verdict.is_recipient_matching:
            return f"Recipient {verdict.recipient_address} is not our deposit address"
        if not verdict.is_token_accepted:
            return f"Token {verdict.token_symbol or '(unreported)'} is not an accepted deposit token"
        if not verdict.is_confirmed:
            return "Transaction not yet confirmed"
        if not verdict.is_amount_matching:
            return f"Amount {verdict.suggested_amount} does not match deposit amount {record.amount}"
        return None

    async def verify_deposit(self, deposit_id: int) -> VerificationOutcome:
        """
        Re-verify one deposit and confirm it if the chain backs it up

        Never raises for per-deposit problems; they are reported in the outcome.
        """
        try:
            record = self.ledger.get(deposit_id)
        except DepositNotFound as e:
            return VerificationOutcome(deposit_id, False, str(e))

        if record.status != STATUS_PENDING:
            return VerificationOutcome(deposit_id, False, f"Deposit already processed with status {record.status}")

        try:
            verdict = await self.engine.reconcile(record.tx_id, expected_amount=record.amount)
        except ReconciliationError as e:
            logger.error(f"✗ Verification of deposit #{deposit_id} failed: {e}")
            return VerificationOutcome(deposit_id, False, f"Verification failed: {e}")

        self.ledger.record_verdict(verdict)

        reason = self._rejection(record, verdict)
        if reason is not None:
            logger.info(f"Deposit #{deposit_id} stays pending: {reason}")
            return VerificationOutcome(deposit_id, False, reason, verdict)

        try:
            self.ledger.confirm(deposit_id, block_number=verdict.block_number)
        except IllegalDepositState as e:
            # Confirmed or failed by someone else meanwhile
            return VerificationOutcome(deposit_id, False, str(e), verdict)

        logger.info(f"✓ Deposit #{deposit_id} verified on {verdict.matched_network.value}")
        return VerificationOutcome(deposit_id, True, "Deposit verified and confirmed", verdict)

    async def verify_pending(self, limit: int = 100) -> List[VerificationOutcome]:
        """
        Re-verify up to `limit` pending deposits (newest first)

        Returns:
            One outcome per deposit, in ledger order
        """
        pending = self.ledger.list_deposits(status=STATUS_PENDING, limit=limit)
        if not pending:
            logger.info("No pending deposits to verify")
            return []

        logger.info(f"🔍 Verifying {len(pending)} pending deposit(s)...")
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def verify_one(deposit_id: int) -> VerificationOutcome:
            async with semaphore:
                return await self.verify_deposit(deposit_id)

        outcomes = await asyncio.gather(*(verify_one(record.deposit_id) for record in pending))

        verified = sum(1 for outcome in outcomes if outcome.verified)
        logger.info(f"✓ {verified}/{len(outcomes)} pending deposit(s) confirmed")
        return list(outcomes)
