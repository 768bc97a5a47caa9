"""
Deposit Intent Tracker

Per-identifier lifecycle of a reconciliation attempt:

    IDLE -> SEARCHING -> VERIFIED | FAILED -> LEDGER_WRITTEN

Guarantees at most one SEARCHING intent per transaction hash, drops results
from superseded attempts, and makes LEDGER_WRITTEN terminal so the same hash
is never credited twice.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from loguru import logger

from .exceptions import AlreadyInProgress, IllegalIntentTransition
from .hash_validator import TransactionIdentifier
from .reconciliation_engine import ReconciliationVerdict

NOT_FOUND_REASON = 'not_found'


class IntentState(Enum):
    IDLE = 'idle'
    SEARCHING = 'searching'
    VERIFIED = 'verified'
    FAILED = 'failed'
    LEDGER_WRITTEN = 'ledger_written'


@dataclass(frozen=True)
class DepositIntent:
    """Snapshot of one identifier's lifecycle"""
    tx_id: TransactionIdentifier
    state: IntentState = IntentState.IDLE
    generation: int = 0
    verdict: Optional[ReconciliationVerdict] = None
    reason: Optional[str] = None
    deposit_id: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.state == IntentState.LEDGER_WRITTEN


@dataclass(frozen=True)
class AttemptToken:
    """Handle for one SEARCHING generation; required to complete it"""
    tx_id: TransactionIdentifier
    generation: int


@dataclass(frozen=True)
class BeginResult:
    """
    Outcome of DepositIntentTracker.begin()

    Exactly one of token / error / deposit_id is set.
    """
    token: Optional[AttemptToken] = None
    error: Optional[AlreadyInProgress] = None
    deposit_id: Optional[int] = None

    @property
    def started(self) -> bool:
        return self.token is not None

    @property
    def already_in_progress(self) -> bool:
        return self.error is not None

    @property
    def already_written(self) -> bool:
        return self.deposit_id is not None


class DepositIntentTracker:
    """
    Lock-protected state machine, keyed by canonical transaction hash

    Every transition is a check-and-set under one lock, so callers from
    concurrent tasks or threads observe a single winner.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._intents: Dict[TransactionIdentifier, DepositIntent] = {}
        self._generation = 0

    def current(self, tx_id) -> DepositIntent:
        """Current intent for a hash (IDLE if never seen)"""
        tx_id = TransactionIdentifier.parse(tx_id)
        with self._lock:
            return self._intents.get(tx_id, DepositIntent(tx_id=tx_id))

    def begin(self, tx_id) -> BeginResult:
        """
        Start a reconciliation attempt

        Returns:
            BeginResult with a fresh token, an AlreadyInProgress error while
            another attempt is SEARCHING, or the existing deposit id once the
            ledger has been written. Never raises for state conflicts.
        """
        tx_id = TransactionIdentifier.parse(tx_id)

        with self._lock:
            intent = self._intents.get(tx_id, DepositIntent(tx_id=tx_id))

            if intent.state == IntentState.SEARCHING:
                logger.debug(f"Intent {tx_id!r} already searching (generation {intent.generation})")
                return BeginResult(error=AlreadyInProgress(tx_id.value))

            if intent.state == IntentState.LEDGER_WRITTEN:
                logger.debug(f"Intent {tx_id!r} already written as deposit {intent.deposit_id}")
                return BeginResult(deposit_id=intent.deposit_id)

            self._generation += 1
            self._intents[tx_id] = DepositIntent(
                tx_id=tx_id,
                state=IntentState.SEARCHING,
                generation=self._generation,
            )

            logger.debug(f"Intent {tx_id!r}: {intent.state.value} -> searching (generation {self._generation})")
            return BeginResult(token=AttemptToken(tx_id, self._generation))

    def complete(self, token: AttemptToken, outcome: Union[ReconciliationVerdict, BaseException]) -> bool:
        """
        Leave SEARCHING with the attempt's outcome

        Args:
            token: Token returned by begin()
            outcome: Verdict, or the exception the attempt raised

        Returns:
            True if applied, False if the token belongs to a superseded attempt
        """
        with self._lock:
            intent = self._intents.get(token.tx_id)

            if intent is None or intent.state != IntentState.SEARCHING or intent.generation != token.generation:
                logger.debug(f"Dropping stale completion for {token.tx_id!r} (generation {token.generation})")
                return False

            if isinstance(outcome, BaseException):
                reason = str(outcome) or type(outcome).__name__
                self._intents[token.tx_id] = DepositIntent(
                    tx_id=token.tx_id,
                    state=IntentState.FAILED,
                    generation=token.generation,
                    reason=reason,
                )
            elif outcome.found:
                self._intents[token.tx_id] = DepositIntent(
                    tx_id=token.tx_id,
                    state=IntentState.VERIFIED,
                    generation=token.generation,
                    verdict=outcome,
                )
            else:
                self._intents[token.tx_id] = DepositIntent(
                    tx_id=token.tx_id,
                    state=IntentState.FAILED,
                    generation=token.generation,
                    verdict=outcome,
                    reason=NOT_FOUND_REASON,
                )

            logger.debug(f"Intent {token.tx_id!r}: searching -> {self._intents[token.tx_id].state.value}")
            return True

    def mark_written(self, tx_id, deposit_id: int):
        """
        VERIFIED -> LEDGER_WRITTEN (one-way)

        Repeating with the same deposit id is a no-op.

        Raises:
            IllegalIntentTransition: From any other state, or with a different id
        """
        tx_id = TransactionIdentifier.parse(tx_id)

        with self._lock:
            intent = self._intents.get(tx_id, DepositIntent(tx_id=tx_id))

            if intent.state == IntentState.LEDGER_WRITTEN:
                if intent.deposit_id == deposit_id:
                    return
                raise IllegalIntentTransition(
                    tx_id.value,
                    f"{intent.state.value}({intent.deposit_id})",
                    f"{IntentState.LEDGER_WRITTEN.value}({deposit_id})"
                )

            if intent.state != IntentState.VERIFIED:
                raise IllegalIntentTransition(tx_id.value, intent.state.value, IntentState.LEDGER_WRITTEN.value)

            self._intents[tx_id] = DepositIntent(
                tx_id=tx_id,
                state=IntentState.LEDGER_WRITTEN,
                generation=intent.generation,
                verdict=intent.verdict,
                deposit_id=deposit_id,
            )

        logger.info(f"✓ Intent {tx_id!r} written as deposit {deposit_id}")

    def forget(self, tx_id) -> bool:
        """Drop a FAILED intent; returns True if something was removed"""
        tx_id = TransactionIdentifier.parse(tx_id)
        with self._lock:
            intent = self._intents.get(tx_id)
            if intent is not None and intent.state == IntentState.FAILED:
                del self._intents[tx_id]
                return True
            return False

    def snapshot(self) -> Dict[str, str]:
        """{hash: state} for diagnostics"""
        with self._lock:
            return {tx_id.value: intent.state.value for tx_id, intent in self._intents.items()}
