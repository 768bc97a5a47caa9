"""
Deposit Session

UI-facing boundary for one user's deposit form:

- on_input(raw): validate, start (or join) a reconciliation, emit the outcome
- confirm_deposit(verdict): credit a verified, recipient-matching deposit once

A hash already being searched by another session is followed through the
shared intent tracker until that search settles.

Every input bumps a display generation. A result that arrives after the user
has typed something else is dropped without emitting.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from loguru import logger

from .deposit_ledger import DepositLedger, DepositRecord
from .exceptions import BelowMinimumDeposit, DuplicateDeposit, RecipientMismatchError, UnsupportedToken
from .hash_validator import TransactionIdentifier, validate
from .intent_tracker import DepositIntentTracker, IntentState
from .reconciliation_engine import ReconciliationEngine, ReconciliationVerdict

# Event kinds / observable states
IDLE = 'idle'
SEARCHING = 'searching'
VERIFIED = 'verified'
NOT_FOUND = 'not_found'
ERROR = 'error'
ALREADY_PROCESSED = 'already_processed'


@dataclass(frozen=True)
class SessionEvent:
    """One emission to subscribers"""
    kind: str
    tx_id: Optional[TransactionIdentifier] = None
    verdict: Optional[ReconciliationVerdict] = None
    reason: Optional[str] = None
    deposit_id: Optional[int] = None


class DepositSession:
    """
    Deposit form controller for one user

    The intent tracker may be shared between sessions; it is what prevents a
    hash from being searched twice at once or credited twice.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        tracker: DepositIntentTracker,
        ledger: DepositLedger,
        user_id: str,
        min_deposit_amount=Decimal('30'),
        poll_interval: float = 0.05,
        join_timeout: Optional[float] = None,
    ):
        """
        Initialize session

        Args:
            engine: Reconciliation engine
            tracker: Intent tracker (shared across sessions)
            ledger: Deposit ledger
            user_id: User the deposits are credited to
            min_deposit_amount: Smallest amount confirm_deposit accepts
            poll_interval: Tracker polling period while another session searches (seconds)
            join_timeout: Longest wait for another session's search (defaults to
                three probe timeouts)
        """
        self.engine = engine
        self.tracker = tracker
        self.ledger = ledger
        self.user_id = str(user_id)
        self.min_deposit_amount = Decimal(str(min_deposit_amount))
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout if join_timeout is not None else engine.probe_timeout * 3

        self.state = IDLE
        self._display_generation = 0
        self._subscribers: List[Callable[[SessionEvent], None]] = []
        self._inflight: Dict[TransactionIdentifier, asyncio.Task] = {}

    def subscribe(self, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """
        Register a listener

        Returns:
            Function that removes the listener
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: SessionEvent):
        self.state = event.kind
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on {event.kind}: {e}")

    async def _search(self, token) -> ReconciliationVerdict:
        """Run one reconciliation attempt and settle its intent"""
        try:
            verdict = await self.engine.reconcile(token.tx_id)
        except Exception as e:
            self.tracker.complete(token, e)
            raise

        self.tracker.complete(token, verdict)
        self.ledger.record_verdict(verdict)
        return verdict

    async def on_input(self, raw_input) -> Optional[ReconciliationVerdict]:
        """
        Handle a new value in the transaction hash field

        Invalid input resets the session to idle without emitting. A hash
        already credited emits already_processed without any lookup.

        Returns:
            The verdict if it is still current, else None

        Raises:
            MalformedLookupResponse: If the lookup service answered with garbage
                (after emitting error)
        """
        self._display_generation += 1
        generation = self._display_generation

        if not validate(raw_input):
            self.state = IDLE
            return None

        tx_id = TransactionIdentifier.parse(raw_input)
        begin = self.tracker.begin(tx_id)

        if begin.already_written:
            self._emit(SessionEvent(ALREADY_PROCESSED, tx_id=tx_id, deposit_id=begin.deposit_id))
            return None

        if begin.started:
            task = asyncio.ensure_future(self._search(begin.token))
            self._inflight[tx_id] = task
            task.add_done_callback(lambda _, key=tx_id, t=task: self._forget_task(key, t))
        else:
            # Another attempt is searching; join ours or follow the tracker
            logger.debug(f"{begin.error}")
            task = self._inflight.get(tx_id)

        self._emit(SessionEvent(SEARCHING, tx_id=tx_id))
        if task is None:
            return await self._follow_search(tx_id, generation)

        try:
            verdict = await asyncio.shield(task)
        except Exception as e:
            if generation != self._display_generation:
                logger.debug(f"Dropping stale failure for {tx_id!r}: {e}")
                return None
            self._emit(SessionEvent(ERROR, tx_id=tx_id, reason=str(e)))
            raise

        if generation != self._display_generation:
            logger.debug(f"Dropping stale verdict for {tx_id!r} (generation {generation})")
            return None

        self._emit_verdict(tx_id, verdict)
        return verdict

    def _emit_verdict(self, tx_id: TransactionIdentifier, verdict: ReconciliationVerdict):
        if verdict.found:
            self._emit(SessionEvent(VERIFIED, tx_id=tx_id, verdict=verdict))
        elif verdict.all_probes_failed:
            self._emit(SessionEvent(ERROR, tx_id=tx_id, verdict=verdict, reason="All network lookups failed"))
        else:
            self._emit(SessionEvent(NOT_FOUND, tx_id=tx_id, verdict=verdict))

    async def _follow_search(self, tx_id: TransactionIdentifier, generation: int) -> Optional[ReconciliationVerdict]:
        """
        Wait for a search owned by another session and emit its outcome

        The outcome is read from the shared tracker once the intent leaves
        SEARCHING. Gives up silently if the user types something else, and
        emits error if the search outlives join_timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.join_timeout

        intent = self.tracker.current(tx_id)
        while intent.state == IntentState.SEARCHING:
            if loop.time() >= deadline:
                logger.warning(f"⚠ Gave up waiting for the running search of {tx_id!r}")
                self._emit(SessionEvent(ERROR, tx_id=tx_id, reason="Timed out waiting for the running search"))
                return None

            await asyncio.sleep(self.poll_interval)
            if generation != self._display_generation:
                return None
            intent = self.tracker.current(tx_id)

        if intent.state == IntentState.LEDGER_WRITTEN:
            self._emit(SessionEvent(ALREADY_PROCESSED, tx_id=tx_id, deposit_id=intent.deposit_id))
            return None

        if intent.verdict is None:
            # Search raised, or the intent was forgotten meanwhile
            self._emit(SessionEvent(ERROR, tx_id=tx_id, reason=intent.reason or "Search did not complete"))
            return None

        self._emit_verdict(tx_id, intent.verdict)
        return intent.verdict

    def _forget_task(self, tx_id: TransactionIdentifier, task: asyncio.Task):
        if self._inflight.get(tx_id) is task:
            del self._inflight[tx_id]

    async def confirm_deposit(self, verdict: ReconciliationVerdict) -> DepositRecord:
        """
        Credit a verified deposit to the session's user

        Safe to call repeatedly: the same record is returned every time. The
        ledger is always consulted, so a hash credited to another user is
        reported as already processed.

        Raises:
            RecipientMismatchError: Verdict not found or not sent to our address
            UnsupportedToken: Transfer was not in an accepted deposit token
            BelowMinimumDeposit: Amount below the configured minimum
            DuplicateDeposit: Hash already credited with different details
                (after emitting already_processed)
        """
        if not verdict.found or not verdict.is_recipient_matching:
            raise RecipientMismatchError(
                verdict.tx_id.value,
                verdict.recipient_address,
                verdict.expected_recipient
            )

        if not verdict.is_token_accepted:
            raise UnsupportedToken(verdict.tx_id.value, verdict.token_symbol, self.engine.accepted_tokens)

        if verdict.suggested_amount is None or verdict.suggested_amount < self.min_deposit_amount:
            raise BelowMinimumDeposit(verdict.suggested_amount, self.min_deposit_amount)

        try:
            record = self.ledger.create_from_verdict(self.user_id, verdict)
        except DuplicateDeposit as e:
            self._emit(SessionEvent(ALREADY_PROCESSED, tx_id=verdict.tx_id, deposit_id=e.existing_deposit_id))
            raise

        intent = self.tracker.current(verdict.tx_id)
        if intent.state in (IntentState.VERIFIED, IntentState.LEDGER_WRITTEN):
            self.tracker.mark_written(verdict.tx_id, record.deposit_id)
        else:
            logger.warning(
                f"⚠ Deposit #{record.deposit_id} written for {verdict.tx_id!r} "
                f"while intent is {intent.state.value}"
            )

        return record
