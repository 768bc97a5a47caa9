"""
Deposit Ledger

SQLite ledger of credited deposits with idempotent creation keyed by
transaction hash.

Tables:
- deposits: One row per transaction hash (UNIQUE), amounts stored as exact
  decimal text
- reconciliation_log: Audit trail of every completed reconciliation verdict
"""

import json
import sqlite3
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .exceptions import DepositNotFound, DuplicateDeposit, IllegalDepositState
from .hash_validator import TransactionIdentifier
from .network_lookup import Network
from .reconciliation_engine import ReconciliationVerdict
from .vip_eligibility import CumulativeDeposits

STATUS_PENDING = 'PENDING'
STATUS_CONFIRMED = 'CONFIRMED'
STATUS_FAILED = 'FAILED'
STATUS_EXPIRED = 'EXPIRED'

DEPOSIT_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_FAILED, STATUS_EXPIRED)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DepositRecord:
    """Ledger row"""
    deposit_id: int
    tx_id: str
    user_id: str
    network: str
    amount: Decimal
    status: str
    sender_address: Optional[str]
    recipient_address: Optional[str]
    block_number: Optional[int]
    admin_notes: Optional[str]
    created_at: str
    confirmed_at: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'DepositRecord':
        return cls(
            deposit_id=row['id'],
            tx_id=row['tx_hash'],
            user_id=row['user_id'],
            network=row['network'],
            amount=Decimal(row['amount']),
            status=row['status'],
            sender_address=row['sender_address'],
            recipient_address=row['recipient_address'],
            block_number=row['block_number'],
            admin_notes=row['admin_notes'],
            created_at=row['created_at'],
            confirmed_at=row['confirmed_at'],
        )

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        data = asdict(self)
        data['amount'] = str(self.amount)
        return data


class DepositLedger:
    """
    SQLite deposit ledger

    Features:
    - Idempotent create (same hash -> same record, conflicting reuse rejected)
    - Deposit history and pending counts per user
    - Hash correction on pending deposits
    - Manual admin verification
    - Cumulative confirmed deposits for VIP eligibility
    - Reconciliation audit log
    """

    def __init__(self, db_path: str = "deposit_ledger.db"):
        """
        Initialize database

        Args:
            db_path: Path to SQLite database (':memory:' for a throwaway ledger)
        """
        self.db_path = Path(db_path) if db_path != ':memory:' else db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()
        self._initialize_db()
        logger.info(f"Deposit ledger initialized: {self.db_path}")

    @classmethod
    def from_config(cls, config: Dict) -> 'DepositLedger':
        return cls(config['ledger']['db_path'])

    def _initialize_db(self):
        """Initialize database and create tables"""
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        """Create database tables"""
        cursor = self.conn.cursor()

        # Table 1: Deposits (one per transaction hash)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS deposits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tx_hash TEXT UNIQUE NOT NULL,
                user_id TEXT NOT NULL,
                network TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'PENDING',
                sender_address TEXT,
                recipient_address TEXT,
                block_number INTEGER,
                admin_notes TEXT,
                created_at TIMESTAMP NOT NULL,
                confirmed_at TIMESTAMP,
                CONSTRAINT valid_status CHECK (status IN ('PENDING', 'CONFIRMED', 'FAILED', 'EXPIRED'))
            )
        """)

        # Table 2: Reconciliation log (audit trail)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reconciliation_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tx_hash TEXT NOT NULL,
                found BOOLEAN NOT NULL,
                matched_network TEXT,
                is_recipient_matching BOOLEAN DEFAULT 0,
                ambiguous BOOLEAN DEFAULT 0,
                verdict_json TEXT NOT NULL,
                recorded_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_deposits_user ON deposits(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_deposits_status ON deposits(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_deposits_created ON deposits(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reconciliation_tx ON reconciliation_log(tx_hash)")

        self.conn.commit()
        logger.debug("Ledger tables created successfully")

    def _fetch_by_hash(self, tx_hash: str) -> Optional[DepositRecord]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM deposits WHERE tx_hash = ?", (tx_hash,))
        row = cursor.fetchone()
        return DepositRecord.from_row(row) if row else None

    @staticmethod
    def _check_same(existing: DepositRecord, user_id: str, network: Network, amount: Decimal):
        """Raise DuplicateDeposit if a re-submission disagrees with the stored row"""
        if existing.user_id != str(user_id) or existing.network != network.value or existing.amount != amount:
            logger.error(
                f"✗ Conflicting reuse of {existing.tx_id}: stored "
                f"({existing.user_id}, {existing.network}, {existing.amount}) vs "
                f"({user_id}, {network.value}, {amount})"
            )
            raise DuplicateDeposit(existing.tx_id, existing.deposit_id)

    def create(
        self,
        tx_id,
        user_id: str,
        network,
        amount,
        confirmed: bool = False,
        sender_address: Optional[str] = None,
        recipient_address: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> DepositRecord:
        """
        Create a deposit, idempotently on the transaction hash

        Args:
            tx_id: Transaction hash (raw or TransactionIdentifier)
            user_id: Crediting user
            network: Network (or alias)
            amount: Deposit amount in quote units
            confirmed: Record as CONFIRMED instead of PENDING

        Returns:
            The new record, or the existing one if this exact deposit exists

        Raises:
            InvalidIdentifier: If the hash is malformed
            DuplicateDeposit: If the hash is already recorded with different
                user, network or amount
        """
        tx_id = TransactionIdentifier.parse(tx_id)
        network = Network.from_name(network)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {amount}")

        with self._write_lock:
            existing = self._fetch_by_hash(tx_id.value)
            if existing is not None:
                self._check_same(existing, user_id, network, amount)
                logger.info(f"Deposit for {tx_id!r} already exists (id {existing.deposit_id})")
                return existing

            now = _now()
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    INSERT INTO deposits (
                        tx_hash, user_id, network, amount, status,
                        sender_address, recipient_address, block_number,
                        created_at, confirmed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    tx_id.value,
                    str(user_id),
                    network.value,
                    str(amount),
                    STATUS_CONFIRMED if confirmed else STATUS_PENDING,
                    sender_address,
                    recipient_address,
                    block_number,
                    now,
                    now if confirmed else None,
                ))
                self.conn.commit()

            except sqlite3.IntegrityError:
                # Another connection inserted the same hash first
                self.conn.rollback()
                existing = self._fetch_by_hash(tx_id.value)
                if existing is None:
                    raise
                self._check_same(existing, user_id, network, amount)
                return existing

            record = self.get(cursor.lastrowid)

        logger.info(
            f"✓ Deposit recorded: #{record.deposit_id} {record.amount} on {record.network} "
            f"for user {record.user_id} ({record.status})"
        )
        return record

    def create_from_verdict(self, user_id: str, verdict: ReconciliationVerdict) -> DepositRecord:
        """Create a deposit from a found verdict (CONFIRMED if confirmed on chain)"""
        if not verdict.found:
            raise ValueError(f"Cannot create a deposit from a not-found verdict for {verdict.tx_id}")

        return self.create(
            verdict.tx_id,
            user_id,
            verdict.matched_network,
            verdict.suggested_amount,
            confirmed=bool(verdict.is_confirmed),
            sender_address=verdict.sender_address,
            recipient_address=verdict.recipient_address,
            block_number=verdict.block_number,
        )

    def get(self, deposit_id: int) -> DepositRecord:
        """
        Get deposit by id

        Raises:
            DepositNotFound: If no such deposit
        """
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM deposits WHERE id = ?", (deposit_id,))
        row = cursor.fetchone()
        if row is None:
            raise DepositNotFound(deposit_id)
        return DepositRecord.from_row(row)

    def get_by_tx_id(self, tx_id) -> Optional[DepositRecord]:
        """Get deposit by transaction hash (None if not recorded)"""
        return self._fetch_by_hash(TransactionIdentifier.parse(tx_id).value)

    def list_deposits(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[DepositRecord]:
        """
        Deposit history, newest first

        Args:
            user_id: Filter by user (all users if None)
            status: Filter by status
            limit: Page size
            offset: Rows to skip
        """
        if status is not None and status not in DEPOSIT_STATUSES:
            raise ValueError(f"Invalid status: {status}")

        clauses = []
        params: List[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(str(user_id))
        if status is not None:
            clauses.append("status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = self.conn.cursor()
        cursor.execute(
            f"SELECT * FROM deposits {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset)
        )
        return [DepositRecord.from_row(row) for row in cursor.fetchall()]

    def pending_count(self, user_id: Optional[str] = None) -> int:
        cursor = self.conn.cursor()
        if user_id is None:
            cursor.execute("SELECT COUNT(*) FROM deposits WHERE status = ?", (STATUS_PENDING,))
        else:
            cursor.execute(
                "SELECT COUNT(*) FROM deposits WHERE user_id = ? AND status = ?",
                (str(user_id), STATUS_PENDING)
            )
        return cursor.fetchone()[0]

    def _require_pending(self, deposit_id: int, operation: str) -> DepositRecord:
        record = self.get(deposit_id)
        if record.status != STATUS_PENDING:
            raise IllegalDepositState(deposit_id, record.status, operation)
        return record

    def update_transaction_hash(self, deposit_id: int, new_tx_id) -> DepositRecord:
        """
        Correct the hash of a pending deposit

        Raises:
            InvalidIdentifier: If the new hash is malformed
            IllegalDepositState: If the deposit is no longer PENDING
            DuplicateDeposit: If the new hash belongs to another deposit
        """
        new_tx_id = TransactionIdentifier.parse(new_tx_id)

        with self._write_lock:
            record = self._require_pending(deposit_id, 'update hash of')

            other = self._fetch_by_hash(new_tx_id.value)
            if other is not None and other.deposit_id != deposit_id:
                raise DuplicateDeposit(new_tx_id.value, other.deposit_id)

            cursor = self.conn.cursor()
            cursor.execute(
                "UPDATE deposits SET tx_hash = ? WHERE id = ?",
                (new_tx_id.value, deposit_id)
            )
            self.conn.commit()

        logger.info(f"Deposit #{deposit_id} hash updated: {record.tx_id[:10]}... -> {new_tx_id!r}")
        return self.get(deposit_id)

    def confirm(self, deposit_id: int, block_number: Optional[int] = None) -> DepositRecord:
        """
        PENDING -> CONFIRMED after on-chain verification

        Raises:
            IllegalDepositState: If the deposit is not PENDING
        """
        with self._write_lock:
            self._require_pending(deposit_id, 'confirm')
            cursor = self.conn.cursor()
            cursor.execute("""
                UPDATE deposits
                SET status = ?, confirmed_at = ?, block_number = COALESCE(?, block_number)
                WHERE id = ?
            """, (STATUS_CONFIRMED, _now(), block_number, deposit_id))
            self.conn.commit()

        logger.info(f"✓ Deposit #{deposit_id} confirmed")
        return self.get(deposit_id)

    def manual_verify(self, deposit_id: int, admin_id: str, notes: Optional[str] = None) -> DepositRecord:
        """
        Confirm a pending deposit on an admin's authority

        Raises:
            DepositNotFound: If no such deposit
            IllegalDepositState: If the deposit is not PENDING
        """
        with self._write_lock:
            self._require_pending(deposit_id, 'manually verify')
            admin_notes = f"Manually verified by {admin_id}" + (f": {notes}" if notes else "")
            cursor = self.conn.cursor()
            cursor.execute("""
                UPDATE deposits
                SET status = ?, confirmed_at = ?, admin_notes = ?
                WHERE id = ?
            """, (STATUS_CONFIRMED, _now(), admin_notes, deposit_id))
            self.conn.commit()

        logger.info(f"✓ Deposit #{deposit_id} manually verified by admin {admin_id}")
        return self.get(deposit_id)

    def mark_failed(self, deposit_id: int, reason: str) -> DepositRecord:
        """
        PENDING -> FAILED

        Raises:
            IllegalDepositState: If the deposit is not PENDING
        """
        with self._write_lock:
            self._require_pending(deposit_id, 'fail')
            cursor = self.conn.cursor()
            cursor.execute(
                "UPDATE deposits SET status = ?, admin_notes = ? WHERE id = ?",
                (STATUS_FAILED, reason, deposit_id)
            )
            self.conn.commit()

        logger.warning(f"✗ Deposit #{deposit_id} marked failed: {reason}")
        return self.get(deposit_id)

    def expire_stale(self, max_age: timedelta) -> int:
        """
        Expire PENDING deposits older than max_age

        Returns:
            Number of deposits expired
        """
        cutoff = (datetime.now(timezone.utc) - max_age).isoformat()

        with self._write_lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "UPDATE deposits SET status = ? WHERE status = ? AND created_at < ?",
                (STATUS_EXPIRED, STATUS_PENDING, cutoff)
            )
            self.conn.commit()
            expired = cursor.rowcount

        if expired:
            logger.info(f"Expired {expired} stale pending deposit(s)")
        return expired

    def cumulative_deposits(self, user_id: str) -> CumulativeDeposits:
        """Total of a user's CONFIRMED deposits"""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT amount FROM deposits WHERE user_id = ? AND status = ?",
            (str(user_id), STATUS_CONFIRMED)
        )
        amounts = [Decimal(row['amount']) for row in cursor.fetchall()]
        return CumulativeDeposits(sum(amounts, Decimal('0')), len(amounts))

    def record_verdict(self, verdict: ReconciliationVerdict):
        """Append a completed verdict to the audit log"""
        with self._write_lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                INSERT INTO reconciliation_log (
                    tx_hash, found, matched_network, is_recipient_matching,
                    ambiguous, verdict_json, recorded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                verdict.tx_id.value,
                verdict.found,
                verdict.matched_network.value if verdict.matched_network else None,
                verdict.is_recipient_matching,
                verdict.ambiguous,
                json.dumps(verdict.to_dict()),
                _now(),
            ))
            self.conn.commit()

        logger.debug(f"Verdict for {verdict.tx_id!r} logged")

    def recent_verdicts(self, tx_id=None, limit: int = 20) -> List[Dict]:
        """Audit log entries, newest first (optionally for one hash)"""
        cursor = self.conn.cursor()
        if tx_id is None:
            cursor.execute(
                "SELECT * FROM reconciliation_log ORDER BY id DESC LIMIT ?",
                (limit,)
            )
        else:
            cursor.execute(
                "SELECT * FROM reconciliation_log WHERE tx_hash = ? ORDER BY id DESC LIMIT ?",
                (TransactionIdentifier.parse(tx_id).value, limit)
            )

        entries = []
        for row in cursor.fetchall():
            entry = dict(row)
            entry['found'] = bool(entry['found'])
            entry['is_recipient_matching'] = bool(entry['is_recipient_matching'])
            entry['ambiguous'] = bool(entry['ambiguous'])
            entry['verdict'] = json.loads(entry.pop('verdict_json'))
            entries.append(entry)
        return entries

    def get_statistics(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Deposit statistics

        Returns:
            Statistics dictionary
        """
        cursor = self.conn.cursor()
        if user_id is None:
            cursor.execute("SELECT status, amount FROM deposits")
        else:
            cursor.execute("SELECT status, amount FROM deposits WHERE user_id = ?", (str(user_id),))

        counts = {status: 0 for status in DEPOSIT_STATUSES}
        confirmed_volume = Decimal('0')
        for row in cursor.fetchall():
            counts[row['status']] += 1
            if row['status'] == STATUS_CONFIRMED:
                confirmed_volume += Decimal(row['amount'])

        return {
            'total_deposits': sum(counts.values()),
            'confirmed': counts[STATUS_CONFIRMED],
            'pending': counts[STATUS_PENDING],
            'failed': counts[STATUS_FAILED],
            'expired': counts[STATUS_EXPIRED],
            'confirmed_volume': confirmed_volume,
        }

    def print_statistics(self):
        """Print statistics"""
        stats = self.get_statistics()

        print("\n" + "="*80)
        print("DEPOSIT STATISTICS")
        print("="*80)
        print(f"Total Deposits:       {stats['total_deposits']}")
        print(f"Confirmed:            {stats['confirmed']}")
        print(f"Pending:              {stats['pending']}")
        print(f"Failed:               {stats['failed']}")
        print(f"Expired:              {stats['expired']}")
        print(f"Confirmed Volume:     ${stats['confirmed_volume']:,.2f}")
        print("="*80 + "\n")

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Ledger connection closed")


if __name__ == "__main__":
    import sys

    ledger = DepositLedger(sys.argv[1] if len(sys.argv) > 1 else "deposit_ledger.db")
    ledger.print_statistics()
    ledger.close()
