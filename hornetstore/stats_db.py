"""SQLite records for the relay panel: bitcoin rates, wallet data, users and tokens."""

from __future__ import annotations

import dataclasses
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

import bcrypt

log = logging.getLogger(__name__)

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
_BCRYPT_ROUNDS = 10

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> str:
    """Format a datetime as a sortable UTC string; naive values count as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(_TIME_FORMAT)


def _from_db(text: str) -> datetime:
    return datetime.strptime(text, _TIME_FORMAT).replace(tzinfo=timezone.utc)


class RecordNotFound(LookupError):
    """Raised when a looked-up record does not exist."""


@dataclass
class BitcoinRate:
    rate: float
    timestamp: datetime | None = None
    id: int | None = None


@dataclass
class PendingTransaction:
    tx_id: str
    fee_rate: int
    amount: int
    recipient_address: str
    timestamp: datetime | None = None
    id: int | None = None


@dataclass
class ReplaceTransactionRequest:
    original_tx_id: str
    new_tx_id: str
    new_fee_rate: int
    amount: int
    recipient_address: str


@dataclass
class User:
    npub: str
    password: str
    id: int | None = None


@dataclass
class WalletBalance:
    balance: str
    timestamp: datetime | None = None
    id: int | None = None


@dataclass
class WalletTransaction:
    address: str
    date: datetime
    output: str
    value: str
    id: int | None = None


@dataclass
class WalletAddress:
    index: str
    address: str
    id: int | None = None


@dataclass
class UserChallenge:
    user_id: int
    npub: str
    challenge: str
    hash: str = ""
    expired: bool = False
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class ActiveToken:
    user_id: int
    token: str
    expires_at: datetime
    id: int | None = None


class StatsDatabase:
    """Panel records kept in one SQLite file, or in memory for ":memory:"."""

    _SCHEMA = """
    CREATE TABLE IF NOT EXISTS bitcoin_rates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        rate REAL NOT NULL,
        timestamp TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS pending_transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tx_id TEXT NOT NULL,
        fee_rate INTEGER NOT NULL,
        amount INTEGER NOT NULL,
        recipient_address TEXT NOT NULL,
        timestamp TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        npub TEXT NOT NULL,
        password TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS wallet_balances (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        balance TEXT NOT NULL,
        timestamp TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS wallet_transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        address TEXT NOT NULL,
        date TEXT NOT NULL,
        output TEXT NOT NULL,
        value TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS wallet_addresses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        "index" TEXT NOT NULL,
        address TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS user_challenges (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        npub TEXT NOT NULL,
        challenge TEXT NOT NULL,
        hash TEXT NOT NULL,
        expired INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS active_tokens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        token TEXT NOT NULL,
        expires_at TEXT NOT NULL
    );
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        with self._conn:
            self._conn.executescript(self._SCHEMA)

    def __enter__(self) -> StatsDatabase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- helpers -----------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _insert(self, sql: str, params: tuple) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(sql, params)
            return int(cursor.lastrowid)

    def _execute(self, sql: str, params: tuple = ()) -> int:
        with self._lock, self._conn:
            return self._conn.execute(sql, params).rowcount

    # -- bitcoin rates -----------------------------------------------------

    @staticmethod
    def _rate(row: tuple) -> BitcoinRate:
        return BitcoinRate(rate=row[1], timestamp=_from_db(row[2]), id=row[0])

    def _latest_rate(self) -> BitcoinRate | None:
        rows = self._query(
            "SELECT id, rate, timestamp FROM bitcoin_rates "
            "ORDER BY timestamp DESC, id DESC LIMIT 1"
        )
        return self._rate(rows[0]) if rows else None

    def save_bitcoin_rate(self, rate: float) -> bool:
        """Record rate unless it equals the latest one; tell whether it was stored."""
        latest = self._latest_rate()
        if latest is not None and latest.rate == rate:
            log.info("Rate is the same as the latest entry, no update needed")
            return False
        self._insert(
            "INSERT INTO bitcoin_rates (rate, timestamp) VALUES (?, ?)",
            (float(rate), _to_db(self._now())),
        )
        log.info("Bitcoin rate updated successfully")
        return True

    def update_bitcoin_rate(self, rate: float) -> bool:
        """Same as save_bitcoin_rate."""
        return self.save_bitcoin_rate(rate)

    def get_bitcoin_rates_last_30_days(self) -> list[BitcoinRate]:
        """Return the rates of the last 30 days, oldest first."""
        since = _to_db(self._now() - timedelta(days=30))
        rows = self._query(
            "SELECT id, rate, timestamp FROM bitcoin_rates WHERE timestamp >= ? "
            "ORDER BY timestamp ASC, id ASC",
            (since,),
        )
        return [self._rate(row) for row in rows]

    def get_latest_bitcoin_rate(self) -> BitcoinRate:
        """Return the latest rate, or a rate of 0.0 when none is recorded."""
        latest = self._latest_rate()
        return latest if latest is not None else BitcoinRate(rate=0.0)

    # -- pending transactions ---------------------------------------------

    @staticmethod
    def _pending(row: tuple) -> PendingTransaction:
        return PendingTransaction(
            tx_id=row[1],
            fee_rate=row[2],
            amount=row[3],
            recipient_address=row[4],
            timestamp=_from_db(row[5]),
            id=row[0],
        )

    _PENDING_COLUMNS = "id, tx_id, fee_rate, amount, recipient_address, timestamp"

    def _insert_pending(self, tx: PendingTransaction, timestamp: datetime) -> PendingTransaction:
        new_id = self._insert(
            "INSERT INTO pending_transactions "
            "(tx_id, fee_rate, amount, recipient_address, timestamp) VALUES (?, ?, ?, ?, ?)",
            (tx.tx_id, tx.fee_rate, tx.amount, tx.recipient_address, _to_db(timestamp)),
        )
        return dataclasses.replace(tx, timestamp=timestamp, id=new_id)

    def save_pending_transaction(self, transaction: PendingTransaction) -> PendingTransaction:
        """Store a transaction as given (now when it has no timestamp); return it with its id."""
        return self._insert_pending(transaction, transaction.timestamp or self._now())

    def save_unconfirmed_transaction(self, transaction: PendingTransaction) -> PendingTransaction:
        """Store a transaction stamped with the current time; return it with its id."""
        return self._insert_pending(transaction, self._now())

    def get_pending_transaction_by_id(self, transaction_id: int | str) -> PendingTransaction:
        rows = self._query(
            f"SELECT {self._PENDING_COLUMNS} FROM pending_transactions WHERE id = ?",
            (transaction_id,),
        )
        if not rows:
            raise RecordNotFound(f"pending transaction {transaction_id} not found")
        return self._pending(rows[0])

    def delete_pending_transaction(self, tx_id: str) -> bool:
        """Delete the first pending transaction with tx_id; tell whether one existed."""
        rows = self._query(
            "SELECT id FROM pending_transactions WHERE tx_id = ? ORDER BY id LIMIT 1", (tx_id,)
        )
        if not rows:
            log.info("No pending transaction found with TxID %s", tx_id)
            return False
        self._execute("DELETE FROM pending_transactions WHERE id = ?", (rows[0][0],))
        return True

    def replace_transaction(self, request: ReplaceTransactionRequest) -> PendingTransaction:
        """Swap a pending transaction for its replacement; raise when the original is absent."""
        now = self._now()
        with self._lock, self._conn:
            found = self._conn.execute(
                "SELECT id FROM pending_transactions WHERE tx_id = ? ORDER BY id LIMIT 1",
                (request.original_tx_id,),
            ).fetchone()
            if found is None:
                raise RecordNotFound(
                    f"no pending transaction found with TxID {request.original_tx_id}"
                )
            self._conn.execute("DELETE FROM pending_transactions WHERE id = ?", (found[0],))
            cursor = self._conn.execute(
                "INSERT INTO pending_transactions "
                "(tx_id, fee_rate, amount, recipient_address, timestamp) VALUES (?, ?, ?, ?, ?)",
                (
                    request.new_tx_id,
                    request.new_fee_rate,
                    request.amount,
                    request.recipient_address,
                    _to_db(now),
                ),
            )
        log.info("Deleted original pending transaction with TxID %s", request.original_tx_id)
        return PendingTransaction(
            tx_id=request.new_tx_id,
            fee_rate=request.new_fee_rate,
            amount=request.amount,
            recipient_address=request.recipient_address,
            timestamp=now,
            id=int(cursor.lastrowid),
        )

    def get_pending_transactions(self) -> list[PendingTransaction]:
        """Return all pending transactions, newest first."""
        rows = self._query(
            f"SELECT {self._PENDING_COLUMNS} FROM pending_transactions "
            "ORDER BY timestamp DESC, id DESC"
        )
        return [self._pending(row) for row in rows]

    # -- users -------------------------------------------------------------

    def sign_up_user(self, npub: str, password: str) -> User:
        """Store a user with a bcrypt hash of the password."""
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS))
        stored = hashed.decode("ascii")
        new_id = self._insert("INSERT INTO users (npub, password) VALUES (?, ?)", (npub, stored))
        return User(npub=npub, password=stored, id=new_id)

    def compare_passwords(self, hashed_password: str, password: str) -> None:
        """Raise ValueError unless password matches the bcrypt hash."""
        if not bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8")):
            raise ValueError("hashed password does not match the given password")

    def _user(self, where: str, param: Any) -> User:
        rows = self._query(f"SELECT id, npub, password FROM users WHERE {where} LIMIT 1", (param,))
        if not rows:
            raise RecordNotFound(f"user not found: {param}")
        row = rows[0]
        return User(npub=row[1], password=row[2], id=row[0])

    def find_user_by_npub(self, npub: str) -> User:
        return self._user("npub = ?", npub)

    def user_exists(self) -> bool:
        """Tell whether any user has signed up."""
        return self._query("SELECT COUNT(*) FROM users")[0][0] > 0

    def get_user_by_id(self, user_id: int) -> User:
        return self._user("id = ?", user_id)

    # -- wallet ------------------------------------------------------------

    def save_wallet_transaction(self, tx: WalletTransaction) -> WalletTransaction:
        new_id = self._insert(
            "INSERT INTO wallet_transactions (address, date, output, value) VALUES (?, ?, ?, ?)",
            (tx.address, _to_db(tx.date), tx.output, tx.value),
        )
        return dataclasses.replace(tx, id=new_id)

    def _latest_balance(self) -> WalletBalance | None:
        rows = self._query(
            "SELECT id, balance, timestamp FROM wallet_balances "
            "ORDER BY timestamp DESC, id DESC LIMIT 1"
        )
        if not rows:
            return None
        row = rows[0]
        return WalletBalance(balance=row[1], timestamp=_from_db(row[2]), id=row[0])

    def update_wallet_balance(self, wallet_name: str, balance: str) -> bool:
        """Record balance unless it equals the latest; the wallet name is not kept."""
        latest = self._latest_balance()
        if latest is not None and latest.balance == balance:
            log.info("Balance for %s is the same as the latest entry", wallet_name)
            return False
        self._insert(
            "INSERT INTO wallet_balances (balance, timestamp) VALUES (?, ?)",
            (balance, _to_db(self._now())),
        )
        return True

    def get_latest_wallet_balance(self) -> WalletBalance:
        """Return the latest balance, or a balance of "0" when none is recorded."""
        latest = self._latest_balance()
        return latest if latest is not None else WalletBalance(balance="0")

    def transaction_exists(self, address: str, date: datetime, output: str, value: str) -> bool:
        rows = self._query(
            "SELECT 1 FROM wallet_transactions "
            "WHERE address = ? AND date = ? AND output = ? AND value = ? LIMIT 1",
            (address, _to_db(date), output, value),
        )
        return bool(rows)

    def get_latest_wallet_transactions(self) -> list[WalletTransaction]:
        """Return all wallet transactions, most recent date first."""
        rows = self._query(
            "SELECT id, address, date, output, value FROM wallet_transactions "
            "ORDER BY date DESC, id DESC"
        )
        return [
            WalletTransaction(
                address=row[1], date=_from_db(row[2]), output=row[3], value=row[4], id=row[0]
            )
            for row in rows
        ]

    def fetch_wallet_addresses(self) -> list[WalletAddress]:
        rows = self._query('SELECT id, "index", address FROM wallet_addresses ORDER BY id')
        return [WalletAddress(index=row[1], address=row[2], id=row[0]) for row in rows]

    def save_address(self, address: WalletAddress) -> WalletAddress:
        new_id = self._insert(
            'INSERT INTO wallet_addresses ("index", address) VALUES (?, ?)',
            (address.index, address.address),
        )
        return dataclasses.replace(address, id=new_id)

    def address_exists(self, address: str) -> bool:
        return bool(
            self._query("SELECT 1 FROM wallet_addresses WHERE address = ? LIMIT 1", (address,))
        )

    # -- challenges and tokens ----------------------------------------------

    def save_user_challenge(self, challenge: UserChallenge) -> UserChallenge:
        created = challenge.created_at or self._now()
        new_id = self._insert(
            "INSERT INTO user_challenges "
            "(user_id, npub, challenge, hash, expired, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                challenge.user_id,
                challenge.npub,
                challenge.challenge,
                challenge.hash,
                int(challenge.expired),
                _to_db(created),
            ),
        )
        return dataclasses.replace(challenge, created_at=created, id=new_id)

    def get_user_challenge(self, challenge: str) -> UserChallenge:
        """Return the unexpired challenge with this text, or raise RecordNotFound."""
        rows = self._query(
            "SELECT id, user_id, npub, challenge, hash, expired, created_at "
            "FROM user_challenges WHERE challenge = ? AND expired = 0 ORDER BY id LIMIT 1",
            (challenge,),
        )
        if not rows:
            raise RecordNotFound(f"challenge not found: {challenge}")
        row = rows[0]
        return UserChallenge(
            user_id=row[1],
            npub=row[2],
            challenge=row[3],
            hash=row[4],
            expired=bool(row[5]),
            created_at=_from_db(row[6]),
            id=row[0],
        )

    def mark_challenge_expired(self, challenge: UserChallenge) -> None:
        """Mark a stored challenge expired, in the database and on the object."""
        if challenge.id is None:
            raise ValueError("challenge has not been saved")
        self._execute("UPDATE user_challenges SET expired = 1 WHERE id = ?", (challenge.id,))
        challenge.expired = True

    def store_active_token(self, token: ActiveToken) -> ActiveToken:
        new_id = self._insert(
            "INSERT INTO active_tokens (user_id, token, expires_at) VALUES (?, ?, ?)",
            (token.user_id, token.token, _to_db(token.expires_at)),
        )
        return dataclasses.replace(token, id=new_id)

    def delete_active_token(self, token: str) -> bool:
        """Delete a token; a missing token is not an error. Tell whether one was removed."""
        removed = self._execute("DELETE FROM active_tokens WHERE token = ?", (token,))
        if removed == 0:
            log.info("Token not found in active tokens, proceeding with logout")
        return removed > 0

    def is_active_token(self, token: str) -> bool:
        """Tell whether the token is stored and not yet expired."""
        rows = self._query(
            "SELECT 1 FROM active_tokens WHERE token = ? AND expires_at > ? LIMIT 1",
            (token, _to_db(self._now())),
        )
        return bool(rows)