"""Database management module for the cooperative ledger."""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import pandas as pd

from coopledger.config import DEFAULT_DB_NAME, SETTING_DISMISSED_PREFIX
from coopledger.exceptions import (
    DatabaseError,
    TransactionError,
    DuplicateMemberIdError,
    MemberNotFoundError,
)
from coopledger.models import Member, Transaction

logger = logging.getLogger(__name__)

MEMBER_COLUMNS = [
    'id', 'first_name', 'last_name', 'social_protection_id', 'setup_complete',
    'initial_savings_usd', 'initial_loan_usd', 'loan_start_date', 'loan_payment_frequency',
    'loan_installment_usd', 'last_protection_payment_date', 'monthly_protection_fee_usd',
    'fund_contribution_usd', 'contribution_certificate_total',
]

TRANSACTION_COLUMNS = [
    'id', 'member_id', 'date', 'category', 'amount_bs', 'description', 'reference', 'months_paid',
]


class DatabaseManager:
    """Handles all SQLite database operations.

    Stores the member list, each member's transactions, the rate cache and
    a small key/value settings table.
    """

    def __init__(self, db_name=DEFAULT_DB_NAME):
        self.db_name = db_name
        self.conn = sqlite3.connect(db_name)
        self._closed = False
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if self.conn and not self._closed:
            self.conn.close()
            self._closed = True

    def __del__(self):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on failure.

        Usage:
            with db.transaction():
                cursor = db.conn.cursor()
                cursor.execute(...)

        Statements issued inside the block must not commit on their own.
        """
        try:
            yield
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error("Transaction rolled back: %s", e)
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            self.conn.rollback()
            raise

    def create_tables(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                social_protection_id TEXT,
                setup_complete INTEGER DEFAULT 0,
                initial_savings_usd REAL DEFAULT 0,
                initial_loan_usd REAL DEFAULT 0,
                loan_start_date TEXT,
                loan_payment_frequency TEXT,
                loan_installment_usd REAL DEFAULT 0,
                last_protection_payment_date TEXT,
                monthly_protection_fee_usd REAL,
                fund_contribution_usd REAL,
                contribution_certificate_total REAL DEFAULT 0,
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                member_id INTEGER NOT NULL,
                date TEXT NOT NULL,
                category TEXT NOT NULL,
                amount_bs REAL NOT NULL,
                description TEXT,
                reference TEXT,
                months_paid INTEGER,
                FOREIGN KEY(member_id) REFERENCES members(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rates (
                date TEXT PRIMARY KEY,
                rate REAL NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        self.conn.commit()

    # ========== MEMBER OPERATIONS ==========

    def _member_params(self, member):
        data = member.to_dict()
        data['setup_complete'] = 1 if member.setup_complete else 0
        return [data[col] for col in MEMBER_COLUMNS]

    def _row_to_member(self, cursor, row):
        cols = [description[0] for description in cursor.description]
        data = dict(zip(cols, row))
        data.pop('created_at', None)
        return Member.from_dict(data)

    def add_member(self, member):
        cursor = self.conn.cursor()
        placeholders = ", ".join("?" for _ in MEMBER_COLUMNS)
        try:
            cursor.execute(
                f"INSERT INTO members ({', '.join(MEMBER_COLUMNS)}, created_at) VALUES ({placeholders}, ?)",
                tuple(self._member_params(member) + [datetime.now().strftime("%Y-%m-%d %H:%M:%S")])
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            raise DuplicateMemberIdError(member.id)
        self.conn.commit()

    def save_member(self, member):
        """Persist a member snapshot in place (no history is kept)."""
        cursor = self.conn.cursor()
        set_clause = ", ".join(f"{col}=?" for col in MEMBER_COLUMNS[1:])
        params = self._member_params(member)
        cursor.execute(f"UPDATE members SET {set_clause} WHERE id=?", tuple(params[1:] + [member.id]))
        if cursor.rowcount == 0:
            self.conn.rollback()
            raise MemberNotFoundError(member.id)
        self.conn.commit()

    def get_member(self, member_id):
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM members WHERE id=?", (member_id,))
        row = cursor.fetchone()
        if row:
            return self._row_to_member(cursor, row)
        return None

    def get_members(self):
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM members ORDER BY created_at, id")
        return [self._row_to_member(cursor, row) for row in cursor.fetchall()]

    def change_member_id(self, old_id, member):
        """Re-key a member, its transactions and its dismissed notifications."""
        new_id = member.id
        if new_id != old_id and self.get_member(new_id) is not None:
            raise DuplicateMemberIdError(new_id)

        with self.transaction():
            cursor = self.conn.cursor()
            set_clause = ", ".join(f"{col}=?" for col in MEMBER_COLUMNS)
            cursor.execute(f"UPDATE members SET {set_clause} WHERE id=?",
                           tuple(self._member_params(member) + [old_id]))
            if cursor.rowcount == 0:
                raise MemberNotFoundError(old_id)
            cursor.execute("UPDATE transactions SET member_id=? WHERE member_id=?", (new_id, old_id))
            cursor.execute("UPDATE settings SET key=? WHERE key=?",
                           (f"{SETTING_DISMISSED_PREFIX}{new_id}", f"{SETTING_DISMISSED_PREFIX}{old_id}"))

    def delete_member(self, member_id):
        with self.transaction():
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM transactions WHERE member_id=?", (member_id,))
            cursor.execute("DELETE FROM settings WHERE key=?", (f"{SETTING_DISMISSED_PREFIX}{member_id}",))
            cursor.execute("DELETE FROM members WHERE id=?", (member_id,))

    # ========== TRANSACTION OPERATIONS ==========

    def get_transactions(self, member_id):
        """Get a member's transactions in recording order."""
        cursor = self.conn.cursor()
        cursor.execute(
            f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM transactions WHERE member_id=? ORDER BY seq",
            (member_id,)
        )
        return [Transaction.from_dict(dict(zip(TRANSACTION_COLUMNS, row))) for row in cursor.fetchall()]

    def replace_member_transactions(self, member_id, transactions):
        """Overwrite a member's stored transactions with the given list."""
        vals = []
        for tx in transactions:
            data = tx.to_dict()
            data['member_id'] = member_id
            vals.append(tuple(data[col] for col in TRANSACTION_COLUMNS))

        with self.transaction():
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM transactions WHERE member_id=?", (member_id,))
            cursor.executemany(f"""
                INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)})
                VALUES ({', '.join('?' for _ in TRANSACTION_COLUMNS)})
            """, vals)

    def get_ledger_df(self, member_id, start_date=None, end_date=None):
        query = "SELECT * FROM transactions WHERE member_id = ?"
        params = [member_id]

        if start_date:
            query += " AND date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND date <= ?"
            params.append(end_date)

        query += " ORDER BY date, seq"

        return pd.read_sql_query(query, self.conn, params=tuple(params))

    # ========== RATE OPERATIONS ==========

    def get_rates(self):
        cursor = self.conn.cursor()
        cursor.execute("SELECT date, rate FROM rates")
        return {date: rate for date, rate in cursor.fetchall()}

    def save_rates(self, rates):
        """Upsert every entry of a rate mapping. Existing dates are never removed."""
        with self.transaction():
            cursor = self.conn.cursor()
            cursor.executemany("INSERT OR REPLACE INTO rates (date, rate) VALUES (?, ?)",
                               [(date, float(rate)) for date, rate in rates.items()])

    # ========== SETTINGS ==========

    def get_setting(self, key, default=None):
        """Get a setting value."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM settings WHERE key=?", (key,))
        res = cursor.fetchone()
        return res[0] if res else default

    def set_setting(self, key, value):
        """Set a setting value."""
        cursor = self.conn.cursor()
        cursor.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))
        self.conn.commit()

    def delete_setting(self, key):
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM settings WHERE key=?", (key,))
        self.conn.commit()

    def get_dismissed_notifications(self, member_id):
        raw = self.get_setting(f"{SETTING_DISMISSED_PREFIX}{member_id}")
        if not raw:
            return []
        try:
            return list(json.loads(raw))
        except ValueError as e:
            raise DatabaseError("Corrupt dismissed notification list", {'member_id': member_id, 'error': str(e)})

    def set_dismissed_notifications(self, member_id, ids):
        self.set_setting(f"{SETTING_DISMISSED_PREFIX}{member_id}", json.dumps(sorted(set(ids))))
