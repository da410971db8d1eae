"""Tests for SQLite persistence."""
import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from coopledger.database import DatabaseManager
from coopledger.exceptions import DatabaseError, MemberNotFoundError, TransactionError
from coopledger.models import LoanFrequency, Member, Transaction, TransactionCategory

C = TransactionCategory


def tx(tx_id, tx_date, category=C.SAVINGS, amount_bs=100.0, months_paid=None):
    return Transaction(id=tx_id, member_id=1, date=tx_date, category=category, amount_bs=amount_bs,
                       reference="R1", months_paid=months_paid)


class TestDatabaseManager(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.member = Member(id=1, first_name="Ana", last_name="Perez", setup_complete=True,
                             initial_loan_usd=500, loan_start_date="2024-01-01",
                             loan_payment_frequency=LoanFrequency.MONTHLY, loan_installment_usd=50)
        self.db.add_member(self.member)

    def tearDown(self):
        self.db.close()

    def test_member_round_trip(self):
        self.assertEqual(self.db.get_member(1), self.member)
        self.assertEqual(self.db.get_members(), [self.member])

    def test_save_member_in_place(self):
        updated = self.member.with_changes(initial_savings_usd=42.5)
        self.db.save_member(updated)
        self.assertEqual(self.db.get_member(1).initial_savings_usd, 42.5)
        with self.assertRaises(MemberNotFoundError):
            self.db.save_member(updated.with_changes(id=99))

    def test_transactions_keep_recording_order(self):
        rows = [
            tx("b", "2024-03-01"),
            tx("a", "2024-01-01", C.SOCIAL_PROTECTION, 120.0, months_paid=1),
        ]
        self.db.replace_member_transactions(1, rows)
        self.assertEqual(self.db.get_transactions(1), rows)

    def test_failed_replace_rolls_back(self):
        """A write that breaks a constraint leaves the previous rows in place."""
        self.db.replace_member_transactions(1, [tx("a", "2024-01-01")])
        with self.assertRaises(TransactionError):
            self.db.replace_member_transactions(1, [tx("dup", "2024-02-01"), tx("dup", "2024-02-02")])
        self.assertEqual([t.id for t in self.db.get_transactions(1)], ["a"])

    def test_rates_are_upserted_never_removed(self):
        self.db.save_rates({"2024-01-01": 40, "2024-01-02": 41})
        self.db.save_rates({"2024-01-02": 42})
        self.assertEqual(self.db.get_rates(), {"2024-01-01": 40.0, "2024-01-02": 42.0})

    def test_settings(self):
        self.assertEqual(self.db.get_setting("missing", "x"), "x")
        self.db.set_setting("last_used_rate", 40.5)
        self.assertEqual(self.db.get_setting("last_used_rate"), "40.5")
        self.db.delete_setting("last_used_rate")
        self.assertIsNone(self.db.get_setting("last_used_rate"))

    def test_dismissed_notifications(self):
        self.assertEqual(self.db.get_dismissed_notifications(1), [])
        self.db.set_dismissed_notifications(1, ["b", "a", "a"])
        self.assertEqual(self.db.get_dismissed_notifications(1), ["a", "b"])

        self.db.set_setting("dismissed_notifications_1", "{not json")
        with self.assertRaises(DatabaseError):
            self.db.get_dismissed_notifications(1)

    def test_ledger_df_date_filter(self):
        self.db.replace_member_transactions(1, [tx("a", "2024-01-01"), tx("b", "2024-02-01"),
                                                tx("c", "2024-03-01")])
        df = self.db.get_ledger_df(1, start_date="2024-01-15", end_date="2024-02-28")
        self.assertEqual(list(df['id']), ["b"])

    def test_delete_member_removes_transactions(self):
        self.db.replace_member_transactions(1, [tx("a", "2024-01-01")])
        self.db.delete_member(1)
        self.assertIsNone(self.db.get_member(1))
        self.assertEqual(self.db.get_transactions(1), [])


if __name__ == '__main__':
    unittest.main()
