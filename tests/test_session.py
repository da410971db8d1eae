"""End-to-end tests for the ledger session controller."""
import os
import sys
import unittest
from datetime import date

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from coopledger.database import DatabaseManager
from coopledger.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    NoActiveMemberError,
    OverpaymentRejectedError,
)
from coopledger.models import TransactionCategory
from coopledger.receipt_scan import ReceiptScan
from coopledger.services.payment_status import LoanStatus
from coopledger.session import LedgerSession

C = TransactionCategory


class SessionTestCase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.session = LedgerSession(self.db)
        self.session.register(1001, "Ana", "Perez")
        self.session.complete_setup(
            initial_savings_usd=100, initial_loan_usd=500, loan_start_date="2024-01-01",
            loan_payment_frequency="monthly", loan_installment_usd=50,
        )

    def tearDown(self):
        self.db.close()


class TestDeposits(SessionTestCase):

    def test_deposit_updates_balances_and_rates(self):
        created = self.session.submit_deposit(2000, 40, "2024-02-01", reference="REF1", loan_payment_usd=20)

        self.assertEqual([t.category for t in created], [C.LOAN, C.SAVINGS])
        balances = self.session.balances()
        self.assertAlmostEqual(balances.savings_usd, 130)
        self.assertAlmostEqual(balances.loan_balance_usd, 480)
        self.assertEqual(self.session.state.rates.get("2024-02-01"), 40)
        self.assertEqual(self.session.state.last_used_rate, 40)
        self.assertEqual(self.session.state.last_group, created)

    def test_rejected_deposit_leaves_state_untouched(self):
        with self.assertLogs('coopledger.session', level='INFO'):
            with self.assertRaises(InsufficientFundsError):
                self.session.submit_deposit(2000, 40, "2024-03-01", loan_payment_usd=60)
        self.assertEqual(len(self.session.store), 0)
        self.assertNotIn("2024-03-01", self.session.state.rates)
        self.assertIsNone(self.session.state.last_used_rate)

    def test_state_survives_reload(self):
        self.session.submit_deposit(2000, 40, "2024-02-01", reference="REF1", loan_payment_usd=20)

        reloaded = LedgerSession(self.db)

        self.assertEqual(reloaded.member.id, 1001)
        self.assertEqual(reloaded.store.transactions, self.session.store.transactions)
        self.assertEqual(reloaded.state.rates, self.session.state.rates)
        self.assertEqual(reloaded.state.last_used_rate, 40)
        self.assertEqual(reloaded.balances(), self.session.balances())

    def test_certificate_payment_capped_by_pending(self):
        self.session.submit_deposit(2000, 40, "2024-02-01", certificate_payment_usd=10)
        self.assertEqual(self.session.balances().certificate.pending, 0)
        with self.assertRaises(OverpaymentRejectedError):
            self.session.submit_deposit(2000, 40, "2024-02-02", certificate_payment_usd=1)

    def test_withdrawal_and_receipt(self):
        self.session.submit_deposit(2000, 40, "2024-02-01", reference="REF1", loan_payment_usd=20)
        with self.assertRaises(InsufficientFundsError):
            self.session.submit_withdrawal(200, 50, "2024-02-05")

        created = self.session.submit_withdrawal(30, 50, "2024-02-05")

        self.assertAlmostEqual(self.session.balances().savings_usd, 100)
        receipt = self.session.receipt()
        self.assertTrue(receipt.is_withdrawal)
        self.assertAlmostEqual(receipt.total_usd, 30)
        self.assertAlmostEqual(receipt.total_bs, 1500)
        self.assertEqual(self.session.state.last_used_rate, 50)

        self.session.delete_group(created[0].id)
        self.assertAlmostEqual(self.session.balances().savings_usd, 130)

    def test_receipt_lines_in_category_order(self):
        created = self.session.submit_deposit(2000, 40, "2024-02-01", reference="REF1",
                                              loan_payment_usd=10, certificate_payment_usd=5)
        receipt = self.session.receipt(created[-1].id)
        self.assertEqual([line.category for line in receipt.lines],
                         [C.LOAN, C.CONTRIBUTION_CERTIFICATE, C.SAVINGS])
        self.assertAlmostEqual(receipt.total_usd, 50)
        self.assertEqual(receipt.member_name, "Ana Perez")
        self.assertEqual(receipt.rate, 40)

    def test_scan_prefill_uses_last_rate(self):
        self.session.submit_deposit(2000, 40, "2024-02-01")
        prefill = self.session.prefill_from_scan(ReceiptScan("25/07/2024", "Bs. 1.234,56", " 0012345 "))
        self.assertEqual(prefill.date, "2024-07-25")
        self.assertAlmostEqual(prefill.total_amount_bs, 1234.56)
        self.assertEqual(prefill.reference, "0012345")
        self.assertEqual(prefill.rate, 40)


class TestEditing(SessionTestCase):

    def setUp(self):
        super().setUp()
        self.group = self.session.submit_deposit(2000, 40, "2024-02-01", reference="REF1",
                                                 loan_payment_usd=20, certificate_payment_usd=10)

    def test_start_edit_prefills_and_restores_caps(self):
        group, prefill, caps = self.session.start_edit(self.group[0].id)

        self.assertEqual(group, self.group)
        self.assertAlmostEqual(prefill.total_amount_bs, 2000)
        self.assertAlmostEqual(prefill.loan_payment_usd, 20)
        self.assertAlmostEqual(prefill.certificate_payment_usd, 10)
        self.assertAlmostEqual(caps['loan_balance_usd'], 500)
        self.assertAlmostEqual(caps['certificate_pending_usd'], 10)

    def test_submit_edit_replaces_group(self):
        old_ids = [t.id for t in self.group]

        created = self.session.submit_edit(old_ids, 2000, 40, "2024-02-01", reference="REF1",
                                           loan_payment_usd=30, certificate_payment_usd=10)

        ids = [t.id for t in self.session.store]
        self.assertEqual(ids, [t.id for t in created])
        self.assertFalse(set(old_ids) & set(ids))
        balances = self.session.balances()
        self.assertAlmostEqual(balances.loan_balance_usd, 470)
        self.assertAlmostEqual(balances.savings_usd, 110)
        self.assertEqual(len(self.db.get_transactions(1001)), 3)

    def test_rejected_edit_keeps_old_group(self):
        old_ids = [t.id for t in self.group]
        with self.assertRaises(InsufficientFundsError):
            self.session.submit_edit(old_ids, 2000, 40, "2024-02-01", reference="REF1", loan_payment_usd=80)
        self.assertEqual(self.session.store.transactions, self.group)


class TestAccountFlow(SessionTestCase):

    def test_first_setup_clears_transactions(self):
        self.session.register(2002, "Luis", "Rojas")
        self.session.submit_deposit(400, 40, "2024-02-01")
        self.session.complete_setup(initial_savings_usd=5)
        self.assertEqual(len(self.session.store), 0)
        self.assertEqual(self.db.get_transactions(2002), [])

        self.session.submit_deposit(400, 40, "2024-02-02")
        self.session.complete_setup(initial_savings_usd=6)
        self.assertEqual(len(self.session.store), 1)

    def test_back_from_setup_removes_new_member(self):
        self.session.register(3003, "Eva", "Diaz")
        self.session.back_from_setup()
        self.assertIsNone(self.db.get_member(3003))
        self.assertIsNone(self.session.state.current_member)

    def test_logout_and_login(self):
        self.session.logout()
        with self.assertRaises(NoActiveMemberError):
            self.session.balances()
        self.assertIsNone(LedgerSession(self.db).state.current_member)
        self.session.login("1001")
        self.assertEqual(self.session.member.full_name, "Ana Perez")

    def test_rename_current_member(self):
        self.session.submit_deposit(2000, 40, "2024-02-01")
        self.session.update_member(1001, "Ana", "Perez", 4004)
        self.assertEqual(self.session.member.id, 4004)
        self.assertEqual([t.member_id for t in self.session.store], [4004])
        self.assertEqual([m.id for m in self.session.state.members], [4004])

    def test_deleting_current_member_logs_out(self):
        self.session.delete_member(1001)
        self.assertIsNone(self.session.state.current_member)
        self.assertEqual(self.session.state.members, [])

    def test_deleting_current_member_by_typed_id_logs_out(self):
        """Ids typed as text match the logged-in member."""
        self.session.delete_member("1001")
        self.assertIsNone(self.session.state.current_member)
        with self.assertRaises(NoActiveMemberError):
            self.session.submit_deposit(2000, 40, "2024-02-01")
        self.assertEqual(self.db.get_transactions(1001), [])

    def test_renaming_current_member_by_typed_id(self):
        self.session.update_member("1001", "Ana", "Perez", "4004")
        self.assertEqual(self.session.member.id, 4004)

        self.session.submit_deposit(2000, 40, "2024-02-01")

        self.assertEqual(self.db.get_transactions(1001), [])
        self.assertEqual(len(self.db.get_transactions(4004)), 1)

    def test_rejected_setup_is_logged(self):
        self.session.register(2002, "Luis", "Rojas")
        with self.assertLogs('coopledger.session', level='INFO') as logs:
            with self.assertRaises(InvalidAmountError):
                self.session.complete_setup(initial_savings_usd=-5)
        self.assertIn("Setup rejected", logs.output[0])
        self.assertFalse(self.session.member.setup_complete)

    def test_add_loan_and_protection(self):
        member = self.session.add_loan(200, "2024-03-01", "weekly", 20)
        self.assertEqual(member.initial_loan_usd, 700)
        self.assertEqual(self.session.balances().loan_balance_usd, 700)

        self.session.add_protection_id("SP-7", "2024-01")
        self.assertEqual(self.session.last_protection_display(), "January 2024")
        self.session.submit_deposit(2000, 40, "2024-02-01", protection_months=2)
        self.assertEqual(self.session.last_protection_display(), "March 2024")

    def test_dismissed_notifications_persist(self):
        today = date(2024, 2, 1)
        self.assertEqual(self.session.loan_status(today).status, LoanStatus.OVERDUE)
        notes = self.session.notifications(today)
        self.assertEqual([n.id for n in notes], ["loan-2024-02-01"])

        self.session.dismiss_notification("loan-2024-02-01")

        self.assertEqual(self.session.notifications(today), [])
        self.assertEqual(LedgerSession(self.db).notifications(today), [])

    def test_dismiss_all(self):
        self.session.add_protection_id("SP-7", "2023-12")
        today = date(2024, 2, 1)
        self.assertEqual(len(self.session.notifications(today)), 2)
        self.session.dismiss_all_notifications(today)
        self.assertEqual(self.session.notifications(today), [])


if __name__ == '__main__':
    unittest.main()
