"""Session controller for the cooperative ledger.

LedgerSession owns the application state (members, the active member's
transactions, the rate cache) and drives the engines in
coopledger.services for every user action. Each action either completes
and is persisted, or raises and leaves the state untouched.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from coopledger.config import SETTING_CURRENT_MEMBER_ID, SETTING_LAST_USED_RATE
from coopledger.exceptions import MemberNotFoundError, NoActiveMemberError, ValidationError
from coopledger.models import Member, Transaction
from coopledger.rates import RateCache, validate_rate
from coopledger.receipt_scan import prefill_from_scan
from coopledger.reports import HistoryReport, build_receipt
from coopledger.services import (
    BalanceRecalculator,
    DistributionEngine,
    MemberService,
    PaymentStatusEngine,
    TransactionStore,
)
from coopledger.services.member_service import parse_member_id
from coopledger.services.payment_status import month_display

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the active user is working with."""
    members: List[Member] = field(default_factory=list)
    current_member: Optional[Member] = None
    store: Optional[TransactionStore] = None
    rates: RateCache = field(default_factory=RateCache)
    last_used_rate: Optional[float] = None
    dismissed_notifications: List[str] = field(default_factory=list)
    last_group: List[Transaction] = field(default_factory=list)


class LedgerSession:
    """Handles user actions, interfacing with DatabaseManager.

    Attributes:
        db: DatabaseManager instance for data persistence.
        state: AppState for the current user.
        member_service: MemberService instance (lazy-loaded).
    """

    def __init__(self, db_manager, id_factory=None):
        self.db = db_manager
        self._id_factory = id_factory
        self._member_service = None
        self.state = AppState()
        self.reload()

    @property
    def member_service(self):
        """Lazy-load MemberService instance."""
        if self._member_service is None:
            self._member_service = MemberService(self.db)
        return self._member_service

    # ========== STATE ==========

    def reload(self):
        """Load members, rates and the remembered login from storage."""
        self.state.members = self.db.get_members()
        self.state.rates = RateCache(self.db.get_rates())
        last_rate = self.db.get_setting(SETTING_LAST_USED_RATE)
        self.state.last_used_rate = float(last_rate) if last_rate else None

        current_id = self.db.get_setting(SETTING_CURRENT_MEMBER_ID)
        member = self.db.get_member(int(current_id)) if current_id else None
        if member is not None:
            self._activate(member)
        else:
            self._deactivate()

    def _activate(self, member):
        self.state.current_member = member
        self.state.store = TransactionStore(member.id, self.db.get_transactions(member.id), self._id_factory)
        self.state.dismissed_notifications = self.db.get_dismissed_notifications(member.id)
        self.state.last_group = []
        self.db.set_setting(SETTING_CURRENT_MEMBER_ID, member.id)

    def _deactivate(self):
        self.state.current_member = None
        self.state.store = None
        self.state.dismissed_notifications = []
        self.state.last_group = []
        self.db.delete_setting(SETTING_CURRENT_MEMBER_ID)

    def _refresh_members(self):
        self.state.members = self.db.get_members()

    def _require_member(self):
        if self.state.current_member is None:
            raise NoActiveMemberError()

    @property
    def member(self) -> Member:
        self._require_member()
        return self.state.current_member

    @property
    def store(self) -> TransactionStore:
        self._require_member()
        return self.state.store

    def _set_member(self, member):
        self.state.current_member = member
        self._refresh_members()

    def _persist_ledger(self):
        member = self.member
        self.db.replace_member_transactions(member.id, self.state.store.transactions)
        self.db.save_rates(self.state.rates.to_dict())
        if self.state.last_used_rate is not None:
            self.db.set_setting(SETTING_LAST_USED_RATE, self.state.last_used_rate)

    def _rejected(self, action, error):
        logger.info("%s rejected: %s", action, error.message)

    # ========== ACCOUNT ==========

    def register(self, member_id, first_name, last_name, social_protection_id=None):
        """Register a member and log it in; setup is still pending."""
        try:
            member = self.member_service.register(member_id, first_name, last_name, social_protection_id)
        except ValidationError as e:
            self._rejected("Registration", e)
            raise
        self._refresh_members()
        self._activate(member)
        return member

    def login(self, member_id):
        member = self.member_service.login(member_id)
        self._activate(member)
        logger.info("Member %s logged in", member.id)
        return member

    def logout(self):
        if self.state.current_member is not None:
            logger.info("Member %s logged out", self.state.current_member.id)
        self._deactivate()

    switch_account = logout

    def complete_setup(self, today=None, **setup):
        """Save the setup form.

        The first completed setup starts the ledger from the entered
        balances, so any transactions already present are discarded.
        """
        member = self.member
        first_time = not member.setup_complete
        try:
            updated = self.member_service.complete_setup(member, today=today, **setup)
        except ValidationError as e:
            self._rejected("Setup", e)
            raise
        self._set_member(updated)
        if first_time:
            self.state.store = TransactionStore(updated.id, [], self._id_factory)
            self.db.replace_member_transactions(updated.id, [])
            logger.info("Member %s completed setup", updated.id)
        return updated

    def back_from_setup(self):
        """Abandon a registration whose setup was never completed."""
        member = self.member
        if not member.setup_complete:
            self.member_service.delete_member(member.id)
            self._refresh_members()
        self._deactivate()

    def add_protection_id(self, protection_id, last_protection_payment_date, monthly_protection_fee_usd=None):
        updated = self.member_service.add_protection_id(
            self.member, protection_id, last_protection_payment_date, monthly_protection_fee_usd)
        self._set_member(updated)
        return updated

    def add_loan(self, amount_usd, start_date, frequency, installment_usd):
        updated = self.member_service.add_loan(
            self.member, self.store.transactions, amount_usd, start_date, frequency, installment_usd)
        self._set_member(updated)
        return updated

    def update_member(self, member_id, first_name, last_name, new_id):
        """Rename a member (possibly to a new savings id)."""
        member_id = parse_member_id(member_id)
        member = self.db.get_member(member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        updated = self.member_service.update_identity(member, first_name, last_name, new_id)
        self._refresh_members()
        current = self.state.current_member
        if current is not None and current.id == member_id:
            self._activate(updated)
        return updated

    def delete_member(self, member_id):
        """Delete a member and its transactions; deleting yourself logs out."""
        member_id = parse_member_id(member_id)
        self.member_service.delete_member(member_id)
        self._refresh_members()
        current = self.state.current_member
        if current is not None and current.id == member_id:
            self._deactivate()

    # ========== BALANCES & STATUS ==========

    def recalculator(self) -> BalanceRecalculator:
        return BalanceRecalculator(self.member, self.store.transactions, self.state.rates)

    def balances(self):
        return self.recalculator().snapshot()

    def status_engine(self) -> PaymentStatusEngine:
        return PaymentStatusEngine(self.member, self.recalculator())

    def loan_status(self, today=None):
        return self.status_engine().loan_status(today)

    def protection_status(self, today=None):
        return self.status_engine().protection_status(today)

    def last_protection_display(self):
        return month_display(self.recalculator().last_protection_month())

    def notifications(self, today=None):
        return self.status_engine().notifications(self.state.dismissed_notifications, today)

    def dismiss_notification(self, notification_id):
        dismissed = set(self.state.dismissed_notifications)
        dismissed.add(notification_id)
        self.state.dismissed_notifications = sorted(dismissed)
        self.db.set_dismissed_notifications(self.member.id, self.state.dismissed_notifications)

    def dismiss_all_notifications(self, today=None):
        for notification in self.notifications(today):
            self.dismiss_notification(notification.id)

    # ========== OPERATIONS ==========

    def preview_deposit(self, total_amount_bs, rate, date, reference="", description="",
                        loan_payment_usd=0.0, certificate_payment_usd=0.0, protection_months=0):
        """Compute a deposit's breakdown without recording it."""
        return DistributionEngine(self.member).distribute(
            total_amount_bs, rate, date, reference, description,
            loan_payment_usd, certificate_payment_usd, protection_months,
            certificate_pending_usd=self.recalculator().certificate_pending(),
        )

    def _remember_rate(self, date, rate):
        self.state.rates.set_rate(date, rate)
        self.state.last_used_rate = validate_rate(rate)

    def submit_deposit(self, total_amount_bs, rate, date, reference="", description="",
                       loan_payment_usd=0.0, certificate_payment_usd=0.0, protection_months=0):
        """Distribute and record one bulk deposit as a transaction group."""
        try:
            result = self.preview_deposit(total_amount_bs, rate, date, reference, description,
                                          loan_payment_usd, certificate_payment_usd, protection_months)
            created = self.store.add_group(result.drafts)
        except ValidationError as e:
            self._rejected("Deposit", e)
            raise

        self._remember_rate(created[0].date, result.rate)
        self._persist_ledger()
        self.state.last_group = created
        logger.info("Member %s deposited %.2f USD in %d rows", self.member.id, result.total_usd, len(created))
        return created

    def submit_withdrawal(self, amount_usd, rate, date, reference="", description=""):
        try:
            draft = DistributionEngine(self.member).withdrawal(
                amount_usd, rate, date, self.recalculator().savings_balance(), reference, description)
            created = self.store.add_group([draft])
        except ValidationError as e:
            self._rejected("Withdrawal", e)
            raise

        self._remember_rate(draft.date, rate)
        self._persist_ledger()
        self.state.last_group = created
        logger.info("Member %s withdrew %s USD", self.member.id, amount_usd)
        return created

    def group_of(self, tx_id):
        group = self.store.group_of(tx_id)
        if not group:
            raise ValidationError("Transaction group not found", {'id': tx_id})
        return group

    def start_edit(self, tx_id):
        """Pre-fill the deposit form from the group containing ``tx_id``.

        Returns:
            (group, prefill, caps) where caps holds the loan balance and
            certificate pending as they were before this group.
        """
        group = self.group_of(tx_id)
        prefill = DistributionEngine.prefill_from_group(group, self.state.rates)
        before = self.recalculator().excluding(tx.id for tx in group)
        caps = {
            'loan_balance_usd': before.loan_balance(),
            'certificate_pending_usd': before.certificate_pending(),
        }
        return group, prefill, caps

    def submit_edit(self, old_ids, total_amount_bs, rate, date, reference="", description="",
                    loan_payment_usd=0.0, certificate_payment_usd=0.0, protection_months=0):
        """Replace an existing group with a newly distributed one."""
        old_ids = list(old_ids)
        try:
            before = self.recalculator().excluding(old_ids)
            result = DistributionEngine(self.member).distribute(
                total_amount_bs, rate, date, reference, description,
                loan_payment_usd, certificate_payment_usd, protection_months,
                certificate_pending_usd=before.certificate_pending(),
            )
            created = self.store.replace_group(old_ids, result.drafts)
        except ValidationError as e:
            self._rejected("Edit", e)
            raise

        self._remember_rate(created[0].date, result.rate)
        self._persist_ledger()
        self.state.last_group = created
        logger.info("Member %s replaced %d rows with %d", self.member.id, len(old_ids), len(created))
        return created

    def delete_group(self, tx_id):
        """Delete the whole operation that ``tx_id`` belongs to."""
        group = self.group_of(tx_id)
        removed = self.store.remove_group(tx.id for tx in group)
        if any(tx in removed for tx in self.state.last_group):
            self.state.last_group = []
        self._persist_ledger()
        logger.info("Member %s deleted %d rows", self.member.id, len(removed))
        return removed

    # ========== OUTPUTS ==========

    def history_report(self) -> HistoryReport:
        return HistoryReport(self.member, self.store.transactions, self.state.rates)

    def export_csv(self, output_path):
        return self.history_report().export_csv(output_path)

    def export_excel(self, output_path):
        return self.history_report().export_excel(output_path)

    def receipt(self, tx_id=None):
        """Receipt for the group of ``tx_id``, or for the last recorded group."""
        group = self.group_of(tx_id) if tx_id else self.state.last_group
        if not group:
            raise ValidationError("No operation to show a receipt for")
        return build_receipt(self.member, group, self.state.rates)

    def prefill_from_scan(self, scan):
        self._require_member()
        return prefill_from_scan(scan, self.state.last_used_rate)
