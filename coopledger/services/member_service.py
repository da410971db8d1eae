"""Member service for the cooperative ledger.

This service handles the member profile lifecycle:
- Registration and login lookup
- Initial setup (and later edits of it)
- Social protection enrolment
- New loan tranches
- Renaming and deleting members

Every change produces a new Member snapshot that is saved in place.
"""
import logging
from datetime import date

from dateutil.relativedelta import relativedelta

from coopledger.config import (
    DEFAULT_CERTIFICATE_TOTAL_USD,
    DEFAULT_FUND_CONTRIBUTION_USD,
    DEFAULT_MONTHLY_PROTECTION_FEE_USD,
)
from coopledger.exceptions import (
    DuplicateMemberIdError,
    InvalidAmountError,
    MemberNotFoundError,
    ValidationError,
)
from coopledger.models import (
    LoanFrequency,
    Member,
    TransactionCategory,
    format_date,
    format_month,
    parse_date,
    parse_month,
)

logger = logging.getLogger(__name__)


def parse_member_id(value) -> int:
    """Parse a savings id typed by the member."""
    try:
        member_id = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError("Savings id must be a number", {'value': value})
    if member_id <= 0:
        raise ValidationError("Savings id must be a positive number", {'value': value})
    return member_id


def parse_frequency(value) -> LoanFrequency:
    if isinstance(value, LoanFrequency):
        return value
    try:
        return LoanFrequency(str(value).strip().lower())
    except ValueError:
        raise ValidationError("Unknown loan payment frequency", {'value': value})


def _non_negative(field, value, default=0.0):
    if value is None or value == "":
        return default
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidAmountError(field, value)
    if amount < 0:
        raise InvalidAmountError(field, value, "cannot be negative")
    return amount


def _positive(field, value):
    amount = _non_negative(field, value)
    if amount <= 0:
        raise InvalidAmountError(field, value)
    return amount


def _required_text(field, value):
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required", {'field': field})
    return text


def previous_month(today: date = None) -> str:
    today = today or date.today()
    return format_month(today.replace(day=1) - relativedelta(months=1))


class MemberService:
    """Handles member profile operations.

    Args:
        db_manager: DatabaseManager instance for data persistence.
    """

    def __init__(self, db_manager):
        self.db = db_manager

    def register(self, member_id, first_name, last_name, social_protection_id=None) -> Member:
        """Create a member with setup still pending.

        Raises:
            ValidationError: Missing names or a non-numeric id.
            DuplicateMemberIdError: The id is already registered.
        """
        member = Member(
            id=parse_member_id(member_id),
            first_name=_required_text("First name", first_name),
            last_name=_required_text("Last name", last_name),
            social_protection_id=(social_protection_id or "").strip() or None,
            setup_complete=False,
            monthly_protection_fee_usd=DEFAULT_MONTHLY_PROTECTION_FEE_USD,
            fund_contribution_usd=DEFAULT_FUND_CONTRIBUTION_USD,
        )
        if self.db.get_member(member.id) is not None:
            raise DuplicateMemberIdError(member.id)
        self.db.add_member(member)
        logger.info("Registered member %s", member.id)
        return member

    def login(self, member_id) -> Member:
        member = self.db.get_member(parse_member_id(member_id))
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def complete_setup(self, member, initial_savings_usd=0.0, initial_loan_usd=0.0,
                       loan_start_date=None, loan_payment_frequency=LoanFrequency.MONTHLY,
                       loan_installment_usd=0.0, contribution_certificate_total=DEFAULT_CERTIFICATE_TOTAL_USD,
                       last_protection_payment_date=None, monthly_protection_fee_usd=None,
                       fund_contribution_usd=None, today=None) -> Member:
        """Apply the initial setup form and mark the member active.

        Loan terms are only kept when an initial loan is given; protection
        settings only when the member has a protection id.
        """
        changes = {
            'setup_complete': True,
            'initial_savings_usd': _non_negative("initial_savings_usd", initial_savings_usd),
            'contribution_certificate_total': _non_negative(
                "contribution_certificate_total", contribution_certificate_total),
        }

        loan = _non_negative("initial_loan_usd", initial_loan_usd)
        changes['initial_loan_usd'] = loan
        if loan > 0:
            if not loan_start_date:
                raise ValidationError("Loan start date is required", {'field': 'loan_start_date'})
            changes['loan_start_date'] = format_date(parse_date(loan_start_date))
            changes['loan_payment_frequency'] = parse_frequency(loan_payment_frequency or LoanFrequency.MONTHLY)
            changes['loan_installment_usd'] = _non_negative("loan_installment_usd", loan_installment_usd)
        else:
            changes['loan_start_date'] = None
            changes['loan_payment_frequency'] = None
            changes['loan_installment_usd'] = 0.0

        if member.has_protection:
            last_month = last_protection_payment_date or previous_month(today)
            changes['last_protection_payment_date'] = format_month(parse_month(last_month))
            changes['monthly_protection_fee_usd'] = _non_negative(
                "monthly_protection_fee_usd", monthly_protection_fee_usd, DEFAULT_MONTHLY_PROTECTION_FEE_USD)
            changes['fund_contribution_usd'] = _non_negative(
                "fund_contribution_usd", fund_contribution_usd, DEFAULT_FUND_CONTRIBUTION_USD)

        updated = member.with_changes(**changes)
        self.db.save_member(updated)
        return updated

    def add_protection_id(self, member, protection_id, last_protection_payment_date,
                          monthly_protection_fee_usd=None) -> Member:
        protection_id = _required_text("Social protection id", protection_id)
        if not last_protection_payment_date:
            raise ValidationError("Last paid protection month is required",
                                  {'field': 'last_protection_payment_date'})

        updated = member.with_changes(
            social_protection_id=protection_id,
            last_protection_payment_date=format_month(parse_month(last_protection_payment_date)),
            monthly_protection_fee_usd=_non_negative(
                "monthly_protection_fee_usd", monthly_protection_fee_usd, DEFAULT_MONTHLY_PROTECTION_FEE_USD),
        )
        self.db.save_member(updated)
        return updated

    def add_loan(self, member, transactions, amount_usd, start_date, frequency, installment_usd) -> Member:
        """Register a new loan tranche on top of any unpaid balance.

        The principal is added to the initial loan. The start date moves only
        when the new loan starts strictly after the latest loan payment.
        """
        amount = _positive("amount_usd", amount_usd)
        installment = _positive("installment_usd", installment_usd)
        if not start_date:
            raise ValidationError("Loan start date is required", {'field': 'start_date'})
        start = parse_date(start_date)

        payment_dates = [parse_date(tx.date) for tx in transactions if tx.category is TransactionCategory.LOAN]
        last_payment = max(payment_dates) if payment_dates else None

        changes = {
            'initial_loan_usd': float(member.initial_loan_usd or 0) + amount,
            'loan_payment_frequency': parse_frequency(frequency),
            'loan_installment_usd': installment,
        }
        if last_payment is None or start > last_payment:
            changes['loan_start_date'] = format_date(start)

        updated = member.with_changes(**changes)
        self.db.save_member(updated)
        logger.info("Member %s took a new loan of %.2f USD", member.id, amount)
        return updated

    def update_identity(self, member, first_name, last_name, new_id) -> Member:
        """Rename a member and optionally move it to a new savings id."""
        updated = member.with_changes(
            id=parse_member_id(new_id),
            first_name=_required_text("First name", first_name),
            last_name=_required_text("Last name", last_name),
        )
        if updated.id == member.id:
            self.db.save_member(updated)
        else:
            self.db.change_member_id(member.id, updated)
        return updated

    def delete_member(self, member_id):
        member_id = parse_member_id(member_id)
        if self.db.get_member(member_id) is None:
            raise MemberNotFoundError(member_id)
        self.db.delete_member(member_id)
        logger.info("Deleted member %s", member_id)
