"""Payment status service for the cooperative ledger.

Loan and social protection obligations are evaluated independently from
the reconstructed balances and the current date. Statuses are never stored;
they are recomputed on demand.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from coopledger.config import DUE_SOON_DAYS, MONTH_NAMES
from coopledger.models import parse_date, parse_month, format_month


class LoanStatus(Enum):
    NO_LOAN = "no_loan"
    OK = "ok"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


class ProtectionStatus(Enum):
    NOT_APPLICABLE = "not_applicable"
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


class NotificationLevel(Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class LoanPaymentStatus:
    status: LoanStatus
    next_payment_date: Optional[date] = None
    amount_usd: float = 0.0


@dataclass(frozen=True)
class ProtectionPaymentStatus:
    status: ProtectionStatus
    due_month: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    level: NotificationLevel
    message: str


def month_display(month_str):
    """Render a YYYY-MM anchor as e.g. 'March 2024'."""
    if not month_str:
        return "No payments"
    anchor = parse_month(month_str)
    return f"{MONTH_NAMES[anchor.month - 1]} {anchor.year}"


class PaymentStatusEngine:
    """Computes due-date statuses for one member.

    Args:
        member: Member profile with the loan terms and protection anchor.
        recalculator: BalanceRecalculator over the member's history.
    """

    def __init__(self, member, recalculator):
        self.member = member
        self.recalculator = recalculator

    def loan_status(self, today: date = None, loan_balance_usd: float = None) -> LoanPaymentStatus:
        member = self.member
        today = today or date.today()
        if (not member.initial_loan_usd or member.initial_loan_usd <= 0
                or not member.loan_start_date or member.loan_payment_frequency is None):
            return LoanPaymentStatus(LoanStatus.NO_LOAN)

        if loan_balance_usd is None:
            loan_balance_usd = self.recalculator.loan_balance()
        if loan_balance_usd <= 0:
            return LoanPaymentStatus(LoanStatus.OK)

        last_payment = self.recalculator.last_loan_payment_date() or member.loan_start_date
        next_payment = member.loan_payment_frequency.advance(parse_date(last_payment))
        installment = float(member.loan_installment_usd or 0)

        if today >= next_payment:
            return LoanPaymentStatus(LoanStatus.OVERDUE, next_payment, installment)
        if today >= next_payment - timedelta(days=DUE_SOON_DAYS):
            return LoanPaymentStatus(LoanStatus.DUE_SOON, next_payment, installment)
        return LoanPaymentStatus(LoanStatus.OK, next_payment, installment)

    def protection_status(self, today: date = None) -> ProtectionPaymentStatus:
        if not self.member.has_protection:
            return ProtectionPaymentStatus(ProtectionStatus.NOT_APPLICABLE)

        today = today or date.today()
        current_month = today.replace(day=1)
        last_paid = self.recalculator.last_protection_month()
        if last_paid is None:
            return ProtectionPaymentStatus(ProtectionStatus.PENDING, format_month(current_month))

        next_due = parse_month(last_paid) + relativedelta(months=1)
        if next_due > current_month:
            return ProtectionPaymentStatus(ProtectionStatus.PAID, format_month(next_due))
        if next_due == current_month:
            return ProtectionPaymentStatus(ProtectionStatus.PENDING, format_month(next_due))
        return ProtectionPaymentStatus(ProtectionStatus.OVERDUE, format_month(next_due))

    def notifications(self, dismissed_ids: Iterable[str] = (), today: date = None) -> List[Notification]:
        """Alerts for obligations that are due soon or late.

        Ids depend only on the obligation type and its due date, so a
        dismissal keeps suppressing the same alert on every recomputation.
        """
        dismissed = set(dismissed_ids)
        result = []

        loan = self.loan_status(today)
        if loan.status in (LoanStatus.DUE_SOON, LoanStatus.OVERDUE):
            due = loan.next_payment_date.isoformat()
            if loan.status is LoanStatus.DUE_SOON:
                message = f"Your loan installment of {loan.amount_usd:.2f} USD is due on {due}."
                level = NotificationLevel.WARNING
            else:
                message = f"Your loan installment of {loan.amount_usd:.2f} USD was due on {due}."
                level = NotificationLevel.ERROR
            result.append(Notification(f"loan-{due}", "loan", level, message))

        protection = self.protection_status(today)
        if protection.status in (ProtectionStatus.PENDING, ProtectionStatus.OVERDUE):
            month = month_display(protection.due_month)
            if protection.status is ProtectionStatus.PENDING:
                message = f"Protection payment for {month} is pending."
                level = NotificationLevel.WARNING
            else:
                message = f"Protection payment for {month} is overdue."
                level = NotificationLevel.ERROR
            result.append(Notification(f"protection-{protection.due_month}", "protection", level, message))

        return [n for n in result if n.id not in dismissed]
