"""Domain model for the cooperative ledger.

Members and transactions are immutable snapshots: every edit produces a new
instance via ``dataclasses.replace`` and balances are never stored on them.
"""
from dataclasses import dataclass, asdict, replace
from datetime import datetime, date, timedelta
from enum import Enum
from typing import Optional, List, Iterable

from dateutil.relativedelta import relativedelta

from coopledger.config import (
    DATE_FORMAT_STORAGE,
    MONTH_FORMAT_STORAGE,
    DEFAULT_MONTHLY_PROTECTION_FEE_USD,
    DEFAULT_FUND_CONTRIBUTION_USD,
    WEEKLY_PERIOD_DAYS,
    BIWEEKLY_PERIOD_DAYS,
)
from coopledger.exceptions import InvalidDateError


class TransactionCategory(Enum):
    SAVINGS = "SAVINGS"
    LOAN = "LOAN"
    SOCIAL_PROTECTION = "SOCIAL_PROTECTION"
    FUND = "FUND"
    CONTRIBUTION_CERTIFICATE = "CONTRIBUTION_CERTIFICATE"


# Receipt line order
CATEGORY_SORT_ORDER = {
    TransactionCategory.LOAN: 0,
    TransactionCategory.CONTRIBUTION_CERTIFICATE: 1,
    TransactionCategory.SOCIAL_PROTECTION: 2,
    TransactionCategory.FUND: 3,
    TransactionCategory.SAVINGS: 4,
}

CATEGORY_LABELS = {
    TransactionCategory.SAVINGS: "Savings",
    TransactionCategory.LOAN: "Loan",
    TransactionCategory.SOCIAL_PROTECTION: "Social Protection",
    TransactionCategory.FUND: "Special Fund",
    TransactionCategory.CONTRIBUTION_CERTIFICATE: "Contribution Certificate",
}


def _check_category_tables():
    for name, table in (("CATEGORY_SORT_ORDER", CATEGORY_SORT_ORDER), ("CATEGORY_LABELS", CATEGORY_LABELS)):
        missing = set(TransactionCategory) - set(table)
        if missing:
            raise RuntimeError(f"{name} has no entry for {sorted(c.name for c in missing)}")


_check_category_tables()


def category_label(category: TransactionCategory) -> str:
    return CATEGORY_LABELS[category]


def sort_by_category(transactions: Iterable["Transaction"]) -> List["Transaction"]:
    """Return transactions in canonical receipt order (stable within a category)."""
    return sorted(transactions, key=lambda tx: CATEGORY_SORT_ORDER[tx.category])


class LoanFrequency(Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    def advance(self, start: date, periods: int = 1) -> date:
        """Move ``start`` forward by ``periods`` installments of this frequency."""
        if self is LoanFrequency.WEEKLY:
            return start + timedelta(days=WEEKLY_PERIOD_DAYS * periods)
        if self is LoanFrequency.BIWEEKLY:
            return start + timedelta(days=BIWEEKLY_PERIOD_DAYS * periods)
        return start + relativedelta(months=periods)


# =============================================================================
# DATE HELPERS
# =============================================================================

def parse_date(value) -> date:
    """Parse a YYYY-MM-DD string (or pass through a date)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), DATE_FORMAT_STORAGE).date()
    except (TypeError, ValueError):
        raise InvalidDateError(value)


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT_STORAGE)


def parse_month(value) -> date:
    """Parse a YYYY-MM anchor into the first day of that month."""
    try:
        return datetime.strptime(str(value).strip(), MONTH_FORMAT_STORAGE).date()
    except (TypeError, ValueError):
        raise InvalidDateError(value, expected="YYYY-MM")


def format_month(value: date) -> str:
    return value.strftime(MONTH_FORMAT_STORAGE)


# =============================================================================
# ENTITIES
# =============================================================================

@dataclass(frozen=True)
class Member:
    """One cooperative associate. The id doubles as the savings account number."""
    id: int
    first_name: str
    last_name: str
    social_protection_id: Optional[str] = None
    setup_complete: bool = False
    initial_savings_usd: float = 0.0
    initial_loan_usd: float = 0.0
    loan_start_date: Optional[str] = None
    loan_payment_frequency: Optional[LoanFrequency] = None
    loan_installment_usd: float = 0.0
    last_protection_payment_date: Optional[str] = None
    monthly_protection_fee_usd: float = DEFAULT_MONTHLY_PROTECTION_FEE_USD
    fund_contribution_usd: float = DEFAULT_FUND_CONTRIBUTION_USD
    contribution_certificate_total: float = 0.0

    @property
    def savings_id(self) -> int:
        return self.id

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_protection(self) -> bool:
        return bool(self.social_protection_id and self.social_protection_id.strip())

    @property
    def has_certificate(self) -> bool:
        return (self.contribution_certificate_total or 0) > 0

    def with_changes(self, **changes) -> "Member":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.loan_payment_frequency is not None:
            data['loan_payment_frequency'] = self.loan_payment_frequency.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Member":
        data = dict(data)
        freq = data.get('loan_payment_frequency')
        data['loan_payment_frequency'] = LoanFrequency(freq) if freq else None
        data['setup_complete'] = bool(data.get('setup_complete'))
        for key in ('monthly_protection_fee_usd', 'fund_contribution_usd'):
            if data.get(key) is None:
                data.pop(key, None)
        for key in ('initial_savings_usd', 'initial_loan_usd', 'loan_installment_usd',
                    'contribution_certificate_total'):
            data[key] = float(data.get(key) or 0)
        return cls(**data)


@dataclass(frozen=True)
class GroupKey:
    """Identity of one user-facing operation.

    Rows that share a date and a non-empty reference form one group. A row
    without a reference is its own group, keyed by its id.
    """
    date: str
    reference: Optional[str] = None
    transaction_id: Optional[str] = None

    @classmethod
    def for_transaction(cls, tx: "Transaction") -> "GroupKey":
        ref = (tx.reference or "").strip()
        if ref and ref != "-":
            return cls(date=tx.date, reference=ref)
        return cls(date=tx.date, transaction_id=tx.id)

    @property
    def is_singleton(self) -> bool:
        return self.reference is None


@dataclass(frozen=True)
class TransactionDraft:
    """A transaction that has not been assigned an id or owner yet."""
    date: str
    category: TransactionCategory
    amount_bs: float
    description: str = ""
    reference: str = ""
    months_paid: Optional[int] = None

    def to_transaction(self, tx_id: str, member_id: int) -> "Transaction":
        return Transaction(
            id=tx_id,
            member_id=member_id,
            date=self.date,
            category=self.category,
            amount_bs=self.amount_bs,
            description=self.description,
            reference=self.reference,
            months_paid=self.months_paid,
        )


@dataclass(frozen=True)
class Transaction:
    id: str
    member_id: int
    date: str
    category: TransactionCategory
    amount_bs: float
    description: str = ""
    reference: str = ""
    months_paid: Optional[int] = None

    @property
    def group_key(self) -> GroupKey:
        return GroupKey.for_transaction(self)

    @property
    def is_withdrawal(self) -> bool:
        return self.category is TransactionCategory.SAVINGS and self.amount_bs < 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data['category'] = self.category.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        months = data.get('months_paid')
        return cls(
            id=str(data['id']),
            member_id=int(data['member_id']),
            date=str(data['date']),
            category=TransactionCategory(data['category']),
            amount_bs=float(data['amount_bs']),
            description=data.get('description') or "",
            reference=data.get('reference') or "",
            months_paid=int(months) if months is not None else None,
        )
