from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from coopledger.models import TransactionDraft, TransactionCategory


@dataclass
class CertificateSummary:
    total: float
    paid: float
    pending: float


@dataclass
class AccountBalances:
    """Balances reconstructed from the member profile and the transaction log."""
    savings_usd: float
    loan_balance_usd: float
    remaining_installments: int
    loan_completion_date: Optional[date]
    certificate: CertificateSummary
    last_protection_month: Optional[str]


@dataclass
class DistributionResult:
    """DTO for the category breakdown of one bulk deposit."""
    drafts: List[TransactionDraft]
    rate: float
    total_usd: float
    loan_usd: float = 0.0
    certificate_usd: float = 0.0
    protection_fee_usd: float = 0.0
    fund_fee_usd: float = 0.0
    savings_usd: float = 0.0
    protection_months: int = 0

    @property
    def total_cost_usd(self) -> float:
        return self.loan_usd + self.certificate_usd + self.protection_fee_usd + self.fund_fee_usd


@dataclass
class DepositPrefill:
    """Distribution inputs suggested from an existing group or a scanned receipt.

    Every field stays editable and is validated again by the distribution
    engine before anything is recorded.
    """
    date: Optional[str] = None
    total_amount_bs: Optional[float] = None
    rate: Optional[float] = None
    reference: str = ""
    description: str = ""
    loan_payment_usd: float = 0.0
    certificate_payment_usd: float = 0.0
    protection_months: int = 0


@dataclass
class ReceiptLine:
    category: TransactionCategory
    label: str
    description: str
    amount_bs: float
    amount_usd: float
    months_paid: Optional[int] = None


@dataclass
class Receipt:
    member_name: str
    member_id: int
    date: str
    reference: str
    rate: float
    lines: List[ReceiptLine] = field(default_factory=list)
    total_bs: float = 0.0
    total_usd: float = 0.0
    is_withdrawal: bool = False
