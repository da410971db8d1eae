"""Distribution service for the cooperative ledger.

This service turns one bulk bolivar deposit into categorized transaction
drafts:
- Loan installment payments
- Contribution certificate payments
- Social protection dues and the matching special fund contribution
- Whatever remains goes to savings
"""
import logging
import math

from coopledger.config import FLOAT_TOLERANCE, SAVINGS_DUST_USD
from coopledger.data_structures import DistributionResult, DepositPrefill
from coopledger.exceptions import (
    InvalidAmountError,
    InsufficientFundsError,
    OverpaymentRejectedError,
    ProtectionNotConfiguredError,
)
from coopledger.models import TransactionCategory, TransactionDraft, format_date, parse_date
from coopledger.rates import validate_rate

logger = logging.getLogger(__name__)

SAVINGS_DESCRIPTION = "Savings deposit"
LOAN_DESCRIPTION = "Loan payment"
CERTIFICATE_DESCRIPTION = "Certificate payment"
WITHDRAWAL_DESCRIPTION = "Savings withdrawal"

# Descriptions generated by the engine rather than typed by the member
GENERATED_DESCRIPTION_PREFIXES = (
    SAVINGS_DESCRIPTION,
    LOAN_DESCRIPTION,
    CERTIFICATE_DESCRIPTION,
    "Protection dues for",
    "Fund contribution for",
)


def protection_description(months):
    return f"Protection dues for {months} month(s)"


def fund_description(months):
    return f"Fund contribution for {months} month(s)"


def _amount(field, value, allow_zero=True):
    """Coerce an optional monetary input to float, rejecting negatives."""
    if value is None or value == "":
        value = 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidAmountError(field, value)
    if math.isnan(amount) or math.isinf(amount):
        raise InvalidAmountError(field, value)
    if amount < 0 or (not allow_zero and amount <= 0):
        raise InvalidAmountError(field, value, "must be positive" if not allow_zero else "cannot be negative")
    return amount


def _months(value):
    if value is None or value == "":
        return 0
    try:
        months = int(value)
    except (TypeError, ValueError):
        raise InvalidAmountError("protection_months", value, "must be a whole number of months")
    if months != float(value) or months < 0:
        raise InvalidAmountError("protection_months", value, "must be a whole number of months")
    return months


class DistributionEngine:
    """Splits deposits for one member according to the member's fee schedule.

    The engine is pure: it never touches the transaction store or the rate
    cache. Callers assign ids and persist the returned drafts.
    """

    def __init__(self, member):
        """Initialize DistributionEngine.

        Args:
            member: Member whose protection and fund fees apply.
        """
        self.member = member

    def distribute(self, total_amount_bs, rate, date_str, reference="", description="",
                   loan_payment_usd=0.0, certificate_payment_usd=0.0, protection_months=0,
                   certificate_pending_usd=0.0) -> DistributionResult:
        """Compute the category breakdown of a bulk deposit.

        Args:
            total_amount_bs: Deposited amount in bolivars (> 0).
            rate: Bs-per-USD rate for the deposit date (> 0).
            date_str: Deposit date (YYYY-MM-DD).
            reference: Bank reference shared by every emitted row.
            description: Optional free text; replaces the generated descriptions.
            loan_payment_usd: USD allocated to the loan.
            certificate_payment_usd: USD allocated to the contribution certificate.
            protection_months: Months of protection dues to pay.
            certificate_pending_usd: Certificate balance still owed; caps the
                certificate payment.

        Returns:
            DistributionResult with drafts ordered LOAN, CONTRIBUTION_CERTIFICATE,
            SOCIAL_PROTECTION, FUND, SAVINGS.

        Raises:
            InvalidAmountError: Deposit not positive or an allocation negative.
            InvalidRateError: Rate missing or not positive.
            ProtectionNotConfiguredError: Months requested without a protection id.
            OverpaymentRejectedError: Certificate payment above the pending balance.
            InsufficientFundsError: Allocations exceed the deposit.
        """
        total_bs = _amount("total_amount_bs", total_amount_bs, allow_zero=False)
        rate = validate_rate(rate)
        date_str = format_date(parse_date(date_str))
        loan_usd = _amount("loan_payment_usd", loan_payment_usd)
        certificate_usd = _amount("certificate_payment_usd", certificate_payment_usd)
        months = _months(protection_months)
        pending = max(0.0, float(certificate_pending_usd or 0.0))

        if months > 0 and not self.member.has_protection:
            raise ProtectionNotConfiguredError(self.member.id)

        if certificate_usd > pending + FLOAT_TOLERANCE:
            raise OverpaymentRejectedError(certificate_usd, pending)

        total_usd = total_bs / rate
        protection_fee_usd = self.member.monthly_protection_fee_usd * months if months > 0 else 0.0
        fund_fee_usd = self.member.fund_contribution_usd * months if months > 0 else 0.0

        total_cost_usd = loan_usd + certificate_usd + protection_fee_usd + fund_fee_usd
        savings_usd = total_usd - total_cost_usd

        if savings_usd < -FLOAT_TOLERANCE:
            raise InsufficientFundsError(-savings_usd, required_usd=total_cost_usd, available_usd=total_usd)
        if savings_usd < 0:
            savings_usd = 0.0

        reference = (reference or "").strip()
        description = (description or "").strip()
        drafts = []

        def emit(category, usd, text, months_paid=None):
            drafts.append(TransactionDraft(
                date=date_str,
                category=category,
                amount_bs=usd * rate,
                description=text,
                reference=reference,
                months_paid=months_paid,
            ))

        if loan_usd > 0:
            emit(TransactionCategory.LOAN, loan_usd, description or LOAN_DESCRIPTION)
        if certificate_usd > 0:
            emit(TransactionCategory.CONTRIBUTION_CERTIFICATE, certificate_usd,
                 description or CERTIFICATE_DESCRIPTION)
        if protection_fee_usd > 0:
            emit(TransactionCategory.SOCIAL_PROTECTION, protection_fee_usd,
                 description or protection_description(months), months_paid=months)
        if fund_fee_usd > 0:
            emit(TransactionCategory.FUND, fund_fee_usd, fund_description(months), months_paid=months)
        if savings_usd > SAVINGS_DUST_USD:
            emit(TransactionCategory.SAVINGS, savings_usd, description or SAVINGS_DESCRIPTION)

        logger.debug("Distributed %.2f USD on %s into %d rows", total_usd, date_str, len(drafts))

        return DistributionResult(
            drafts=drafts,
            rate=rate,
            total_usd=total_usd,
            loan_usd=loan_usd,
            certificate_usd=certificate_usd,
            protection_fee_usd=protection_fee_usd,
            fund_fee_usd=fund_fee_usd,
            savings_usd=savings_usd,
            protection_months=months,
        )

    def withdrawal(self, amount_usd, rate, date_str, savings_balance_usd, reference="", description=""):
        """Build the single negative SAVINGS draft for a withdrawal.

        Raises:
            InvalidAmountError: Amount not positive.
            InsufficientFundsError: Amount above the current savings balance.
            InvalidRateError: Rate missing or not positive.
        """
        amount = _amount("amount_usd", amount_usd, allow_zero=False)
        if amount > savings_balance_usd + FLOAT_TOLERANCE:
            raise InsufficientFundsError(amount - savings_balance_usd, required_usd=amount,
                                         available_usd=savings_balance_usd)
        rate = validate_rate(rate)

        return TransactionDraft(
            date=format_date(parse_date(date_str)),
            category=TransactionCategory.SAVINGS,
            amount_bs=-amount * rate,
            description=(description or "").strip() or WITHDRAWAL_DESCRIPTION,
            reference=(reference or "").strip(),
        )

    @staticmethod
    def prefill_from_group(group, rates) -> DepositPrefill:
        """Recover the distribution inputs that produced an existing group."""
        if not group:
            return DepositPrefill()

        first = group[0]
        rate = rates.get(first.date) or 0.0

        def usd_of(category):
            tx = next((t for t in group if t.category is category), None)
            if tx is None or rate <= 0:
                return 0.0
            return tx.amount_bs / rate

        protection = next((t for t in group if t.category is TransactionCategory.SOCIAL_PROTECTION), None)
        general = next(
            (t.description for t in group
             if t.description and not t.description.startswith(GENERATED_DESCRIPTION_PREFIXES)),
            "",
        )

        return DepositPrefill(
            date=first.date,
            total_amount_bs=sum(t.amount_bs for t in group),
            rate=rate or None,
            reference=first.reference or "",
            description=general,
            loan_payment_usd=usd_of(TransactionCategory.LOAN),
            certificate_payment_usd=usd_of(TransactionCategory.CONTRIBUTION_CERTIFICATE),
            protection_months=(protection.months_paid or 0) if protection else 0,
        )
