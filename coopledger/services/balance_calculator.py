"""Balance calculation service for the cooperative ledger.

This service derives every balance from the member's initial values plus
the transaction history:
- Savings and loan balances
- Contribution certificate paid/pending
- Last social protection month paid
- Remaining installments and projected loan completion
- Running balances for exports

Nothing is cached between calls; each instance replays the history it was
given.
"""
import math

import pandas as pd
from dateutil.relativedelta import relativedelta

from coopledger.data_structures import AccountBalances, CertificateSummary
from coopledger.models import TransactionCategory, parse_date, parse_month, format_month


LEDGER_COLUMNS = [
    'seq', 'id', 'date', 'category', 'description', 'reference',
    'amount_bs', 'rate', 'amount_usd', 'months_paid',
]


class BalanceRecalculator:
    """Handles balance reconstruction for one member.

    Attributes:
        member: Member profile holding the initial values.
        transactions: The member's transactions in recording order.
        rates: RateCache used to convert each row at its own date.
    """

    def __init__(self, member, transactions, rates):
        self.member = member
        self.transactions = list(transactions)
        self.rates = rates

    def excluding(self, ids):
        """Recalculator over the same history without the given rows.

        Used while editing a group: the caps offered to the user must
        include what the group being replaced had already allocated.
        """
        doomed = set(ids)
        return BalanceRecalculator(self.member, [tx for tx in self.transactions if tx.id not in doomed], self.rates)

    def get_ledger_df(self):
        """Get the history as a DataFrame with per-row USD values, oldest first."""
        rows = []
        missing = {}
        for seq, tx in enumerate(self.transactions):
            if not self.rates.is_convertible(tx.date):
                missing[tx.date] = missing.get(tx.date, 0.0) + float(tx.amount_bs)
            rows.append({
                'seq': seq,
                'id': tx.id,
                'date': tx.date,
                'category': tx.category.value,
                'description': tx.description,
                'reference': tx.reference,
                'amount_bs': float(tx.amount_bs),
                'rate': self.rates.get(tx.date, 0.0) or 0.0,
                'amount_usd': self.rates.usd_value(tx.amount_bs, tx.date, warn=False),
                'months_paid': tx.months_paid or 0,
            })
        # one warning per date, not per row
        for date_str in sorted(missing):
            self.rates.warn_unconvertible(date_str, missing[date_str])
        df = pd.DataFrame(rows, columns=LEDGER_COLUMNS)
        if df.empty:
            return df
        return df.sort_values(by=['date', 'seq'], kind='mergesort').reset_index(drop=True)

    def _total_usd(self, df, category):
        return float(df.loc[df['category'] == category.value, 'amount_usd'].sum())

    # ========== BALANCES ==========

    def savings_balance(self, df=None):
        """Initial savings plus every SAVINGS row (withdrawals are negative)."""
        if df is None:
            df = self.get_ledger_df()
        return float(self.member.initial_savings_usd or 0) + self._total_usd(df, TransactionCategory.SAVINGS)

    def loan_balance(self, df=None):
        if df is None:
            df = self.get_ledger_df()
        return float(self.member.initial_loan_usd or 0) - self._total_usd(df, TransactionCategory.LOAN)

    def certificate_summary(self, df=None):
        if df is None:
            df = self.get_ledger_df()
        total = float(self.member.contribution_certificate_total or 0)
        paid = self._total_usd(df, TransactionCategory.CONTRIBUTION_CERTIFICATE)
        return CertificateSummary(total=total, paid=paid, pending=max(0.0, total - paid))

    def certificate_pending(self, df=None):
        return self.certificate_summary(df).pending

    def protection_months_paid(self):
        return sum(
            tx.months_paid for tx in self.transactions
            if tx.category is TransactionCategory.SOCIAL_PROTECTION and tx.months_paid and tx.months_paid > 0
        )

    def last_protection_month(self):
        """Last protection month covered, as YYYY-MM, or None without an anchor."""
        if not self.member.has_protection or not self.member.last_protection_payment_date:
            return None
        anchor = parse_month(self.member.last_protection_payment_date)
        return format_month(anchor + relativedelta(months=self.protection_months_paid()))

    def last_loan_payment_date(self):
        dates = [tx.date for tx in self.transactions if tx.category is TransactionCategory.LOAN]
        return max(dates) if dates else None

    def remaining_installments(self, loan_balance=None):
        installment = float(self.member.loan_installment_usd or 0)
        if installment <= 0:
            return 0
        if loan_balance is None:
            loan_balance = self.loan_balance()
        remaining = math.ceil(round(loan_balance / installment, 9))
        return remaining if remaining > 0 else 0

    def loan_completion_date(self, loan_balance=None):
        """Projected end of the loan, anchored on the original schedule.

        The installment count comes from the principal on the profile, not
        the current balance, so partial payments do not move the date.
        """
        member = self.member
        if loan_balance is None:
            loan_balance = self.loan_balance()
        if (loan_balance <= 0
                or not member.initial_loan_usd or member.initial_loan_usd <= 0
                or not member.loan_installment_usd or member.loan_installment_usd <= 0
                or not member.loan_start_date or member.loan_payment_frequency is None):
            return None

        total_installments = math.ceil(round(member.initial_loan_usd / member.loan_installment_usd, 9))
        start = parse_date(member.loan_start_date)
        return member.loan_payment_frequency.advance(start, total_installments)

    def unconvertible_transactions(self):
        """Rows whose date has no usable rate and therefore count as 0 USD."""
        return [tx for tx in self.transactions if not self.rates.is_convertible(tx.date)]

    def snapshot(self) -> AccountBalances:
        """Recompute every balance from scratch."""
        df = self.get_ledger_df()
        loan_balance = self.loan_balance(df)
        return AccountBalances(
            savings_usd=self.savings_balance(df),
            loan_balance_usd=loan_balance,
            remaining_installments=self.remaining_installments(loan_balance),
            loan_completion_date=self.loan_completion_date(loan_balance),
            certificate=self.certificate_summary(df),
            last_protection_month=self.last_protection_month(),
        )

    # ========== RUNNING BALANCES ==========

    def running_balances(self):
        """Ledger DataFrame with balances after each row, oldest first."""
        df = self.get_ledger_df()
        if df.empty:
            return df.assign(savings_balance_usd=[], loan_balance_usd=[], certificate_paid_usd=[])

        def contribution(category):
            return df['amount_usd'].where(df['category'] == category.value, 0.0)

        df['savings_balance_usd'] = (
            float(self.member.initial_savings_usd or 0) + contribution(TransactionCategory.SAVINGS).cumsum()
        )
        df['loan_balance_usd'] = (
            float(self.member.initial_loan_usd or 0) - contribution(TransactionCategory.LOAN).cumsum()
        )
        df['certificate_paid_usd'] = contribution(TransactionCategory.CONTRIBUTION_CERTIFICATE).cumsum()
        return df

    def balance_as_of(self, date_str):
        """Savings, loan and certificate totals at the end of ``date_str``."""
        cutoff = parse_date(date_str).strftime("%Y-%m-%d")
        df = self.running_balances()
        upto = df[df['date'] <= cutoff] if not df.empty else df
        if upto.empty:
            return {
                'savings_usd': float(self.member.initial_savings_usd or 0),
                'loan_balance_usd': float(self.member.initial_loan_usd or 0),
                'certificate_paid_usd': 0.0,
            }
        last = upto.iloc[-1]
        return {
            'savings_usd': float(last['savings_balance_usd']),
            'loan_balance_usd': float(last['loan_balance_usd']),
            'certificate_paid_usd': float(last['certificate_paid_usd']),
        }
