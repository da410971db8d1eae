"""History export and receipts for the cooperative ledger."""
import logging

import pandas as pd

from coopledger.data_structures import Receipt, ReceiptLine
from coopledger.models import category_label, sort_by_category
from coopledger.services.balance_calculator import BalanceRecalculator

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = {
    'id': 'Transaction ID',
    'date': 'Date',
    'category': 'Category',
    'description': 'Description',
    'reference': 'Reference',
    'amount_bs': 'Amount (Bs)',
    'rate': 'Rate',
    'amount_usd': 'Amount (USD)',
    'savings_balance_usd': 'Savings Balance (USD)',
    'loan_balance_usd': 'Loan Balance (USD)',
}

USD_COLUMNS = ['Amount (USD)', 'Savings Balance (USD)', 'Loan Balance (USD)']


class HistoryReport:
    """Builds the flat transaction history of one member.

    Balances on each row are recomputed with the same rules as the
    dashboard, so the last row always matches the current balances.
    """

    def __init__(self, member, transactions, rates):
        self.member = member
        self.recalculator = BalanceRecalculator(member, transactions, rates)

    def get_history_df(self):
        """One row per transaction, oldest first, with running balances."""
        df = self.recalculator.running_balances()
        df = df[list(HISTORY_COLUMNS)].rename(columns=HISTORY_COLUMNS)
        for col in USD_COLUMNS:
            df[col] = df[col].astype(float).round(2)
        return df

    def to_csv(self):
        return self.get_history_df().to_csv(index=False)

    def export_csv(self, output_path):
        """Write the history to CSV. Returns (success, message)."""
        try:
            self.get_history_df().to_csv(output_path, index=False)
            return True, "History exported successfully (CSV)."
        except OSError as e:
            logger.error("CSV export to %s failed: %s", output_path, e)
            return False, f"CSV Export Failed: {e}"

    def export_excel(self, output_path):
        """Write the history to an Excel workbook. Returns (success, message)."""
        df = self.get_history_df()
        sheet = 'History'
        try:
            with pd.ExcelWriter(output_path, engine='xlsxwriter') as writer:
                df.to_excel(writer, index=False, sheet_name=sheet)
                workbook = writer.book
                worksheet = writer.sheets[sheet]

                header_fmt = workbook.add_format({'bold': True, 'border': 1, 'bg_color': '#D7E4BC'})
                money_fmt = workbook.add_format({'num_format': '#,##0.00'})

                for col_num, value in enumerate(df.columns.values):
                    worksheet.write(0, col_num, value, header_fmt)

                worksheet.set_column('A:A', 38)
                worksheet.set_column('B:C', 14)
                worksheet.set_column('D:E', 28)
                worksheet.set_column('F:J', 16, money_fmt)
            return True, "History exported successfully."
        except OSError as e:
            logger.error("Excel export to %s failed: %s", output_path, e)
            return False, f"Excel Export Failed: {e}"


def build_receipt(member, group, rates) -> Receipt:
    """Render one operation as category-ordered receipt lines.

    Withdrawal receipts show positive amounts and are flagged instead.
    """
    if not group:
        raise ValueError("Cannot build a receipt for an empty group")

    first = group[0]
    is_withdrawal = any(tx.is_withdrawal for tx in group)
    sign = -1 if is_withdrawal else 1

    lines = []
    for tx in sort_by_category(group):
        lines.append(ReceiptLine(
            category=tx.category,
            label=category_label(tx.category),
            description=tx.description,
            amount_bs=sign * tx.amount_bs,
            amount_usd=sign * rates.usd_value(tx.amount_bs, tx.date),
            months_paid=tx.months_paid,
        ))

    return Receipt(
        member_name=member.full_name,
        member_id=member.id,
        date=first.date,
        reference=first.reference,
        rate=rates.get(first.date) or 0.0,
        lines=lines,
        total_bs=sum(line.amount_bs for line in lines),
        total_usd=sum(line.amount_usd for line in lines),
        is_withdrawal=is_withdrawal,
    )
