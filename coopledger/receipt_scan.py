"""Normalisation of scanned bank receipts into deposit pre-fills.

The scanner returns a best-effort (date, amount, reference) triple. None of
it is trusted: unreadable values are dropped and everything that survives is
only a suggestion for the deposit form.
"""
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from coopledger.config import DATE_FORMAT_STORAGE
from coopledger.data_structures import DepositPrefill

logger = logging.getLogger(__name__)

# Day-first formats printed on Venezuelan bank receipts
SCAN_DATE_FORMATS = [DATE_FORMAT_STORAGE, "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%d/%m/%y"]

_CURRENCY_NOISE = re.compile(r"(?i)\s|bs\.s\.?|bs\.?|ves")


@dataclass
class ReceiptScan:
    """Raw scanner output."""
    date: str = ""
    amount: Union[float, str, None] = 0
    reference: str = ""

    @classmethod
    def from_json(cls, payload: str) -> "ReceiptScan":
        try:
            data = json.loads(payload)
        except ValueError:
            logger.info("Receipt scan returned unreadable payload")
            return cls()
        if not isinstance(data, dict):
            return cls()
        return cls(
            date=data.get('date') or "",
            amount=data.get('amount') or 0,
            reference=data.get('reference') or "",
        )


def parse_bs_amount(value) -> Optional[float]:
    """Parse a bolivar amount, reading '1.234,56' as 1234.56.

    Returns None for anything that is not a positive finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        text = _CURRENCY_NOISE.sub("", str(value))
        if not text:
            return None
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        elif text.count(".") > 1 or re.search(r"\.\d{3}$", text):
            # only thousands separators
            text = text.replace(".", "")
        try:
            amount = float(text)
        except ValueError:
            return None

    if math.isnan(amount) or math.isinf(amount) or amount <= 0:
        return None
    return amount


def parse_scan_date(value) -> Optional[str]:
    text = (value or "").strip()
    if not text:
        return None
    for fmt in SCAN_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime(DATE_FORMAT_STORAGE)
        except ValueError:
            continue
    return None


def prefill_from_scan(scan: ReceiptScan, rate=None) -> DepositPrefill:
    """Turn a scan into editable deposit inputs.

    Args:
        scan: Scanner output.
        rate: Optional rate suggestion (usually the last used rate).
    """
    prefill = DepositPrefill(
        date=parse_scan_date(scan.date),
        total_amount_bs=parse_bs_amount(scan.amount),
        rate=rate,
        reference=(scan.reference or "").strip(),
    )
    if prefill.date is None and scan.date:
        logger.info("Ignoring unreadable scanned date %r", scan.date)
    if prefill.total_amount_bs is None and scan.amount:
        logger.info("Ignoring unreadable scanned amount %r", scan.amount)
    return prefill
