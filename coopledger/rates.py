"""Exchange rate cache for Bs-per-USD conversions.

A transaction is always converted with the rate cached for its own date, so
recording today's rate never changes the USD value of past operations.
"""
import logging
import math

from coopledger.exceptions import InvalidRateError
from coopledger.models import parse_date, format_date

logger = logging.getLogger(__name__)


def validate_rate(value) -> float:
    """Parse a user supplied rate and ensure it is strictly positive.

    Args:
        value: Rate as number or string. Comma decimals ("36,50") are accepted.

    Returns:
        The rate as float.

    Raises:
        InvalidRateError: If the rate is missing, non-numeric or <= 0.
    """
    if value is None or isinstance(value, bool):
        raise InvalidRateError(value)
    if isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            raise InvalidRateError(value)
        try:
            rate = float(text)
        except ValueError:
            raise InvalidRateError(value)
    else:
        try:
            rate = float(value)
        except (TypeError, ValueError):
            raise InvalidRateError(value)

    if math.isnan(rate) or math.isinf(rate) or rate <= 0:
        raise InvalidRateError(value)
    return rate


class RateCache:
    """Mapping of calendar date (YYYY-MM-DD) to Bs-per-USD rate.

    Holds at most one rate per date. Entries are upserted whenever an
    operation is recorded and are never removed.
    """

    def __init__(self, rates=None):
        self._rates = {}
        for date_str, rate in (rates or {}).items():
            self.set_rate(date_str, rate)

    def __len__(self):
        return len(self._rates)

    def __contains__(self, date_str):
        return date_str in self._rates

    def __eq__(self, other):
        if not isinstance(other, RateCache):
            return NotImplemented
        return self._rates == other._rates

    def set_rate(self, date_str, rate):
        """Store (or overwrite) the rate for a date."""
        key = format_date(parse_date(date_str))
        self._rates[key] = validate_rate(rate)
        return self._rates[key]

    def get(self, date_str, default=None):
        return self._rates.get(date_str, default)

    def copy(self):
        clone = RateCache()
        clone._rates = dict(self._rates)
        return clone

    def to_dict(self):
        return dict(self._rates)

    def is_convertible(self, date_str) -> bool:
        rate = self._rates.get(date_str)
        return rate is not None and rate > 0

    def warn_unconvertible(self, date_str, amount_bs):
        logger.warning("No exchange rate cached for %s; %.2f Bs counted as 0 USD", date_str, amount_bs)

    def usd_value(self, amount_bs, date_str, warn=True) -> float:
        """Convert a bolivar amount using the rate cached for ``date_str``.

        A date without a usable rate converts to 0, so that gaps in the
        cache never break balance computation. The gap is logged unless
        ``warn`` is False.
        """
        rate = self._rates.get(date_str)
        if rate is None or rate <= 0:
            if warn:
                self.warn_unconvertible(date_str, amount_bs)
            return 0.0
        return amount_bs / rate
