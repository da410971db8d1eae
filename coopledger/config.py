"""Centralized configuration for the cooperative ledger.

Business rule constants and defaults shared by the distribution,
reconstruction and payment status engines.
"""

# =============================================================================
# MEMBER DEFAULTS
# =============================================================================

# Monthly social protection fee applied when the member leaves it empty
DEFAULT_MONTHLY_PROTECTION_FEE_USD = 3.0

# Special fund contribution charged alongside each protection month
DEFAULT_FUND_CONTRIBUTION_USD = 0.5

# Contribution certificate total proposed at initial setup
DEFAULT_CERTIFICATE_TOTAL_USD = 10.0

# =============================================================================
# DISTRIBUTION RULES
# =============================================================================

# Residual savings at or below this amount are not emitted as a row
SAVINGS_DUST_USD = 0.009

# Tolerance for float comparisons on USD amounts
FLOAT_TOLERANCE = 1e-9

# =============================================================================
# PAYMENT STATUS
# =============================================================================

# Days before the next loan installment that trigger the due-soon warning
DUE_SOON_DAYS = 3

# Days per installment for day-based loan frequencies
WEEKLY_PERIOD_DAYS = 7
BIWEEKLY_PERIOD_DAYS = 14

# =============================================================================
# FORMATS
# =============================================================================

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Year-month anchor used for protection payments
MONTH_FORMAT_STORAGE = "%Y-%m"

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

# =============================================================================
# PERSISTENCE
# =============================================================================

DEFAULT_DB_NAME = "coop_ledger.db"

SETTING_LAST_USED_RATE = "last_used_rate"
SETTING_CURRENT_MEMBER_ID = "current_member_id"
SETTING_DISMISSED_PREFIX = "dismissed_notifications_"
