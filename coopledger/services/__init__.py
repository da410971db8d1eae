"""Services package for the cooperative ledger business logic.

Each service covers one concern; LedgerSession in coopledger.session
wires them together for the active member.
"""

from .transaction_store import TransactionStore
from .distribution import DistributionEngine
from .balance_calculator import BalanceRecalculator
from .payment_status import PaymentStatusEngine, LoanStatus, ProtectionStatus, Notification
from .member_service import MemberService

__all__ = ['TransactionStore', 'DistributionEngine', 'BalanceRecalculator', 'PaymentStatusEngine',
           'LoanStatus', 'ProtectionStatus', 'Notification', 'MemberService']
