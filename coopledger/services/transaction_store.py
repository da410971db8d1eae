"""Transaction store for one member's ledger.

Operations (a deposit, a withdrawal) are stored as groups of rows sharing a
date and reference. Groups are only ever inserted, removed or replaced as a
whole; individual rows are never edited in place.
"""
import uuid
from collections import OrderedDict
from typing import Callable, Iterable, List, Optional

from coopledger.exceptions import ValidationError
from coopledger.models import GroupKey, Transaction, TransactionCategory, TransactionDraft


def _new_transaction_id() -> str:
    return f"tx-{uuid.uuid4().hex}"


class TransactionStore:
    """In-memory, append-only list of a member's transactions.

    Rows are kept in recording order; an edited group takes the place of the
    group it replaces.
    """

    def __init__(self, member_id: int, transactions: Iterable[Transaction] = None,
                 id_factory: Optional[Callable[[], str]] = None):
        self.member_id = member_id
        self._transactions: List[Transaction] = list(transactions or [])
        self._id_factory = id_factory or _new_transaction_id

    def __len__(self):
        return len(self._transactions)

    def __iter__(self):
        return iter(list(self._transactions))

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    def get(self, tx_id: str) -> Optional[Transaction]:
        for tx in self._transactions:
            if tx.id == tx_id:
                return tx
        return None

    def by_category(self, *categories: TransactionCategory) -> List[Transaction]:
        wanted = set(categories)
        return [tx for tx in self._transactions if tx.category in wanted]

    # ========== GROUPING ==========

    def groups(self, newest_first: bool = True) -> "OrderedDict[GroupKey, List[Transaction]]":
        """Group rows by operation, ordered by date (row order kept inside a group)."""
        grouped = OrderedDict()
        first_seen = {}
        for index, tx in enumerate(self._transactions):
            key = tx.group_key
            first_seen.setdefault(key, index)
            grouped.setdefault(key, []).append(tx)

        ordered = sorted(grouped.items(), key=lambda item: (item[0].date, first_seen[item[0]]),
                         reverse=newest_first)
        return OrderedDict(ordered)

    def group_of(self, tx_id: str) -> List[Transaction]:
        """Return every row belonging to the same operation as ``tx_id``."""
        tx = self.get(tx_id)
        if tx is None:
            return []
        key = tx.group_key
        return [other for other in self._transactions if other.group_key == key]

    # ========== MUTATIONS ==========

    def _materialize(self, drafts: List[TransactionDraft]) -> List[Transaction]:
        if not drafts:
            raise ValidationError("An operation needs at least one transaction")

        keys = {(d.date, (d.reference or "").strip()) for d in drafts}
        if len(keys) > 1:
            raise ValidationError("All rows of one operation must share date and reference",
                                  {'keys': sorted(keys)})

        existing = {tx.id for tx in self._transactions}
        created = []
        for draft in drafts:
            tx_id = self._id_factory()
            while tx_id in existing:
                tx_id = self._id_factory()
            existing.add(tx_id)
            created.append(draft.to_transaction(tx_id, self.member_id))
        return created

    def add_group(self, drafts: List[TransactionDraft]) -> List[Transaction]:
        """Insert one operation; returns the stored rows with their new ids."""
        created = self._materialize(list(drafts))
        self._transactions = self._transactions + created
        return created

    def remove_group(self, ids: Iterable[str]) -> List[Transaction]:
        """Remove every row whose id is in ``ids``; returns the removed rows."""
        doomed = set(ids)
        removed = [tx for tx in self._transactions if tx.id in doomed]
        self._transactions = [tx for tx in self._transactions if tx.id not in doomed]
        return removed

    def replace_group(self, old_ids: Iterable[str], drafts: List[TransactionDraft]) -> List[Transaction]:
        """Swap an existing operation for a new one in a single step.

        The new rows are built before anything is removed, so a rejected
        draft list leaves the store untouched.

        Raises:
            ValidationError: If none of ``old_ids`` is stored or the drafts
                do not form one operation.
        """
        doomed = set(old_ids)
        if not any(tx.id in doomed for tx in self._transactions):
            raise ValidationError("Transaction group not found", {'ids': sorted(doomed)})

        created = self._materialize(list(drafts))
        position = next(i for i, tx in enumerate(self._transactions) if tx.id in doomed)
        before = [tx for tx in self._transactions[:position] if tx.id not in doomed]
        after = [tx for tx in self._transactions[position:] if tx.id not in doomed]
        self._transactions = before + created + after
        return created
