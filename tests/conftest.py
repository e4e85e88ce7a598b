from __future__ import annotations

import itertools
from decimal import Decimal
from typing import Mapping, Optional

import pytest

from groupledger.db.models import Expense, Group, Member, Split


class InMemoryLedger:
    """Dict-backed stand-in for LedgerRepository with the same query semantics."""

    def __init__(self) -> None:
        self.groups: dict[int, Group] = {}
        self.members: list[Member] = []
        self.expenses: dict[int, Expense] = {}
        self.splits: list[Split] = []
        self._ids = itertools.count(1)

    def add_group(
        self,
        group_id: int,
        members: tuple[str, ...] = (),
        currency: str = "USD",
        smart_split_enabled: bool = True,
    ) -> Group:
        group = Group(
            id=group_id,
            name=f"Group {group_id}",
            code=f"G{group_id:05d}",
            created_by=members[0] if members else "",
            currency=currency,
            smart_split_enabled=smart_split_enabled,
        )
        self.groups[group_id] = group
        for user_id in members:
            self.members.append(Member(group_id=group_id, user_id=user_id, display_name=user_id.title()))
        return group

    def record(
        self,
        group_id: int,
        payer_id: str,
        shares: Mapping[str, str],
        description: str = "Dinner",
        category: str = "Food",
    ) -> Expense:
        amounts = {user_id: Decimal(share) for user_id, share in shares.items()}
        expense = Expense(
            id=next(self._ids),
            group_id=group_id,
            description=description,
            amount=sum(amounts.values(), Decimal(0)),
            payer_id=payer_id,
            category=category,
        )
        self.expenses[expense.id] = expense
        self._add_splits(expense.id, amounts)
        return expense

    def _add_splits(self, expense_id: int, amounts: Mapping[str, Decimal]) -> None:
        for user_id, share in amounts.items():
            self.splits.append(
                Split(id=next(self._ids), expense_id=expense_id, user_id=user_id, amount_owed=share)
            )

    def _open_debts(self, group_id: int):
        for split in self.splits:
            expense = self.expenses[split.expense_id]
            if expense.group_id != group_id or split.is_settled or split.user_id == expense.payer_id:
                continue
            yield split, expense

    @staticmethod
    def _rows(totals: dict, *keys: str) -> list[dict]:
        rows = []
        for key, total in sorted(totals.items()):
            values = key if isinstance(key, tuple) else (key,)
            rows.append({**dict(zip(keys, values)), "total": total})
        return rows

    async def get_group(self, group_id: int) -> Optional[Group]:
        return self.groups.get(group_id)

    async def list_group_ids(self) -> list[int]:
        return sorted(self.groups)

    async def set_smart_split_enabled(self, group_id: int, enabled: bool) -> bool:
        group = self.groups.get(group_id)
        if group is None:
            return False
        group.smart_split_enabled = enabled
        return True

    async def list_members(self, group_id: int) -> list[Member]:
        return [member for member in self.members if member.group_id == group_id]

    async def remove_member(self, group_id: int, user_id: str) -> bool:
        before = len(self.members)
        self.members = [m for m in self.members if not (m.group_id == group_id and m.user_id == user_id)]
        return len(self.members) < before

    async def list_owed_to(self, group_id: int, user_id: str) -> list[dict]:
        totals: dict[str, Decimal] = {}
        for split, expense in self._open_debts(group_id):
            if expense.payer_id == user_id:
                totals[split.user_id] = totals.get(split.user_id, Decimal(0)) + split.amount_owed
        return self._rows(totals, "user_id")

    async def list_owed_by(self, group_id: int, user_id: str) -> list[dict]:
        totals: dict[str, Decimal] = {}
        for split, expense in self._open_debts(group_id):
            if split.user_id == user_id:
                totals[expense.payer_id] = totals.get(expense.payer_id, Decimal(0)) + split.amount_owed
        return self._rows(totals, "user_id")

    async def list_pairwise_debts(self, group_id: int) -> list[dict]:
        totals: dict[tuple[str, str], Decimal] = {}
        for split, expense in self._open_debts(group_id):
            key = (split.user_id, expense.payer_id)
            totals[key] = totals.get(key, Decimal(0)) + split.amount_owed
        return self._rows(totals, "debtor_id", "creditor_id")

    async def mark_pair_settled(self, group_id: int, from_user_id: str, to_user_id: str) -> int:
        count = 0
        for split, expense in list(self._open_debts(group_id)):
            if split.user_id == from_user_id and expense.payer_id == to_user_id:
                split.is_settled = True
                count += 1
        return count

    async def list_unbalanced_expenses(self, group_id: int, tolerance: Decimal) -> list[dict]:
        rows = []
        for expense in self.expenses.values():
            if expense.group_id != group_id:
                continue
            split_total = sum(
                (s.amount_owed for s in self.splits if s.expense_id == expense.id), Decimal(0)
            )
            if abs(expense.amount - split_total) > tolerance:
                rows.append({"id": expense.id, "amount": expense.amount, "split_total": split_total})
        return rows

    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        return self.expenses.get(expense_id)

    async def get_expense_splits(self, expense_id: int) -> list[Split]:
        return sorted((s for s in self.splits if s.expense_id == expense_id), key=lambda s: s.user_id)

    async def create_expense(self, group_id, description, amount, payer_id, category, splits) -> Expense:
        expense = Expense(
            id=next(self._ids),
            group_id=group_id,
            description=description,
            amount=amount,
            payer_id=payer_id,
            category=category,
        )
        self.expenses[expense.id] = expense
        self._add_splits(expense.id, splits)
        return expense

    async def replace_expense(self, expense_id, description, amount, category, splits) -> Optional[Expense]:
        expense = self.expenses.get(expense_id)
        if expense is None:
            return None
        expense.description, expense.amount, expense.category = description, amount, category
        self.splits = [s for s in self.splits if s.expense_id != expense_id]
        self._add_splits(expense_id, splits)
        return expense

    async def delete_expense(self, expense_id: int) -> bool:
        if self.expenses.pop(expense_id, None) is None:
            return False
        self.splits = [s for s in self.splits if s.expense_id != expense_id]
        return True


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()
