from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence

from groupledger.db.models import Expense, Split
from groupledger.errors import NotFoundError, ValidationFailure
from groupledger.logging import get_logger
from groupledger.services.split import to_amount, validate_splits


class ExpenseStore(Protocol):
    async def get_group(self, group_id: int) -> Any: ...

    async def list_members(self, group_id: int) -> Sequence[Any]: ...

    async def get_expense(self, expense_id: int) -> Optional[Expense]: ...

    async def get_expense_splits(self, expense_id: int) -> list[Split]: ...

    async def create_expense(
        self,
        group_id: int,
        description: str,
        amount: Decimal,
        payer_id: str,
        category: str,
        splits: Mapping[str, Decimal],
    ) -> Expense: ...

    async def replace_expense(
        self,
        expense_id: int,
        description: str,
        amount: Decimal,
        category: str,
        splits: Mapping[str, Decimal],
    ) -> Optional[Expense]: ...

    async def delete_expense(self, expense_id: int) -> bool: ...


def _clean(description: str, category: str) -> tuple[str, str]:
    description, category = description.strip(), category.strip()
    if not description:
        raise ValidationFailure("description is required")
    if not category:
        raise ValidationFailure("category is required")
    return description, category


async def add_expense(
    repo: ExpenseStore,
    group_id: int,
    description: str,
    amount: Decimal,
    payer_id: str,
    category: str,
    splits: Mapping[str, Decimal],
) -> Expense:
    description, category = _clean(description, category)
    amount = to_amount(amount)
    shares = {user_id: to_amount(share) for user_id, share in splits.items()}
    validate_splits(amount, shares)

    if await repo.get_group(group_id) is None:
        raise NotFoundError(f"group {group_id} not found")
    member_ids = {member.user_id for member in await repo.list_members(group_id)}
    if payer_id not in member_ids:
        raise ValidationFailure("payer is not a member of this group")

    expense = await repo.create_expense(group_id, description, amount, payer_id, category, shares)
    get_logger(__name__).info(
        "expense.created",
        group_id=group_id,
        expense_id=expense.id,
        amount=str(amount),
        splits=len(shares),
    )
    return expense


async def edit_expense(
    repo: ExpenseStore,
    expense_id: int,
    description: str,
    amount: Decimal,
    category: str,
    splits: Mapping[str, Decimal],
) -> Expense:
    description, category = _clean(description, category)
    amount = to_amount(amount)
    shares = {user_id: to_amount(share) for user_id, share in splits.items()}
    validate_splits(amount, shares)

    expense = await repo.replace_expense(expense_id, description, amount, category, shares)
    if expense is None:
        raise NotFoundError(f"expense {expense_id} not found")
    get_logger(__name__).info("expense.replaced", expense_id=expense_id, amount=str(amount))
    return expense


async def delete_expense(repo: ExpenseStore, expense_id: int) -> None:
    if not await repo.delete_expense(expense_id):
        raise NotFoundError(f"expense {expense_id} not found")
    get_logger(__name__).info("expense.deleted", expense_id=expense_id)


async def list_expense_splits(repo: ExpenseStore, expense_id: int) -> list[Split]:
    if await repo.get_expense(expense_id) is None:
        raise NotFoundError(f"expense {expense_id} not found")
    return await repo.get_expense_splits(expense_id)
