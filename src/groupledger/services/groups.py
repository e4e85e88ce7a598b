from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Protocol, Sequence

from groupledger.errors import NotFoundError, UnsettledBalanceError
from groupledger.logging import get_logger
from groupledger.services.balance import BalanceSource, get_net_balance
from groupledger.services.split import EPSILON


class GroupStore(BalanceSource, Protocol):
    async def set_smart_split_enabled(self, group_id: int, enabled: bool) -> bool: ...

    async def remove_member(self, group_id: int, user_id: str) -> bool: ...

    async def list_group_ids(self) -> list[int]: ...

    async def list_unbalanced_expenses(self, group_id: int, tolerance: Decimal) -> Sequence[Mapping[str, Any]]: ...


async def set_smart_split(repo: GroupStore, group_id: int, enabled: bool) -> None:
    if not await repo.set_smart_split_enabled(group_id, enabled):
        raise NotFoundError(f"group {group_id} not found")
    get_logger(__name__).info("group.smart_split", group_id=group_id, enabled=enabled)


async def leave_group(repo: GroupStore, group_id: int, user_id: str) -> None:
    balance = await get_net_balance(repo, group_id, user_id)
    if not balance.is_settled:
        raise UnsettledBalanceError("settle your open balances before leaving the group")
    if not await repo.remove_member(group_id, user_id):
        raise NotFoundError(f"{user_id} is not a member of group {group_id}")
    get_logger(__name__).info("group.member_left", group_id=group_id, user_id=user_id)


async def audit_group(repo: GroupStore, group_id: int) -> list[int]:
    """Ids of expenses whose splits no longer add up to the expense amount."""
    broken: list[int] = []
    for row in await repo.list_unbalanced_expenses(group_id, EPSILON):
        broken.append(int(row["id"]))
        get_logger(__name__).warning(
            "ledger.integrity_anomaly",
            group_id=group_id,
            expense_id=row["id"],
            amount=str(row["amount"]),
            split_total=str(row["split_total"]),
        )
    return broken


async def audit_ledgers(repo: GroupStore) -> dict[int, list[int]]:
    report: dict[int, list[int]] = {}
    for group_id in await repo.list_group_ids():
        broken = await audit_group(repo, group_id)
        if broken:
            report[group_id] = broken
    return report
