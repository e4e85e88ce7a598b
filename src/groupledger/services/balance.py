"""Per-member balances derived from unsettled expense splits.

Balances are never stored: every call reads the open splits and rebuilds
them, so settling, editing or deleting an expense is reflected immediately.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Protocol, Sequence

from groupledger.errors import NotFoundError
from groupledger.services.split import EPSILON


ZERO = Decimal(0)


class BalanceSource(Protocol):
    async def get_group(self, group_id: int) -> Any: ...

    async def list_members(self, group_id: int) -> Sequence[Any]: ...

    async def list_owed_to(self, group_id: int, user_id: str) -> Sequence[Mapping[str, Any]]: ...

    async def list_owed_by(self, group_id: int, user_id: str) -> Sequence[Mapping[str, Any]]: ...

    async def list_pairwise_debts(self, group_id: int) -> Sequence[Mapping[str, Any]]: ...


@dataclass(slots=True, frozen=True)
class PairDebt:
    debtor_id: str
    creditor_id: str
    amount: Decimal


@dataclass(slots=True)
class Counterparty:
    user_id: str
    amount: Decimal


@dataclass(slots=True)
class NetBalance:
    user_id: str
    total_lent: Decimal = ZERO
    total_borrowed: Decimal = ZERO
    owes_me: list[Counterparty] = field(default_factory=list)
    i_owe: list[Counterparty] = field(default_factory=list)

    @property
    def net_balance(self) -> Decimal:
        return self.total_lent - self.total_borrowed

    @property
    def is_settled(self) -> bool:
        return not self.owes_me and not self.i_owe


def _aggregate(pairs: Iterable[tuple[str, Decimal]]) -> list[Counterparty]:
    totals: dict[str, Decimal] = {}
    for counterparty_id, amount in pairs:
        totals[counterparty_id] = totals.get(counterparty_id, ZERO) + amount
    return [
        Counterparty(user_id=user_id, amount=amount)
        for user_id, amount in sorted(totals.items())
        if amount >= EPSILON
    ]


def build_net_balance(user_id: str, debts: Iterable[PairDebt]) -> NetBalance:
    credits: list[tuple[str, Decimal]] = []
    debits: list[tuple[str, Decimal]] = []
    for debt in debts:
        if debt.debtor_id == debt.creditor_id:
            continue
        if debt.creditor_id == user_id:
            credits.append((debt.debtor_id, debt.amount))
        elif debt.debtor_id == user_id:
            debits.append((debt.creditor_id, debt.amount))

    owes_me = _aggregate(credits)
    i_owe = _aggregate(debits)
    return NetBalance(
        user_id=user_id,
        total_lent=sum((c.amount for c in owes_me), ZERO),
        total_borrowed=sum((c.amount for c in i_owe), ZERO),
        owes_me=owes_me,
        i_owe=i_owe,
    )


def build_group_balances(member_ids: Sequence[str], debts: Sequence[PairDebt]) -> list[NetBalance]:
    """Balances for every member, then for former members still holding open debts."""
    by_user: dict[str, list[PairDebt]] = {user_id: [] for user_id in member_ids}
    former: set[str] = set()
    for debt in debts:
        for user_id in (debt.debtor_id, debt.creditor_id):
            if user_id not in by_user:
                former.add(user_id)
                by_user[user_id] = []
        by_user[debt.debtor_id].append(debt)
        if debt.creditor_id != debt.debtor_id:
            by_user[debt.creditor_id].append(debt)

    ordered = list(dict.fromkeys(member_ids)) + sorted(former)
    return [build_net_balance(user_id, by_user[user_id]) for user_id in ordered]


def _to_debts(rows: Iterable[Mapping[str, Any]]) -> list[PairDebt]:
    return [
        PairDebt(
            debtor_id=row["debtor_id"],
            creditor_id=row["creditor_id"],
            amount=Decimal(row["total"]),
        )
        for row in rows
    ]


async def _require_group(repo: BalanceSource, group_id: int) -> Any:
    group = await repo.get_group(group_id)
    if group is None:
        raise NotFoundError(f"group {group_id} not found")
    return group


async def get_net_balance(repo: BalanceSource, group_id: int, user_id: str) -> NetBalance:
    await _require_group(repo, group_id)
    owed_to = await repo.list_owed_to(group_id, user_id)
    owed_by = await repo.list_owed_by(group_id, user_id)

    debts = [PairDebt(row["user_id"], user_id, Decimal(row["total"])) for row in owed_to]
    debts.extend(PairDebt(user_id, row["user_id"], Decimal(row["total"])) for row in owed_by)
    return build_net_balance(user_id, debts)


async def get_group_balances(repo: BalanceSource, group_id: int, group: Any = None) -> list[NetBalance]:
    """Net balances of every member; ``group`` skips the existence check when the caller already loaded it."""
    if group is None:
        await _require_group(repo, group_id)
    members = await repo.list_members(group_id)
    debts = _to_debts(await repo.list_pairwise_debts(group_id))
    return build_group_balances([member.user_id for member in members], debts)
