"""Smart split: turn net balances into a short list of payments.

Greedy matching of the largest creditor against the largest debtor. It is
not guaranteed to find the fewest possible payments (that problem is
NP-hard), but every creditor and debtor ends up at zero and ties are broken
by user id, so the same balances always produce the same plan.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from groupledger.db.models import Group
from groupledger.errors import NotFoundError, SmartSplitDisabledError
from groupledger.logging import get_logger
from groupledger.services.balance import BalanceSource, NetBalance, get_group_balances
from groupledger.services.split import CENT, EPSILON


log = get_logger(__name__)


@dataclass(slots=True)
class Transfer:
    from_user: str
    to_user: str
    amount: Decimal


@dataclass(slots=True)
class SettlementPlan:
    transactions: list[Transfer] = field(default_factory=list)
    savings: int = 0

    @property
    def total_transactions(self) -> int:
        return len(self.transactions)

    @property
    def is_empty(self) -> bool:
        return not self.transactions


def integrity_gap(balances: Mapping[str, Decimal]) -> Decimal:
    """Σ credits − Σ debts; zero for a consistent, closed group."""
    return sum(balances.values(), Decimal(0))


def simplify_debts(balances: Mapping[str, Decimal]) -> SettlementPlan:
    gap = integrity_gap(balances)
    if abs(gap) > EPSILON:
        log.warning("ledger.integrity_anomaly", gap=str(gap), members=len(balances))

    creditors: list[tuple[Decimal, str]] = []
    debtors: list[tuple[Decimal, str]] = []
    for user_id, balance in balances.items():
        if balance > EPSILON:
            creditors.append((-balance, user_id))
        elif balance < -EPSILON:
            debtors.append((balance, user_id))

    if not creditors or not debtors:
        return SettlementPlan()

    naive_count = max(len(creditors), len(debtors))
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transfers: list[Transfer] = []
    while creditors and debtors:
        credit_neg, creditor_id = heapq.heappop(creditors)
        debt_neg, debtor_id = heapq.heappop(debtors)
        credit, debt = -credit_neg, -debt_neg

        amount = min(credit, debt)
        transfers.append(
            Transfer(
                from_user=debtor_id,
                to_user=creditor_id,
                amount=amount.quantize(CENT, rounding=ROUND_HALF_UP),
            )
        )

        if credit - amount >= EPSILON:
            heapq.heappush(creditors, (amount - credit, creditor_id))
        if debt - amount >= EPSILON:
            heapq.heappush(debtors, (amount - debt, debtor_id))

    return SettlementPlan(
        transactions=transfers,
        savings=max(0, naive_count - len(transfers)),
    )


def smart_split(balances: Iterable[NetBalance]) -> SettlementPlan:
    return simplify_debts({balance.user_id: balance.net_balance for balance in balances})


async def plan_for_group(repo: BalanceSource, group_id: int, group: Optional[Group] = None) -> SettlementPlan:
    if group is None:
        group = await repo.get_group(group_id)
    if group is None:
        raise NotFoundError(f"group {group_id} not found")
    if not group.smart_split_enabled:
        raise SmartSplitDisabledError(f"smart split is disabled for group {group_id}")

    balances = await get_group_balances(repo, group_id, group=group)
    plan = smart_split(balances)
    log.info(
        "settlement.planned",
        group_id=group_id,
        transactions=plan.total_transactions,
        savings=plan.savings,
    )
    return plan
