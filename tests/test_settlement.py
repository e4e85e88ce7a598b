from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from groupledger.errors import NotFoundError, SmartSplitDisabledError
from groupledger.services.balance import get_group_balances
from groupledger.services.settlement import Transfer, plan_for_group, simplify_debts


def D(value: str) -> Decimal:
    return Decimal(value)


def _apply(balances, plan):
    after = dict(balances)
    for t in plan.transactions:
        after[t.to_user] -= t.amount
        after[t.from_user] += t.amount
    return after


def test_single_creditor_collects_from_each_debtor():
    balances = {"A": D("30"), "B": D("-10"), "C": D("-20")}

    plan = simplify_debts(balances)

    assert plan.transactions == [
        Transfer(from_user="C", to_user="A", amount=D("20.00")),
        Transfer(from_user="B", to_user="A", amount=D("10.00")),
    ]
    assert plan.total_transactions == 2
    assert plan.savings == 0


def test_equal_creditors_are_paid_in_user_id_order():
    balances = {"B": D("15"), "A": D("15"), "C": D("-30")}

    plan = simplify_debts(balances)

    assert plan.transactions == [
        Transfer(from_user="C", to_user="A", amount=D("15.00")),
        Transfer(from_user="C", to_user="B", amount=D("15.00")),
    ]
    assert plan.savings == 0


def test_largest_creditor_meets_largest_debtor():
    balances = {"A": D("10"), "B": D("5"), "C": D("-5"), "D": D("-10")}

    plan = simplify_debts(balances)

    assert plan.transactions == [
        Transfer(from_user="D", to_user="A", amount=D("10.00")),
        Transfer(from_user="C", to_user="B", amount=D("5.00")),
    ]
    assert plan.total_transactions == 2
    assert plan.savings == 0


def test_balances_within_epsilon_need_no_payments():
    plan = simplify_debts({"A": D("0.01"), "B": D("-0.01"), "C": D("0")})
    assert plan.transactions == []
    assert plan.total_transactions == 0
    assert plan.is_empty


def test_one_sided_ledger_gives_empty_plan_and_logs_anomaly():
    with capture_logs() as logs:
        plan = simplify_debts({"A": D("30"), "B": D("0")})

    assert plan.transactions == []
    assert any(entry["event"] == "ledger.integrity_anomaly" for entry in logs)


def test_mismatched_ledger_is_settled_best_effort():
    with capture_logs() as logs:
        plan = simplify_debts({"A": D("30"), "B": D("-20")})

    assert plan.transactions == [Transfer(from_user="B", to_user="A", amount=D("20.00"))]
    assert [entry["log_level"] for entry in logs if entry["event"] == "ledger.integrity_anomaly"] == ["warning"]


def test_plan_zeroes_every_balance():
    balances = {
        "ann": D("48.33"),
        "bob": D("-12.50"),
        "cat": D("-20.83"),
        "dan": D("7.10"),
        "eve": D("-22.10"),
    }

    plan = simplify_debts(balances)

    assert plan.savings >= 0
    assert plan.total_transactions <= len(balances) - 1
    assert all(abs(value) < D("0.01") for value in _apply(balances, plan).values())


def test_greedy_can_exceed_the_larger_side():
    # No zero-sum subgroup exists here, so four payments is the best possible.
    balances = {"A": D("5"), "B": D("5"), "C": D("-3"), "D": D("-3"), "E": D("-4")}

    plan = simplify_debts(balances)

    assert plan.transactions == [
        Transfer(from_user="E", to_user="A", amount=D("4.00")),
        Transfer(from_user="C", to_user="B", amount=D("3.00")),
        Transfer(from_user="D", to_user="B", amount=D("2.00")),
        Transfer(from_user="D", to_user="A", amount=D("1.00")),
    ]
    assert plan.savings == 0


def test_transfer_amounts_are_rounded_to_cents():
    balances = {"A": D("10"), "B": D("-3.333"), "C": D("-6.667")}

    plan = simplify_debts(balances)

    assert [t.amount for t in plan.transactions] == [D("6.67"), D("3.33")]


@pytest.mark.asyncio
async def test_plan_for_group_uses_group_balances(ledger):
    ledger.add_group(1, members=("ann", "bob", "cat"))
    ledger.record(1, "ann", {"ann": "10.00", "bob": "10.00", "cat": "10.00"})
    ledger.record(1, "bob", {"cat": "6.00"})

    plan = await plan_for_group(ledger, 1)

    balances = {b.user_id: b.net_balance for b in await get_group_balances(ledger, 1)}
    assert balances == {"ann": D("20.00"), "bob": D("-4.00"), "cat": D("-16.00")}
    assert plan.transactions == [
        Transfer(from_user="cat", to_user="ann", amount=D("16.00")),
        Transfer(from_user="bob", to_user="ann", amount=D("4.00")),
    ]


@pytest.mark.asyncio
async def test_plan_for_group_respects_toggle(ledger):
    ledger.add_group(1, members=("ann", "bob"), smart_split_enabled=False)
    with pytest.raises(SmartSplitDisabledError):
        await plan_for_group(ledger, 1)


@pytest.mark.asyncio
async def test_plan_for_missing_group(ledger):
    with pytest.raises(NotFoundError):
        await plan_for_group(ledger, 5)


class CountingLedger:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.group_reads = 0

    async def get_group(self, group_id):
        self.group_reads += 1
        return await self.inner.get_group(group_id)

    def __getattr__(self, name):
        return getattr(self.inner, name)


@pytest.mark.asyncio
async def test_plan_for_group_reads_group_once(ledger):
    ledger.add_group(1, members=("ann", "bob"))
    ledger.record(1, "ann", {"bob": "8.00"})
    counting = CountingLedger(ledger)

    plan = await plan_for_group(counting, 1)
    assert counting.group_reads == 1
    assert plan.transactions == [Transfer(from_user="bob", to_user="ann", amount=D("8.00"))]

    group = await ledger.get_group(1)
    await plan_for_group(counting, 1, group=group)
    assert counting.group_reads == 1
