from __future__ import annotations

import html
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from groupledger.services.balance import NetBalance
from groupledger.services.settlement import SettlementPlan
from groupledger.services.split import CENT, EPSILON


CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "INR": "₹",
    "GBP": "£",
}


def format_amount(amount: Decimal, currency: str) -> str:
    value = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol:
        return f"{symbol}{value:.2f}"
    return f"{value:.2f} {html.escape(currency)}"


def _label(user_id: str, names: Optional[Mapping[str, str]]) -> str:
    # Messages go out with HTML parse mode.
    if names and names.get(user_id):
        return html.escape(names[user_id])
    return html.escape(user_id)


def format_title(name: str) -> str:
    return f"<b>{html.escape(name)}</b>"


def format_net_balance(
    balance: NetBalance,
    currency: str,
    names: Optional[Mapping[str, str]] = None,
) -> str:
    net = balance.net_balance
    if net > EPSILON:
        headline = f"You are owed {format_amount(net, currency)}"
    elif net < -EPSILON:
        headline = f"You owe {format_amount(-net, currency)}"
    else:
        headline = "You're all settled up!"

    lines = [
        headline,
        f"Lent: {format_amount(balance.total_lent, currency)}",
        f"Borrowed: {format_amount(balance.total_borrowed, currency)}",
    ]
    if balance.owes_me:
        lines.append("\nOwes you:")
        lines.extend(
            f"• {_label(c.user_id, names)}: {format_amount(c.amount, currency)}" for c in balance.owes_me
        )
    if balance.i_owe:
        lines.append("\nYou owe:")
        lines.extend(
            f"• {_label(c.user_id, names)}: {format_amount(c.amount, currency)}" for c in balance.i_owe
        )
    return "\n".join(lines)


def format_plan(
    plan: SettlementPlan,
    currency: str,
    names: Optional[Mapping[str, str]] = None,
) -> str:
    if plan.is_empty:
        return "All settled up!"

    lines = [f"Smart split: {plan.total_transactions} payment(s)"]
    for transfer in plan.transactions:
        lines.append(
            f"• {_label(transfer.from_user, names)} → {_label(transfer.to_user, names)}: "
            f"{format_amount(transfer.amount, currency)}"
        )
    if plan.savings:
        lines.append(f"\n{plan.savings} payment(s) saved")
    return "\n".join(lines)
