from __future__ import annotations

import html
from decimal import Decimal, InvalidOperation

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from groupledger.db.repo import LedgerRepository, get_global_repository
from groupledger.errors import (
    NotFoundError,
    SmartSplitDisabledError,
    StorageUnavailableError,
    ValidationFailure,
)
from groupledger.logging import get_logger
from groupledger.services.authz import AuthorizationError, assert_group_member
from groupledger.services.balance import get_net_balance
from groupledger.services.expenses import add_expense
from groupledger.services.settle_up import settle_up
from groupledger.services.settlement import plan_for_group
from groupledger.services.split import split_amount
from groupledger.services.summary import format_amount, format_net_balance, format_plan, format_title

ledger_router = Router()

log = get_logger(__name__)


def _parse_group_id(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


async def _member_names(repo: LedgerRepository, group_id: int) -> dict[str, str]:
    return {m.user_id: m.display_name for m in await repo.list_members(group_id) if m.display_name}


async def _answer_error(message: Message, exc: Exception) -> None:
    if isinstance(exc, StorageUnavailableError):
        await message.answer("Storage is unavailable right now, please try again.")
    elif isinstance(exc, SmartSplitDisabledError):
        await message.answer("Smart split is disabled for this group.")
    else:
        await message.answer(html.escape(str(exc)))


@ledger_router.message(Command("balance"))
async def cmd_balance(message: Message) -> None:
    repo = get_global_repository()
    if not message.text or not message.from_user:
        return
    parts = message.text.split()
    group_id = _parse_group_id(parts[1]) if len(parts) == 2 else None
    if group_id is None:
        await message.answer("Usage: /balance <group_id>")
        return

    user_id = str(message.from_user.id)
    try:
        group = await repo.get_group(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        balance = await get_net_balance(repo, group_id, user_id)
        names = await _member_names(repo, group_id)
    except (NotFoundError, StorageUnavailableError) as exc:
        await _answer_error(message, exc)
        return

    await message.answer(format_title(group.name) + "\n\n" + format_net_balance(balance, group.currency, names))


@ledger_router.message(Command("smartsplit"))
async def cmd_smartsplit(message: Message) -> None:
    repo = get_global_repository()
    if not message.text or not message.from_user:
        return
    parts = message.text.split()
    group_id = _parse_group_id(parts[1]) if len(parts) == 2 else None
    if group_id is None:
        await message.answer("Usage: /smartsplit <group_id>")
        return

    try:
        await assert_group_member(repo.db, str(message.from_user.id), group_id)
        group = await repo.get_group(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        plan = await plan_for_group(repo, group_id, group=group)
        names = await _member_names(repo, group_id)
    except AuthorizationError as exc:
        await message.answer(html.escape(str(exc)))
        return
    except (NotFoundError, SmartSplitDisabledError, StorageUnavailableError) as exc:
        await _answer_error(message, exc)
        return

    await message.answer(format_plan(plan, group.currency, names))


@ledger_router.message(Command("settle"))
async def cmd_settle(message: Message) -> None:
    repo = get_global_repository()
    if not message.text or not message.from_user:
        return
    parts = message.text.split()
    group_id = _parse_group_id(parts[1]) if len(parts) == 3 else None
    if group_id is None:
        await message.answer("Usage: /settle <group_id> <user_id you paid>")
        return

    from_user_id = str(message.from_user.id)
    to_user_id = parts[2]
    try:
        await assert_group_member(repo.db, from_user_id, group_id)
        result = await settle_up(repo, group_id, from_user_id, to_user_id)
    except AuthorizationError as exc:
        await message.answer(html.escape(str(exc)))
        return
    except (NotFoundError, ValidationFailure, StorageUnavailableError) as exc:
        await _answer_error(message, exc)
        return

    await message.answer(f"Settled {result.settled_count} split(s) with {html.escape(to_user_id)}.")


@ledger_router.message(Command("addexpense"))
async def cmd_addexpense(message: Message) -> None:
    repo = get_global_repository()
    if not message.text or not message.from_user:
        return
    parts = [part.strip() for part in message.text.replace("/addexpense", "", 1).split("|")]
    if len(parts) != 4:
        await message.answer("Usage: /addexpense <group_id> | <description> | <amount> | <category>")
        return

    group_id = _parse_group_id(parts[0])
    if group_id is None:
        await message.answer("Invalid group_id")
        return
    try:
        amount = Decimal(parts[2])
    except InvalidOperation:
        await message.answer("Invalid amount")
        return

    payer_id = str(message.from_user.id)
    try:
        await assert_group_member(repo.db, payer_id, group_id)
        group = await repo.get_group(group_id)
        members = await repo.list_members(group_id)
        splits = split_amount(amount, [member.user_id for member in members])
        expense = await add_expense(repo, group_id, parts[1], amount, payer_id, parts[3], splits)
    except AuthorizationError as exc:
        await message.answer(html.escape(str(exc)))
        return
    except (NotFoundError, ValidationFailure, StorageUnavailableError) as exc:
        log.info("expense.rejected", group_id=group_id, reason=str(exc))
        await _answer_error(message, exc)
        return

    await message.answer(
        f"Expense added: #{expense.id} {html.escape(expense.description)} "
        f"{format_amount(expense.amount, group.currency)}, split between {len(splits)} member(s)"
    )
