from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from groupledger.errors import NotFoundError, ValidationFailure
from groupledger.logging import get_logger


class SettlementStore(Protocol):
    async def get_group(self, group_id: int) -> Any: ...

    async def mark_pair_settled(self, group_id: int, from_user_id: str, to_user_id: str) -> int: ...


@dataclass(slots=True, frozen=True)
class SettleResult:
    settled_count: int


async def settle_up(
    repo: SettlementStore,
    group_id: int,
    from_user_id: str,
    to_user_id: str,
) -> SettleResult:
    """Mark every open split ``from_user_id`` owes ``to_user_id`` as settled."""
    if from_user_id == to_user_id:
        raise ValidationFailure("cannot settle a debt with yourself")

    if await repo.get_group(group_id) is None:
        raise NotFoundError(f"group {group_id} not found")

    count = await repo.mark_pair_settled(group_id, from_user_id, to_user_id)
    if count == 0:
        raise NotFoundError("no debts to settle")

    get_logger(__name__).info(
        "settlement.applied",
        group_id=group_id,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        settled_count=count,
    )
    return SettleResult(settled_count=count)
