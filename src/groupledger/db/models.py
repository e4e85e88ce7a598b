from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional


@dataclass(slots=True)
class Group:
    id: int
    name: str
    code: str
    created_by: str
    currency: str
    smart_split_enabled: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Group":
        return cls(
            id=row["id"],
            name=row["name"],
            code=row["code"],
            created_by=row["created_by"],
            currency=row["currency"],
            smart_split_enabled=row["smart_split_enabled"],
            created_at=row.get("created_at"),
        )


@dataclass(slots=True)
class Member:
    group_id: int
    user_id: str
    display_name: Optional[str]
    joined_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Member":
        return cls(
            group_id=row["group_id"],
            user_id=row["user_id"],
            display_name=row.get("user_name"),
            joined_at=row.get("joined_at"),
        )


@dataclass(slots=True)
class Expense:
    id: int
    group_id: int
    description: str
    amount: Decimal
    payer_id: str
    category: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Expense":
        return cls(
            id=row["id"],
            group_id=row["group_id"],
            description=row["description"],
            amount=row["amount"],
            payer_id=row["paid_by_user_id"],
            category=row["category"],
            created_at=row.get("created_at"),
        )


@dataclass(slots=True)
class Split:
    id: int
    expense_id: int
    user_id: str
    amount_owed: Decimal
    is_settled: bool = False
    settled_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Split":
        return cls(
            id=row["id"],
            expense_id=row["expense_id"],
            user_id=row["user_id"],
            amount_owed=row["amount_owed"],
            is_settled=row["is_settled"],
            settled_at=row.get("settled_at"),
        )
