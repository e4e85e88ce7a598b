from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, contextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Iterator, Mapping, Optional

import asyncpg

from groupledger.db.models import Expense, Group, Member, Split
from groupledger.errors import StorageUnavailableError
from groupledger.logging import get_logger, sql_logger


_TRANSIENT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except _TRANSIENT_ERRORS as exc:
        sql_logger.warning("sql.unavailable", operation=operation, error=repr(exc))
        raise StorageUnavailableError(f"storage unavailable during {operation}") from exc


class Database:
    def __init__(self, dsn: str, command_timeout: float | None = None) -> None:
        self._dsn = dsn
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql/postgres scheme, without "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            with _storage_errors("connect"):
                self._pool = await asyncpg.create_pool(dsn, command_timeout=self._command_timeout)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetch", query=query, args=args)
        with _storage_errors("fetch"):
            return await self._pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchrow", query=query, args=args)
        with _storage_errors("fetchrow"):
            return await self._pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchval", query=query, args=args)
        with _storage_errors("fetchval"):
            return await self._pool.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.execute", query=query, args=args)
        with _storage_errors("execute"):
            return await self._pool.execute(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.transaction")
        with _storage_errors("transaction"):
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield conn

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


class LedgerRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_group(self, group_id: int) -> Group | None:
        row = await self.db.fetchrow("SELECT * FROM groups WHERE id = $1", group_id)
        return Group.from_row(row) if row else None

    async def list_group_ids(self) -> list[int]:
        rows = await self.db.fetch("SELECT id FROM groups ORDER BY id")
        return [int(row["id"]) for row in rows]

    async def list_unbalanced_expenses(self, group_id: int, tolerance: Decimal) -> list[asyncpg.Record]:
        return await self.db.fetch(
            """
            SELECT ge.id, ge.amount, COALESCE(SUM(es.amount_owed), 0) AS split_total
            FROM group_expenses ge
            LEFT JOIN expense_splits es ON es.expense_id = ge.id
            WHERE ge.group_id = $1
            GROUP BY ge.id, ge.amount
            HAVING ABS(ge.amount - COALESCE(SUM(es.amount_owed), 0)) > $2
            ORDER BY ge.id
            """,
            group_id,
            tolerance,
        )

    async def set_smart_split_enabled(self, group_id: int, enabled: bool) -> bool:
        row = await self.db.fetchrow(
            "UPDATE groups SET smart_split_enabled = $1 WHERE id = $2 RETURNING id",
            enabled,
            group_id,
        )
        return row is not None

    async def list_members(self, group_id: int) -> list[Member]:
        rows = await self.db.fetch(
            """
            SELECT group_id, user_id, user_name, joined_at
            FROM group_members
            WHERE group_id = $1
            ORDER BY joined_at, id
            """,
            group_id,
        )
        return [Member.from_row(row) for row in rows]

    async def remove_member(self, group_id: int, user_id: str) -> bool:
        row = await self.db.fetchrow(
            "DELETE FROM group_members WHERE group_id = $1 AND user_id = $2 RETURNING id",
            group_id,
            user_id,
        )
        return row is not None

    async def list_owed_to(self, group_id: int, user_id: str) -> list[asyncpg.Record]:
        """Unsettled amounts other members owe ``user_id``, one row per debtor."""
        return await self.db.fetch(
            """
            SELECT es.user_id, SUM(es.amount_owed) AS total
            FROM expense_splits es
            JOIN group_expenses ge ON ge.id = es.expense_id
            WHERE ge.group_id = $1
              AND ge.paid_by_user_id = $2
              AND es.user_id <> $2
              AND es.is_settled = false
            GROUP BY es.user_id
            ORDER BY es.user_id
            """,
            group_id,
            user_id,
        )

    async def list_owed_by(self, group_id: int, user_id: str) -> list[asyncpg.Record]:
        """Unsettled amounts ``user_id`` owes to payers, one row per creditor."""
        return await self.db.fetch(
            """
            SELECT ge.paid_by_user_id AS user_id, SUM(es.amount_owed) AS total
            FROM expense_splits es
            JOIN group_expenses ge ON ge.id = es.expense_id
            WHERE ge.group_id = $1
              AND es.user_id = $2
              AND ge.paid_by_user_id <> $2
              AND es.is_settled = false
            GROUP BY ge.paid_by_user_id
            ORDER BY ge.paid_by_user_id
            """,
            group_id,
            user_id,
        )

    async def list_pairwise_debts(self, group_id: int) -> list[asyncpg.Record]:
        """Every unsettled debtor -> payer total in the group, in a single query."""
        return await self.db.fetch(
            """
            SELECT es.user_id AS debtor_id,
                   ge.paid_by_user_id AS creditor_id,
                   SUM(es.amount_owed) AS total
            FROM expense_splits es
            JOIN group_expenses ge ON ge.id = es.expense_id
            WHERE ge.group_id = $1
              AND es.user_id <> ge.paid_by_user_id
              AND es.is_settled = false
            GROUP BY es.user_id, ge.paid_by_user_id
            ORDER BY es.user_id, ge.paid_by_user_id
            """,
            group_id,
        )

    async def mark_pair_settled(self, group_id: int, from_user_id: str, to_user_id: str) -> int:
        # One statement: row locks serialize racing settlements of the same pair,
        # and the loser re-checks is_settled and matches nothing.
        rows = await self.db.fetch(
            """
            UPDATE expense_splits es
            SET is_settled = true,
                settled_at = now()
            FROM group_expenses ge
            WHERE es.expense_id = ge.id
              AND ge.group_id = $1
              AND es.user_id = $2
              AND ge.paid_by_user_id = $3
              AND es.is_settled = false
            RETURNING es.id
            """,
            group_id,
            from_user_id,
            to_user_id,
        )
        return len(rows)

    async def get_expense(self, expense_id: int) -> Expense | None:
        row = await self.db.fetchrow("SELECT * FROM group_expenses WHERE id = $1", expense_id)
        return Expense.from_row(row) if row else None

    async def get_expense_splits(self, expense_id: int) -> list[Split]:
        rows = await self.db.fetch(
            "SELECT * FROM expense_splits WHERE expense_id = $1 ORDER BY user_id",
            expense_id,
        )
        return [Split.from_row(row) for row in rows]

    async def create_expense(
        self,
        group_id: int,
        description: str,
        amount: Decimal,
        payer_id: str,
        category: str,
        splits: Mapping[str, Decimal],
    ) -> Expense:
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO group_expenses (group_id, description, amount, paid_by_user_id, category)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                group_id,
                description,
                amount,
                payer_id,
                category,
            )
            assert row is not None
            await conn.executemany(
                "INSERT INTO expense_splits (expense_id, user_id, amount_owed) VALUES ($1, $2, $3)",
                [(row["id"], user_id, share) for user_id, share in splits.items()],
            )
        return Expense.from_row(row)

    async def replace_expense(
        self,
        expense_id: int,
        description: str,
        amount: Decimal,
        category: str,
        splits: Mapping[str, Decimal],
    ) -> Optional[Expense]:
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                """
                UPDATE group_expenses
                SET description = $1, amount = $2, category = $3
                WHERE id = $4
                RETURNING *
                """,
                description,
                amount,
                category,
                expense_id,
            )
            if row is None:
                return None
            await conn.execute("DELETE FROM expense_splits WHERE expense_id = $1", expense_id)
            await conn.executemany(
                "INSERT INTO expense_splits (expense_id, user_id, amount_owed) VALUES ($1, $2, $3)",
                [(expense_id, user_id, share) for user_id, share in splits.items()],
            )
        return Expense.from_row(row)

    async def delete_expense(self, expense_id: int) -> bool:
        row = await self.db.fetchrow("DELETE FROM group_expenses WHERE id = $1 RETURNING id", expense_id)
        return row is not None


_global_repo: LedgerRepository | None = None


def set_global_repository(repo: LedgerRepository) -> None:
    global _global_repo
    _global_repo = repo


def get_global_repository() -> LedgerRepository:
    if _global_repo is None:
        raise RuntimeError("Repository is not initialised")
    return _global_repo
