"""PostgreSQL persistence for plans and grants."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Mapping, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .exceptions import LedgerUnavailableError
from .models import Balances, Grant, Plan, PlanLimits, UsageCategory

logger = logging.getLogger("entitlements.repository")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entitlement_plans (
    plan_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    price_minor_units INTEGER NOT NULL CHECK (price_minor_units >= 0),
    validity_days INTEGER NOT NULL CHECK (validity_days >= 1),
    interview_limit INTEGER NOT NULL CHECK (interview_limit >= 0),
    assessment_limit INTEGER NOT NULL CHECK (assessment_limit >= 0),
    document_upload_limit INTEGER NOT NULL CHECK (document_upload_limit >= 0),
    is_free_tier BOOLEAN NOT NULL DEFAULT FALSE,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    description TEXT,
    highlight BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (is_free_tier = (price_minor_units = 0))
);

CREATE TABLE IF NOT EXISTS entitlement_grants (
    grant_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    plan_id TEXT NOT NULL REFERENCES entitlement_plans (plan_id),
    plan_name TEXT NOT NULL,
    is_free_tier BOOLEAN NOT NULL,
    start_at TIMESTAMPTZ NOT NULL,
    end_at TIMESTAMPTZ NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    interview_balance INTEGER NOT NULL CHECK (interview_balance >= 0),
    assessment_balance INTEGER NOT NULL CHECK (assessment_balance >= 0),
    document_upload_balance INTEGER NOT NULL CHECK (document_upload_balance >= 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS entitlement_grants_user_selectable_idx
    ON entitlement_grants (user_id, is_active, end_at);

CREATE UNIQUE INDEX IF NOT EXISTS entitlement_grants_one_active_free_idx
    ON entitlement_grants (user_id)
    WHERE is_active AND is_free_tier;
"""

_BALANCE_COLUMNS = {
    UsageCategory.INTERVIEW: "interview_balance",
    UsageCategory.ASSESSMENT: "assessment_balance",
    UsageCategory.DOCUMENT_UPLOAD: "document_upload_balance",
}

_INSERT_GRANT_SQL = """
    INSERT INTO entitlement_grants (
        grant_id,
        user_id,
        plan_id,
        plan_name,
        is_free_tier,
        start_at,
        end_at,
        is_active,
        interview_balance,
        assessment_balance,
        document_upload_balance,
        created_at,
        updated_at
    )
    VALUES (%(grant_id)s, %(user_id)s, %(plan_id)s, %(plan_name)s, %(is_free_tier)s,
            %(start_at)s, %(end_at)s, %(is_active)s, %(interview_balance)s,
            %(assessment_balance)s, %(document_upload_balance)s, %(created_at)s,
            %(created_at)s)
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    try:
        connection = get_conn()
    except psycopg2.OperationalError as exc:
        raise LedgerUnavailableError("Ledger database is unavailable") from exc
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_plan(row: Mapping[str, object]) -> Plan:
    return Plan(
        id=row["plan_id"],
        name=row["name"],
        price_minor_units=int(row["price_minor_units"]),
        validity_days=int(row["validity_days"]),
        limits=PlanLimits(
            interview=int(row["interview_limit"]),
            assessment=int(row["assessment_limit"]),
            document_upload=int(row["document_upload_limit"]),
        ),
        is_free_tier=bool(row["is_free_tier"]),
        is_active=bool(row["is_active"]),
        description=row.get("description"),
        highlight=bool(row.get("highlight") or False),
        created_at=row["created_at"],
    )


def _row_to_grant(row: Mapping[str, object]) -> Grant:
    return Grant(
        id=row["grant_id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        plan_name=row["plan_name"],
        is_free_tier=bool(row["is_free_tier"]),
        start_at=row["start_at"],
        end_at=row["end_at"],
        is_active=bool(row["is_active"]),
        balances=Balances(
            interview=int(row["interview_balance"]),
            assessment=int(row["assessment_balance"]),
            document_upload=int(row["document_upload_balance"]),
        ),
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


def _grant_params(grant: Grant) -> dict:
    return {
        "grant_id": grant.id,
        "user_id": grant.user_id,
        "plan_id": grant.plan_id,
        "plan_name": grant.plan_name,
        "is_free_tier": grant.is_free_tier,
        "start_at": grant.start_at,
        "end_at": grant.end_at,
        "is_active": grant.is_active,
        "interview_balance": grant.balances.interview,
        "assessment_balance": grant.balances.assessment,
        "document_upload_balance": grant.balances.document_upload,
        "created_at": grant.created_at,
    }


class PostgresLedgerRepository:
    """Concrete plan and grant repository persisting to PostgreSQL.

    Each public method runs in its own transaction unless a connection is
    supplied, in which case the caller owns commit and rollback.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, _managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield cursor
                finally:
                    cursor.close()
        except psycopg2.OperationalError as exc:
            logger.error("Ledger datastore error: %s", exc)
            raise LedgerUnavailableError("Ledger database is unavailable") from exc

    # Schema --------------------------------------------------------------

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    def seed_plans(self, plans: Iterable[Plan]) -> int:
        inserted = 0
        with self._cursor() as cursor:
            for plan in plans:
                cursor.execute(
                    """
                    INSERT INTO entitlement_plans (
                        plan_id, name, price_minor_units, validity_days,
                        interview_limit, assessment_limit, document_upload_limit,
                        is_free_tier, is_active, description, highlight, created_at
                    )
                    VALUES (%(plan_id)s, %(name)s, %(price_minor_units)s, %(validity_days)s,
                            %(interview_limit)s, %(assessment_limit)s, %(document_upload_limit)s,
                            %(is_free_tier)s, %(is_active)s, %(description)s, %(highlight)s,
                            %(created_at)s)
                    ON CONFLICT (plan_id) DO NOTHING
                    """,
                    self._plan_params(plan),
                )
                inserted += cursor.rowcount
        return inserted

    # Plans ---------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_plans
                WHERE plan_id = %s
                LIMIT 1
                """,
                (plan_id,),
            )
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    def list_plans(self, *, include_inactive: bool = False) -> Sequence[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_plans
                WHERE is_active OR %s
                ORDER BY price_minor_units ASC, name ASC
                """,
                (include_inactive,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_plan(row) for row in rows]

    def insert_plan(self, plan: Plan) -> Plan:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO entitlement_plans (
                    plan_id, name, price_minor_units, validity_days,
                    interview_limit, assessment_limit, document_upload_limit,
                    is_free_tier, is_active, description, highlight, created_at
                )
                VALUES (%(plan_id)s, %(name)s, %(price_minor_units)s, %(validity_days)s,
                        %(interview_limit)s, %(assessment_limit)s, %(document_upload_limit)s,
                        %(is_free_tier)s, %(is_active)s, %(description)s, %(highlight)s,
                        %(created_at)s)
                RETURNING *
                """,
                self._plan_params(plan),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist plan")
            return _row_to_plan(row)

    # Grants --------------------------------------------------------------

    def get_grant(self, grant_id: str) -> Optional[Grant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE grant_id = %s
                LIMIT 1
                """,
                (grant_id,),
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def list_grants(self, user_id: str, *, include_inactive: bool = False) -> Sequence[Grant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE user_id = %s AND (is_active OR %s)
                ORDER BY created_at DESC, grant_id DESC
                """,
                (user_id, include_inactive),
            )
            rows = cursor.fetchall() or []
            return [_row_to_grant(row) for row in rows]

    def list_selectable_grants(self, user_id: str, *, now: datetime) -> Sequence[Grant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE user_id = %s AND is_active AND end_at >= %s
                ORDER BY created_at DESC, grant_id DESC
                """,
                (user_id, now),
            )
            rows = cursor.fetchall() or []
            return [_row_to_grant(row) for row in rows]

    def insert_grant(self, grant: Grant) -> Grant:
        with self._cursor() as cursor:
            cursor.execute(_INSERT_GRANT_SQL + " RETURNING *", _grant_params(grant))
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist grant")
            return _row_to_grant(row)

    def insert_free_grant_if_absent(self, grant: Grant, *, now: datetime) -> Grant:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET is_active = FALSE, updated_at = NOW()
                WHERE user_id = %s AND is_free_tier AND is_active AND end_at < %s
                """,
                (grant.user_id, now),
            )
            if cursor.rowcount:
                logger.info("Retired %s expired free grant(s) for user=%s", cursor.rowcount, grant.user_id)

            cursor.execute(
                _INSERT_GRANT_SQL
                + """
                ON CONFLICT (user_id) WHERE is_active AND is_free_tier DO NOTHING
                RETURNING *
                """,
                _grant_params(grant),
            )
            row = cursor.fetchone()
            if row:
                return _row_to_grant(row)

            logger.debug("Concurrent free grant provisioning absorbed for user=%s", grant.user_id)
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE user_id = %s AND is_free_tier AND is_active
                LIMIT 1
                """,
                (grant.user_id,),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Free grant vanished during provisioning")
            return _row_to_grant(row)

    def decrement_balance(
        self,
        grant_id: str,
        category: UsageCategory,
        *,
        now: datetime,
    ) -> Optional[Grant]:
        column = sql.Identifier(_BALANCE_COLUMNS[category])
        statement = sql.SQL(
            """
            UPDATE entitlement_grants
            SET {column} = {column} - 1, updated_at = NOW()
            WHERE grant_id = %(grant_id)s
              AND is_active
              AND end_at >= %(now)s
              AND {column} > 0
            RETURNING *
            """
        ).format(column=column)
        with self._cursor() as cursor:
            cursor.execute(statement, {"grant_id": grant_id, "now": now})
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def deactivate_grant(self, grant_id: str) -> Optional[Grant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET is_active = FALSE,
                    updated_at = CASE WHEN is_active THEN NOW() ELSE updated_at END
                WHERE grant_id = %s
                RETURNING *
                """,
                (grant_id,),
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def adjust_balances(
        self,
        grant_id: str,
        deltas: Mapping[UsageCategory, int],
        limits: PlanLimits,
    ) -> Optional[Grant]:
        params = {"grant_id": grant_id}
        for category in UsageCategory:
            params[f"{category.value}_delta"] = int(deltas.get(category, 0))
            params[f"{category.value}_limit"] = limits.for_category(category)
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET interview_balance = GREATEST(0, LEAST(
                        interview_balance + %(interview_delta)s, %(interview_limit)s)),
                    assessment_balance = GREATEST(0, LEAST(
                        assessment_balance + %(assessment_delta)s, %(assessment_limit)s)),
                    document_upload_balance = GREATEST(0, LEAST(
                        document_upload_balance + %(document_upload_delta)s, %(document_upload_limit)s)),
                    updated_at = NOW()
                WHERE grant_id = %(grant_id)s
                RETURNING *
                """,
                params,
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    @staticmethod
    def _plan_params(plan: Plan) -> dict:
        return {
            "plan_id": plan.id,
            "name": plan.name,
            "price_minor_units": plan.price_minor_units,
            "validity_days": plan.validity_days,
            "interview_limit": plan.limits.interview,
            "assessment_limit": plan.limits.assessment,
            "document_upload_limit": plan.limits.document_upload,
            "is_free_tier": plan.is_free_tier,
            "is_active": plan.is_active,
            "description": plan.description,
            "highlight": plan.highlight,
            "created_at": plan.created_at,
        }


__all__ = ["PostgresLedgerRepository", "SCHEMA_SQL", "managed_connection"]
