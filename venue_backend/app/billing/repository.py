"""Persistence layer for the event ledger, venue billing records and audit log."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, List, Optional

import psycopg2
import psycopg2.extras
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import (
    AdminAction,
    AdminActionType,
    BillingRecordPatch,
    BillingStatus,
    ClaimResult,
    ClaimStatus,
    EventLedgerEntry,
    VenueBillingRecord,
)
from .timestamps import from_millis
from ...app_context import get_conn

MAX_ERROR_LENGTH = 500


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_record(row: dict) -> VenueBillingRecord:
    return VenueBillingRecord(
        venue_id=row["venue_id"],
        billing_status=BillingStatus(row.get("billing_status") or BillingStatus.UNKNOWN.value),
        provider_customer_id=row.get("provider_customer_id"),
        provider_subscription_id=row.get("provider_subscription_id"),
        last_payment_failed_at=row.get("last_payment_failed_at"),
        grace_period_ends_at=row.get("grace_period_ends_at"),
        reminder_sent_at=row.get("reminder_sent_at"),
        is_visible=bool(row.get("is_visible")),
        name=row.get("name"),
        email=row.get("email"),
        email_verified=bool(row.get("email_verified")),
        updated_at=row.get("updated_at"),
    )


def _row_to_ledger_entry(row: dict) -> EventLedgerEntry:
    return EventLedgerEntry(
        event_id=row["event_id"],
        event_type=row["event_type"],
        claim_status=ClaimStatus(row["claim_status"]),
        attempts=int(row["attempts"]),
        resolved_venue_id=row.get("resolved_venue_id"),
        last_error=row.get("last_error"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_admin_action(row: dict) -> AdminAction:
    return AdminAction(
        action_id=row["action_id"],
        actor_id=row["actor_id"],
        venue_id=row.get("venue_id"),
        action=AdminActionType(row["action"]),
        details=row.get("details") or {},
        created_at=row["created_at"],
    )


def _column_value(column: str, value: object) -> object:
    if isinstance(value, BillingStatus):
        return value.value
    if column.endswith("_at"):
        return from_millis(value)  # type: ignore[arg-type]
    return value


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    if len(message) > MAX_ERROR_LENGTH:
        return message[: MAX_ERROR_LENGTH - 3] + "..."
    return message


class PostgresBillingRepository:
    """Concrete repository persisting billing state in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    # Event ledger -----------------------------------------------------------------

    def claim_event(self, event_id: str, event_type: str) -> ClaimResult:
        """Claim ``event_id`` for processing inside a single transaction."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_event_ledger (event_id, event_type, claim_status, attempts)
                VALUES (%s, %s, %s, 1)
                ON CONFLICT (event_id) DO NOTHING
                RETURNING *
                """,
                (event_id, event_type, ClaimStatus.PROCESSING.value),
            )
            row = cursor.fetchone()
            if row:
                return ClaimResult(should_process=True, entry=_row_to_ledger_entry(row))

            cursor.execute(
                """
                SELECT *
                FROM billing_event_ledger
                WHERE event_id = %s
                FOR UPDATE
                """,
                (event_id,),
            )
            existing = cursor.fetchone()
            if not existing:
                raise RuntimeError(f"Ledger entry {event_id} vanished while claiming")

            reclaim = existing["claim_status"] == ClaimStatus.ERROR.value
            next_status = ClaimStatus.PROCESSING.value if reclaim else existing["claim_status"]
            cursor.execute(
                """
                UPDATE billing_event_ledger
                SET attempts = attempts + 1,
                    claim_status = %s,
                    updated_at = NOW()
                WHERE event_id = %s
                RETURNING *
                """,
                (next_status, event_id),
            )
            updated = cursor.fetchone()
            return ClaimResult(should_process=reclaim, entry=_row_to_ledger_entry(updated))

    def finish_event(
        self,
        event_id: str,
        status: ClaimStatus,
        *,
        venue_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_event_ledger
                SET claim_status = %s,
                    resolved_venue_id = COALESCE(%s, resolved_venue_id),
                    last_error = %s,
                    updated_at = NOW()
                WHERE event_id = %s
                """,
                (status.value, venue_id, truncate_error(error), event_id),
            )

    def get_event(self, event_id: str) -> Optional[EventLedgerEntry]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_event_ledger
                WHERE event_id = %s
                LIMIT 1
                """,
                (event_id,),
            )
            row = cursor.fetchone()
            return _row_to_ledger_entry(row) if row else None

    # Venue billing records ----------------------------------------------------------

    def get_billing_record(self, venue_id: str) -> Optional[VenueBillingRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM venues
                WHERE venue_id = %s
                LIMIT 1
                """,
                (venue_id,),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def merge_billing_record(self, venue_id: str, patch: BillingRecordPatch) -> Optional[VenueBillingRecord]:
        """Apply every field of ``patch`` in one UPDATE statement."""

        changes = patch.changes()
        if not changes:
            return self.get_billing_record(venue_id)

        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(column))
            for column in changes
        ]
        query = sql.SQL(
            "UPDATE venues SET {assignments}, updated_at = NOW() "
            "WHERE venue_id = {venue_id} RETURNING *"
        ).format(
            assignments=sql.SQL(", ").join(assignments),
            venue_id=sql.Placeholder("venue_id"),
        )
        params = {column: _column_value(column, value) for column, value in changes.items()}
        params["venue_id"] = venue_id

        with self._cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def list_payment_failed(self, *, after_venue_id: Optional[str], limit: int) -> List[VenueBillingRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM venues
                WHERE billing_status = %s
                  AND (%s::text IS NULL OR venue_id > %s)
                ORDER BY venue_id
                LIMIT %s
                """,
                (BillingStatus.PAYMENT_FAILED.value, after_venue_id, after_venue_id, limit),
            )
            rows = cursor.fetchall() or []
            return [_row_to_record(row) for row in rows]

    def backfill_grace_deadline(self, venue_id: str, deadline: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE venues
                SET grace_period_ends_at = %s, updated_at = NOW()
                WHERE venue_id = %s
                  AND billing_status = %s
                  AND grace_period_ends_at IS NULL
                """,
                (from_millis(deadline), venue_id, BillingStatus.PAYMENT_FAILED.value),
            )
            return cursor.rowcount > 0

    def mark_reminder_sent(self, venue_id: str, sent_at: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE venues
                SET reminder_sent_at = %s, updated_at = NOW()
                WHERE venue_id = %s
                  AND billing_status = %s
                  AND reminder_sent_at IS NULL
                """,
                (from_millis(sent_at), venue_id, BillingStatus.PAYMENT_FAILED.value),
            )
            return cursor.rowcount > 0

    def release_reminder(self, venue_id: str, sent_at: int) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE venues
                SET reminder_sent_at = NULL, updated_at = NOW()
                WHERE venue_id = %s AND reminder_sent_at = %s
                """,
                (venue_id, from_millis(sent_at)),
            )

    def show_venue(self, venue_id: str, *, expected_status: BillingStatus) -> Optional[VenueBillingRecord]:
        """Make the venue visible only while its billing status is still ``expected_status``."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE venues
                SET is_visible = TRUE, updated_at = NOW()
                WHERE venue_id = %s
                  AND billing_status = %s
                RETURNING *
                """,
                (venue_id, expected_status.value),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def hide_for_nonpayment(self, venue_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE venues
                SET is_visible = FALSE, updated_at = NOW()
                WHERE venue_id = %s
                  AND billing_status = %s
                  AND is_visible
                """,
                (venue_id, BillingStatus.PAYMENT_FAILED.value),
            )
            return cursor.rowcount > 0

    # Operator audit trail ------------------------------------------------------------

    def record_admin_action(self, action: AdminAction) -> AdminAction:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO admin_actions (actor_id, venue_id, action, details, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    action.actor_id,
                    action.venue_id,
                    action.action.value,
                    psycopg2.extras.Json(action.details),
                    from_millis(action.created_at),
                ),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist admin action")
            return _row_to_admin_action(row)

    def list_admin_actions(self, venue_id: str, *, limit: int = 100) -> List[AdminAction]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM admin_actions
                WHERE venue_id = %s
                ORDER BY created_at DESC, action_id DESC
                LIMIT %s
                """,
                (venue_id, limit),
            )
            rows = cursor.fetchall() or []
            return [_row_to_admin_action(row) for row in rows]


__all__ = ["PostgresBillingRepository", "managed_connection", "truncate_error"]
