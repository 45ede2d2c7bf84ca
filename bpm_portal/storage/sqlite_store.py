"""SQLite repository for tickets, activity, and settings."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from bpm_portal.storage.schema import init_portal_db

logger = logging.getLogger(__name__)

ACTIVITY_RETENTION = 100
BUSY_TIMEOUT_SECONDS = 30.0

TICKET_DEFAULTS: dict[str, str] = {
    "title": "",
    "description": "",
    "type": "feature",
    "priority": "medium",
    "status": "open",
    "area": "",
    "subarea": "",
    "assignee": "",
    "files": "",
}

_TICKET_COLUMNS = ("id", *TICKET_DEFAULTS, "createdAt", "updatedAt")
_INSERT_TICKET_SQL = (
    f"INSERT INTO tickets ({', '.join(_TICKET_COLUMNS)}) "
    f"VALUES ({', '.join(':' + column for column in _TICKET_COLUMNS)})"
)
_UPDATE_TICKET_SQL = (
    "UPDATE tickets SET "
    + ", ".join(f"{column}=:{column}" for column in (*TICKET_DEFAULTS, "updatedAt"))
    + " WHERE id=:id"
)
_LIST_TICKETS_SQL = "SELECT * FROM tickets ORDER BY createdAt DESC, rowid ASC"
_RECENT_ACTIVITY_SQL = (
    "SELECT action, ticketId, title, time FROM activity ORDER BY rowid_ DESC LIMIT ?"
)
_TRIM_ACTIVITY_SQL = (
    "DELETE FROM activity WHERE rowid_ NOT IN "
    "(SELECT rowid_ FROM activity ORDER BY rowid_ DESC LIMIT ?)"
)


class TicketExistsError(ValueError):
    """Raised when inserting a ticket whose id is already stored."""


def utc_now_iso() -> str:
    """Return current UTC time as `YYYY-MM-DDTHH:MM:SS.mmmZ`."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_ticket_row(fields: dict[str, Any], now: str | None = None) -> dict[str, Any]:
    """
    Apply insert defaults to caller-supplied ticket fields.

    Falsy values count as absent. Both timestamps fall back to the same `now`
    so a fresh ticket has createdAt == updatedAt.
    """
    now = now or utc_now_iso()
    row: dict[str, Any] = {"id": fields.get("id")}
    for column, default in TICKET_DEFAULTS.items():
        row[column] = fields.get(column) or default
    row["createdAt"] = fields.get("createdAt") or now
    row["updatedAt"] = fields.get("updatedAt") or now
    return row


def build_activity_row(entry: dict[str, Any], now: str | None = None) -> dict[str, Any]:
    return {
        "action": entry.get("action") or "",
        "ticketId": entry.get("ticketId") or None,
        "title": entry.get("title") or "",
        "time": entry.get("time") or now or utc_now_iso(),
    }


class PortalStore:
    """
    Repository over the portal SQLite file.

    Each call opens its own connection. Writers take `BEGIN IMMEDIATE` so SQLite
    serializes them; WAL mode keeps readers on the last committed state.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def initialize(self) -> None:
        init_portal_db(self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, *, write: bool = True) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction; rolled back on any exception."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # --- tickets -------------------------------------------------------------

    def list_tickets(self) -> list[dict[str, Any]]:
        with self._connect() as conn:
            return [dict(row) for row in conn.execute(_LIST_TICKETS_SQL).fetchall()]

    def get_ticket(self, ticket_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            return self._get_ticket(conn, ticket_id)

    def count_tickets(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM tickets").fetchone()[0]

    def insert_ticket(
        self, fields: dict[str, Any], activity: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Insert one ticket with defaults applied, plus an optional activity entry.

        Args:
            fields: Ticket columns supplied by the caller; `id` is required.
            activity: Optional activity entry appended in the same transaction.
        Returns:
            The stored ticket row.
        Raises:
            TicketExistsError: When a ticket with that id already exists.
        """
        now = utc_now_iso()
        row = build_ticket_row(fields, now)
        with self._transaction() as conn:
            try:
                conn.execute(_INSERT_TICKET_SQL, row)
            except sqlite3.IntegrityError as exc:
                raise TicketExistsError(f"Ticket already exists: {row['id']}") from exc
            if activity is not None:
                self._append_activity(conn, activity, now)
            return self._get_ticket(conn, row["id"])

    def update_ticket(
        self,
        ticket_id: str,
        changes: dict[str, Any],
        activity: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Merge supplied fields over the stored ticket.

        Args:
            ticket_id: Ticket to update.
            changes: Columns to overwrite; columns not present keep their value.
            activity: Optional activity entry appended in the same transaction.
        Returns:
            Updated ticket, or None when the id is unknown (nothing is written).
        """
        now = utc_now_iso()
        with self._transaction() as conn:
            existing = self._get_ticket(conn, ticket_id)
            if existing is None:
                return None
            merged = {column: changes.get(column, existing[column]) for column in TICKET_DEFAULTS}
            merged["id"] = ticket_id
            merged["updatedAt"] = changes.get("updatedAt") or now
            conn.execute(_UPDATE_TICKET_SQL, merged)
            if activity is not None:
                self._append_activity(conn, activity, now)
            return self._get_ticket(conn, ticket_id)

    def delete_ticket(self, ticket_id: str, activity: dict[str, Any] | None = None) -> bool:
        """Delete a ticket; returns False (and writes nothing) when the id is unknown."""
        with self._transaction() as conn:
            if self._get_ticket(conn, ticket_id) is None:
                return False
            conn.execute("DELETE FROM tickets WHERE id = ?", (ticket_id,))
            if activity is not None:
                self._append_activity(conn, activity)
            return True

    def delete_all_tickets(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM tickets")

    # --- activity ------------------------------------------------------------

    def recent_activity(self, limit: int = ACTIVITY_RETENTION) -> list[dict[str, Any]]:
        with self._connect() as conn:
            return [dict(row) for row in conn.execute(_RECENT_ACTIVITY_SQL, (limit,)).fetchall()]

    def append_activity(self, entry: dict[str, Any]) -> None:
        """Insert one activity entry, then trim the log to the most recent rows."""
        with self._transaction() as conn:
            self._append_activity(conn, entry)

    def delete_all_activity(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM activity")

    # --- settings ------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, value),
            )

    def delete_setting(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    # --- whole-state ---------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Read tickets and recent activity from one consistent read transaction."""
        with self._transaction(write=False) as conn:
            tickets = [dict(row) for row in conn.execute(_LIST_TICKETS_SQL).fetchall()]
            activity = [
                dict(row)
                for row in conn.execute(_RECENT_ACTIVITY_SQL, (ACTIVITY_RETENTION,)).fetchall()
            ]
        return {"tickets": tickets, "activity": activity}

    def full_sync(
        self, tickets: list[dict[str, Any]], activity: list[dict[str, Any]]
    ) -> None:
        """
        Replace every ticket and activity row with a client snapshot.

        Activity is expected newest-first (the order reads return) and is
        inserted oldest-first so the order survives a read/write round trip.
        All-or-nothing: any failure rolls the whole replacement back.
        """
        now = utc_now_iso()
        with self._transaction() as conn:
            conn.execute("DELETE FROM tickets")
            conn.execute("DELETE FROM activity")
            conn.executemany(
                _INSERT_TICKET_SQL, [build_ticket_row(ticket, now) for ticket in tickets]
            )
            conn.executemany(
                "INSERT INTO activity (action, ticketId, title, time) "
                "VALUES (:action, :ticketId, :title, :time)",
                [build_activity_row(entry, now) for entry in reversed(activity)],
            )
            conn.execute(_TRIM_ACTIVITY_SQL, (ACTIVITY_RETENTION,))
        logger.info("Full sync stored %d tickets and %d activity entries.", len(tickets), len(activity))

    # --- connection-scoped helpers -------------------------------------------

    @staticmethod
    def _get_ticket(conn: sqlite3.Connection, ticket_id: str) -> dict[str, Any] | None:
        row = conn.execute("SELECT * FROM tickets WHERE id = ?", (ticket_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def _append_activity(
        conn: sqlite3.Connection, entry: dict[str, Any], now: str | None = None
    ) -> None:
        conn.execute(
            "INSERT INTO activity (action, ticketId, title, time) "
            "VALUES (:action, :ticketId, :title, :time)",
            build_activity_row(entry, now),
        )
        conn.execute(_TRIM_ACTIVITY_SQL, (ACTIVITY_RETENTION,))
