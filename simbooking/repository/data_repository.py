"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from simbooking.domain.errors import ConflictError, IllegalActionError, NotFoundError
from simbooking.domain.models import (
    AdvanceBooking,
    BookingStatus,
    Machine,
    MachineStatus,
    QueueStatus,
    Session,
    WalkInEntry,
)
from simbooking.utils.config import Settings, get_settings
from simbooking.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

_BLOCKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)
_ACTIVE_QUEUE_STATUSES = (QueueStatus.WAITING.value, QueueStatus.PLAYING.value)

_BOOKING_COLUMNS = """
    id, machine_id, customer_name, customer_phone, booking_date,
    start_time, end_time, duration_minutes, status, notes,
    created_at, updated_at
"""

_SESSION_COLUMNS = """
    id, station_id, customer_name, booking_id, queue_entry_id,
    start_time, duration_minutes, end_time, notes
"""

_QUEUE_COLUMNS = """
    id, machine_id, customer_name, customer_phone, duration_minutes,
    status, joined_at, called_at, notes
"""


@dataclass(frozen=True)
class OccupancySnapshot:
    """Everything the control board derives from, read in one transaction."""

    date: str
    machines: list[Machine]
    active_sessions: list[Session]
    bookings: list[AdvanceBooking]
    queue_entries: list[WalkInEntry]


def _row_to_machine(row: sqlite3.Row) -> Machine:
    return Machine(
        machine_id=int(row["id"]),
        name=str(row["name"]),
        description=str(row["description"] or ""),
        position=int(row["position"]),
        is_active=bool(row["is_active"]),
        status=MachineStatus(row["status"]),
    )


def _row_to_booking(row: sqlite3.Row) -> AdvanceBooking:
    return AdvanceBooking(
        booking_id=int(row["id"]),
        machine_id=int(row["machine_id"]),
        customer_name=str(row["customer_name"]),
        customer_phone=str(row["customer_phone"]),
        booking_date=str(row["booking_date"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        duration_minutes=int(row["duration_minutes"]),
        status=BookingStatus(row["status"]),
        notes=row["notes"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        session_id=int(row["id"]),
        station_id=int(row["station_id"]),
        customer_name=str(row["customer_name"]),
        start_time=str(row["start_time"]),
        booking_id=None if row["booking_id"] is None else int(row["booking_id"]),
        queue_entry_id=None if row["queue_entry_id"] is None else int(row["queue_entry_id"]),
        duration_minutes=None if row["duration_minutes"] is None else int(row["duration_minutes"]),
        end_time=row["end_time"],
        notes=row["notes"],
    )


def _row_to_queue_entry(row: sqlite3.Row) -> WalkInEntry:
    return WalkInEntry(
        entry_id=int(row["id"]),
        machine_id=int(row["machine_id"]),
        customer_name=str(row["customer_name"]),
        customer_phone=str(row["customer_phone"]),
        duration_minutes=int(row["duration_minutes"]),
        status=QueueStatus(row["status"]),
        joined_at=str(row["joined_at"]),
        called_at=row["called_at"],
        notes=row["notes"],
    )


def _map_rows(
    rows: Iterable[sqlite3.Row],
    mapper: Callable[[sqlite3.Row], T],
    kind: str,
) -> list[T]:
    """Map rows, skipping (and logging) any that fail enum validation."""
    mapped: list[T] = []
    for row in rows:
        try:
            mapped.append(mapper(row))
        except ValueError as exc:
            logger.warning("Skipping unreadable %s row %s: %s", kind, row["id"], exc)
    return mapped


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: multi-statement work goes through _transaction.
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction.

        ``IMMEDIATE`` takes the database write lock up front so a
        check-then-write cannot interleave with another writer; ``DEFERRED``
        gives readers one consistent snapshot.
        """
        connection = self._connect()
        try:
            connection.execute(f"BEGIN {mode};")
            yield connection
            connection.execute("COMMIT;")
        except Exception:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with closing(self._connect()) as conn:
                conn.execute("PRAGMA journal_mode = WAL;")
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS Machines (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        position INTEGER NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        status TEXT NOT NULL DEFAULT 'available'
                            CHECK (status IN ('available','occupied','maintenance')),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS AdvanceBookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        machine_id INTEGER NOT NULL,
                        customer_name TEXT NOT NULL,
                        customer_phone TEXT NOT NULL,
                        booking_date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        duration_minutes INTEGER NOT NULL CHECK (duration_minutes > 0),
                        status TEXT NOT NULL
                            CHECK (status IN ('pending','confirmed','completed','cancelled')),
                        notes TEXT,
                        created_at TEXT,
                        updated_at TEXT,
                        CHECK (start_time < end_time),
                        FOREIGN KEY (machine_id) REFERENCES Machines(id)
                    );

                    CREATE TABLE IF NOT EXISTS WalkInQueue (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        machine_id INTEGER NOT NULL,
                        customer_name TEXT NOT NULL,
                        customer_phone TEXT NOT NULL,
                        duration_minutes INTEGER NOT NULL CHECK (duration_minutes > 0),
                        status TEXT NOT NULL DEFAULT 'waiting',
                        joined_at TEXT NOT NULL,
                        called_at TEXT,
                        notes TEXT,
                        FOREIGN KEY (machine_id) REFERENCES Machines(id)
                    );

                    CREATE TABLE IF NOT EXISTS Sessions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        station_id INTEGER NOT NULL,
                        customer_name TEXT NOT NULL,
                        booking_id INTEGER,
                        queue_entry_id INTEGER,
                        start_time TEXT NOT NULL,
                        duration_minutes INTEGER,
                        end_time TEXT,
                        notes TEXT,
                        FOREIGN KEY (station_id) REFERENCES Machines(id),
                        FOREIGN KEY (booking_id) REFERENCES AdvanceBookings(id),
                        FOREIGN KEY (queue_entry_id) REFERENCES WalkInQueue(id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_bookings_machine_date_status
                    ON AdvanceBookings(machine_id, booking_date, status);

                    CREATE INDEX IF NOT EXISTS idx_bookings_phone
                    ON AdvanceBookings(customer_phone);

                    CREATE INDEX IF NOT EXISTS idx_queue_machine_status
                    ON WalkInQueue(machine_id, status);

                    CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_one_active_per_station
                    ON Sessions(station_id) WHERE end_time IS NULL;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_default_machines(self) -> int:
        """Seed the simulator pool only when the registry is empty."""
        try:
            with closing(self._connect()) as conn:
                count = int(conn.execute("SELECT COUNT(*) AS count FROM Machines;").fetchone()["count"])
                if count > 0:
                    logger.info("Machines already present; skipping seed")
                    return 0
                rows = [
                    (f"Simulator {index}", "Racing simulator rig", index)
                    for index in range(1, self._settings.seed_machine_count + 1)
                ]
                conn.executemany(
                    "INSERT INTO Machines (name, description, position) VALUES (?, ?, ?);",
                    rows,
                )
            logger.info("Seeded %s machines", len(rows))
            return len(rows)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Machine seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Machine registry
    # ------------------------------------------------------------------

    def create_machine(self, name: str, description: str = "", position: Optional[int] = None) -> Machine:
        with self._transaction() as conn:
            if position is None:
                row = conn.execute("SELECT COALESCE(MAX(position), 0) + 1 AS next FROM Machines;").fetchone()
                position = int(row["next"])
            cursor = conn.execute(
                "INSERT INTO Machines (name, description, position) VALUES (?, ?, ?);",
                (name, description, position),
            )
            row = conn.execute("SELECT * FROM Machines WHERE id = ?;", (cursor.lastrowid,)).fetchone()
        return _row_to_machine(row)

    def get_machine(self, machine_id: int) -> Optional[Machine]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM Machines WHERE id = ?;", (machine_id,)).fetchone()
        if row is None:
            return None
        return _row_to_machine(row)

    def list_machines(self, active_only: bool = False) -> list[Machine]:
        query = "SELECT * FROM Machines"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY position ASC, id ASC;"
        with closing(self._connect()) as conn:
            rows = conn.execute(query).fetchall()
        return _map_rows(rows, _row_to_machine, "machine")

    def update_machine(
        self,
        machine_id: int,
        *,
        status: Optional[MachineStatus] = None,
        is_active: Optional[bool] = None,
    ) -> Machine:
        with self._transaction() as conn:
            if status is not None:
                conn.execute(
                    "UPDATE Machines SET status = ? WHERE id = ?;",
                    (status.value, machine_id),
                )
            if is_active is not None:
                conn.execute(
                    "UPDATE Machines SET is_active = ? WHERE id = ?;",
                    (1 if is_active else 0, machine_id),
                )
            row = conn.execute("SELECT * FROM Machines WHERE id = ?;", (machine_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Machine {machine_id} not found")
        return _row_to_machine(row)

    def update_machine_status(self, machine_id: int, status: MachineStatus) -> Machine:
        return self.update_machine(machine_id, status=status)

    # ------------------------------------------------------------------
    # Booking storage
    # ------------------------------------------------------------------

    @staticmethod
    def _find_overlap(
        conn: sqlite3.Connection,
        machine_id: int,
        booking_date: str,
        start_time: str,
        end_time: str,
        exclude_booking_id: Optional[int] = None,
    ) -> Optional[sqlite3.Row]:
        # Zero-padded HH:MM strings (including 24:00) order like minutes.
        query = f"""
            SELECT {_BOOKING_COLUMNS}
            FROM AdvanceBookings
            WHERE machine_id = ?
              AND booking_date = ?
              AND status IN (?, ?)
              AND start_time < ?
              AND end_time > ?
        """
        params: list[Any] = [machine_id, booking_date, *_BLOCKING_STATUSES, end_time, start_time]
        if exclude_booking_id is not None:
            query += " AND id != ?"
            params.append(exclude_booking_id)
        query += " ORDER BY start_time ASC, id ASC LIMIT 1;"
        return conn.execute(query, params).fetchone()

    @staticmethod
    def _conflict_from_row(row: sqlite3.Row, machine_id: int, booking_date: str) -> ConflictError:
        return ConflictError(
            f"Machine {machine_id} is already booked on {booking_date} "
            f"from {row['start_time']} to {row['end_time']}",
            machine_id=machine_id,
            booking_date=booking_date,
            conflicting_booking_id=int(row["id"]),
            conflicting_start=str(row["start_time"]),
            conflicting_end=str(row["end_time"]),
        )

    def insert_booking_if_free(
        self,
        *,
        machine_id: int,
        booking_date: str,
        start_time: str,
        end_time: str,
        duration_minutes: int,
        customer_name: str,
        customer_phone: str,
        status: BookingStatus,
        notes: Optional[str],
        created_at: str,
    ) -> AdvanceBooking:
        """Insert a booking unless a blocking booking overlaps it.

        The overlap check and the insert share one write transaction.
        """
        with self._transaction("IMMEDIATE") as conn:
            if status.blocks_slot:
                overlap = self._find_overlap(conn, machine_id, booking_date, start_time, end_time)
                if overlap is not None:
                    raise self._conflict_from_row(overlap, machine_id, booking_date)
            cursor = conn.execute(
                """
                INSERT INTO AdvanceBookings (
                    machine_id, customer_name, customer_phone, booking_date,
                    start_time, end_time, duration_minutes, status, notes,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    machine_id,
                    customer_name,
                    customer_phone,
                    booking_date,
                    start_time,
                    end_time,
                    duration_minutes,
                    status.value,
                    notes,
                    created_at,
                    created_at,
                ),
            )
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM AdvanceBookings WHERE id = ?;",
                (cursor.lastrowid,),
            ).fetchone()
        return _row_to_booking(row)

    def update_booking(
        self,
        booking_id: int,
        fields: dict[str, Any],
        *,
        updated_at: str,
        recheck_overlap: bool,
        expected_status: Optional[BookingStatus] = None,
    ) -> AdvanceBooking:
        """Apply ``fields`` to a booking, re-checking overlap when asked.

        The overlap check excludes the booking's own prior interval and runs
        in the same write transaction as the update. It also runs whenever a
        non-blocking booking would become blocking again. When
        ``expected_status`` is given the write is refused unless the stored
        status still matches it.
        """
        allowed = {
            "customer_name",
            "customer_phone",
            "booking_date",
            "start_time",
            "end_time",
            "duration_minutes",
            "status",
            "notes",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unsupported booking fields: {sorted(unknown)}")

        values = {
            key: (value.value if isinstance(value, BookingStatus) else value)
            for key, value in fields.items()
        }
        with self._transaction("IMMEDIATE") as conn:
            current = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM AdvanceBookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
            if current is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            if expected_status is not None and current["status"] != expected_status.value:
                raise IllegalActionError(
                    f"Booking {booking_id} is now {current['status']}, "
                    f"expected {expected_status.value}"
                )

            merged = {key: current[key] for key in current.keys()}
            merged.update(values)
            reactivated = current["status"] not in _BLOCKING_STATUSES
            if (recheck_overlap or reactivated) and merged["status"] in _BLOCKING_STATUSES:
                overlap = self._find_overlap(
                    conn,
                    int(merged["machine_id"]),
                    str(merged["booking_date"]),
                    str(merged["start_time"]),
                    str(merged["end_time"]),
                    exclude_booking_id=booking_id,
                )
                if overlap is not None:
                    raise self._conflict_from_row(
                        overlap,
                        int(merged["machine_id"]),
                        str(merged["booking_date"]),
                    )

            values["updated_at"] = updated_at
            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"UPDATE AdvanceBookings SET {assignments} WHERE id = ?;",
                (*values.values(), booking_id),
            )
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM AdvanceBookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
        return _row_to_booking(row)

    def get_booking(self, booking_id: int) -> Optional[AdvanceBooking]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM AdvanceBookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_booking(row)

    def list_bookings(self, machine_id: int, booking_date: str) -> list[AdvanceBooking]:
        """Return every booking of a machine on a date, ordered by start."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM AdvanceBookings
                WHERE machine_id = ? AND booking_date = ?
                ORDER BY start_time ASC, id ASC;
                """,
                (machine_id, booking_date),
            ).fetchall()
        return _map_rows(rows, _row_to_booking, "booking")

    def list_bookings_by_phone(self, customer_phone: str) -> list[AdvanceBooking]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM AdvanceBookings
                WHERE customer_phone = ?
                ORDER BY booking_date DESC, start_time DESC;
                """,
                (customer_phone,),
            ).fetchall()
        return _map_rows(rows, _row_to_booking, "booking")

    def count_bookings_by_status(self) -> dict[str, int]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM AdvanceBookings GROUP BY status;"
            ).fetchall()
        return {str(row["status"]): int(row["count"]) for row in rows}

    # ------------------------------------------------------------------
    # Session store
    # ------------------------------------------------------------------

    def start_session(
        self,
        *,
        station_id: int,
        customer_name: str,
        started_at: str,
        duration_minutes: Optional[int],
        booking_id: Optional[int] = None,
        queue_entry_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Session:
        """Open a session, mark the machine occupied and link its source.

        A linked pending booking becomes confirmed and a linked queue entry
        becomes playing, in the same transaction as the session insert.
        """
        try:
            with self._transaction("IMMEDIATE") as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO Sessions (
                        station_id, customer_name, booking_id, queue_entry_id,
                        start_time, duration_minutes, notes
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        station_id,
                        customer_name,
                        booking_id,
                        queue_entry_id,
                        started_at,
                        duration_minutes,
                        notes,
                    ),
                )
                conn.execute(
                    "UPDATE Machines SET status = ? WHERE id = ? AND status != ?;",
                    (MachineStatus.OCCUPIED.value, station_id, MachineStatus.MAINTENANCE.value),
                )
                if booking_id is not None:
                    conn.execute(
                        "UPDATE AdvanceBookings SET status = ?, updated_at = ? WHERE id = ? AND status = ?;",
                        (
                            BookingStatus.CONFIRMED.value,
                            started_at,
                            booking_id,
                            BookingStatus.PENDING.value,
                        ),
                    )
                if queue_entry_id is not None:
                    conn.execute(
                        """
                        UPDATE WalkInQueue
                        SET status = ?, called_at = COALESCE(called_at, ?)
                        WHERE id = ?;
                        """,
                        (QueueStatus.PLAYING.value, started_at, queue_entry_id),
                    )
                row = conn.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM Sessions WHERE id = ?;",
                    (cursor.lastrowid,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise IllegalActionError(
                f"Machine {station_id} already has an active session"
            ) from exc
        return _row_to_session(row)

    def end_session(
        self,
        session_id: int,
        *,
        ended_at: str,
        duration_minutes: int,
        shop_date: str,
        shop_time: str,
    ) -> Session:
        """Close an active session and settle what it was fulfilling.

        The linked booking and queue entry are completed. The machine flag
        returns to available unless maintenance is set or the machine still
        has blocking bookings later today or waiting walk-ins.
        """
        with self._transaction("IMMEDIATE") as conn:
            current = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM Sessions WHERE id = ?;",
                (session_id,),
            ).fetchone()
            if current is None:
                raise NotFoundError(f"Session {session_id} not found")
            if current["end_time"] is not None:
                raise IllegalActionError(f"Session {session_id} has already ended")

            conn.execute(
                "UPDATE Sessions SET end_time = ?, duration_minutes = ? WHERE id = ?;",
                (ended_at, duration_minutes, session_id),
            )
            if current["booking_id"] is not None:
                conn.execute(
                    "UPDATE AdvanceBookings SET status = ?, updated_at = ? WHERE id = ? AND status IN (?, ?);",
                    (
                        BookingStatus.COMPLETED.value,
                        ended_at,
                        current["booking_id"],
                        *_BLOCKING_STATUSES,
                    ),
                )
            if current["queue_entry_id"] is not None:
                conn.execute(
                    "UPDATE WalkInQueue SET status = ? WHERE id = ? AND status IN (?, ?);",
                    (QueueStatus.COMPLETED.value, current["queue_entry_id"], *_ACTIVE_QUEUE_STATUSES),
                )

            station_id = int(current["station_id"])
            pending_work = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM AdvanceBookings
                     WHERE machine_id = ? AND booking_date = ?
                       AND status IN (?, ?) AND end_time > ?)
                    +
                    (SELECT COUNT(*) FROM WalkInQueue
                     WHERE machine_id = ? AND status = ?) AS count;
                """,
                (
                    station_id,
                    shop_date,
                    *_BLOCKING_STATUSES,
                    shop_time,
                    station_id,
                    QueueStatus.WAITING.value,
                ),
            ).fetchone()
            if int(pending_work["count"]) == 0:
                conn.execute(
                    "UPDATE Machines SET status = ? WHERE id = ? AND status = ?;",
                    (MachineStatus.AVAILABLE.value, station_id, MachineStatus.OCCUPIED.value),
                )
            row = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM Sessions WHERE id = ?;",
                (session_id,),
            ).fetchone()
        return _row_to_session(row)

    def get_session(self, session_id: int) -> Optional[Session]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM Sessions WHERE id = ?;",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_session(row)

    def list_active_sessions(self) -> list[Session]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM Sessions
                WHERE end_time IS NULL
                ORDER BY start_time ASC, id ASC;
                """
            ).fetchall()
        return _map_rows(rows, _row_to_session, "session")

    def list_sessions_for_station(self, station_id: int, limit: int = 30) -> list[Session]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM Sessions
                WHERE station_id = ?
                ORDER BY start_time DESC, id DESC
                LIMIT ?;
                """,
                (station_id, limit),
            ).fetchall()
        return _map_rows(rows, _row_to_session, "session")

    # ------------------------------------------------------------------
    # Walk-in queue storage
    # ------------------------------------------------------------------

    def create_queue_entry(
        self,
        *,
        machine_id: int,
        customer_name: str,
        customer_phone: str,
        duration_minutes: int,
        joined_at: str,
        notes: Optional[str] = None,
    ) -> WalkInEntry:
        with self._transaction("IMMEDIATE") as conn:
            cursor = conn.execute(
                """
                INSERT INTO WalkInQueue (
                    machine_id, customer_name, customer_phone,
                    duration_minutes, status, joined_at, notes
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    machine_id,
                    customer_name,
                    customer_phone,
                    duration_minutes,
                    QueueStatus.WAITING.value,
                    joined_at,
                    notes,
                ),
            )
            row = conn.execute(
                f"SELECT {_QUEUE_COLUMNS} FROM WalkInQueue WHERE id = ?;",
                (cursor.lastrowid,),
            ).fetchone()
        return _row_to_queue_entry(row)

    def get_queue_entry(self, entry_id: int) -> Optional[WalkInEntry]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                f"SELECT {_QUEUE_COLUMNS} FROM WalkInQueue WHERE id = ?;",
                (entry_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_queue_entry(row)

    def list_active_queue_entries(self, machine_id: Optional[int] = None) -> list[WalkInEntry]:
        with closing(self._connect()) as conn:
            return self._select_active_queue_entries(conn, machine_id)

    @staticmethod
    def _select_active_queue_entries(
        conn: sqlite3.Connection,
        machine_id: Optional[int] = None,
    ) -> list[WalkInEntry]:
        # Legacy "called"/"seated" rows count as active (they map to playing).
        query = f"""
            SELECT {_QUEUE_COLUMNS}
            FROM WalkInQueue
            WHERE status NOT IN (?, ?)
        """
        params: list[Any] = [QueueStatus.COMPLETED.value, QueueStatus.CANCELLED.value]
        if machine_id is not None:
            query += " AND machine_id = ?"
            params.append(machine_id)
        query += " ORDER BY joined_at ASC, id ASC;"
        rows = conn.execute(query, params).fetchall()
        return _map_rows(rows, _row_to_queue_entry, "queue entry")

    def list_queue_entries_by_phone(self, customer_phone: str) -> list[WalkInEntry]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"""
                SELECT {_QUEUE_COLUMNS}
                FROM WalkInQueue
                WHERE customer_phone = ?
                ORDER BY joined_at DESC, id DESC;
                """,
                (customer_phone,),
            ).fetchall()
        return _map_rows(rows, _row_to_queue_entry, "queue entry")

    def update_queue_entry_status(self, entry_id: int, status: QueueStatus) -> WalkInEntry:
        with self._transaction("IMMEDIATE") as conn:
            cursor = conn.execute(
                "UPDATE WalkInQueue SET status = ? WHERE id = ?;",
                (status.value, entry_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Queue entry {entry_id} not found")
            row = conn.execute(
                f"SELECT {_QUEUE_COLUMNS} FROM WalkInQueue WHERE id = ?;",
                (entry_id,),
            ).fetchone()
        return _row_to_queue_entry(row)

    def count_queue_entries_by_status_on(self, date: str) -> dict[str, int]:
        """Count entries that joined on ``date`` (shop-local ISO prefix)."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """
                SELECT status, COUNT(*) AS count
                FROM WalkInQueue
                WHERE substr(joined_at, 1, 10) = ?
                GROUP BY status;
                """,
                (date,),
            ).fetchall()
        counts: dict[str, int] = {}
        for row in rows:
            try:
                key = QueueStatus(row["status"]).value
            except ValueError:
                logger.warning("Ignoring queue status %r in stats", row["status"])
                continue
            counts[key] = counts.get(key, 0) + int(row["count"])
        return counts

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def load_occupancy_snapshot(self, date: str) -> OccupancySnapshot:
        """Read machines, live sessions, the day's bookings and queue at once."""
        with self._transaction("DEFERRED") as conn:
            machine_rows = conn.execute(
                "SELECT * FROM Machines WHERE is_active = 1 ORDER BY position ASC, id ASC;"
            ).fetchall()
            session_rows = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM Sessions WHERE end_time IS NULL ORDER BY id ASC;"
            ).fetchall()
            booking_rows = conn.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM AdvanceBookings
                WHERE booking_date = ?
                ORDER BY machine_id ASC, start_time ASC, id ASC;
                """,
                (date,),
            ).fetchall()
            queue_entries = self._select_active_queue_entries(conn)
        return OccupancySnapshot(
            date=date,
            machines=_map_rows(machine_rows, _row_to_machine, "machine"),
            active_sessions=_map_rows(session_rows, _row_to_session, "session"),
            bookings=_map_rows(booking_rows, _row_to_booking, "booking"),
            queue_entries=queue_entries,
        )
