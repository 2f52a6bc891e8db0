"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and pipeline code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL. Sort columns are
  resolved through the _SORT_COLUMNS whitelist, never from raw user input.

Connection pool:
  Server databases (PostgreSQL) get a bounded pool -- pool_size connections,
  max_overflow=0, and pool_timeout seconds to wait for a free slot before
  sqlalchemy.exc.TimeoutError. Callers block only while waiting for a slot or
  a query result. SQLite (dev and tests) keeps SQLAlchemy's default pool with
  WAL mode enabled.

Email normalisation:
  Emails are lowercased and trimmed on write AND on lookup, so the UNIQUE
  constraint is effectively case-insensitive on every backend.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import User, UserStatus

logger = logging.getLogger("itums.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4 string, assigned in create_user()
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # lowercased + trimmed
    Column("password_hash", String(255), nullable=False),
    Column("status", String(20), nullable=False, server_default=UserStatus.unverified.value),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),  # ISO 8601 timestamp of last successful login
    CheckConstraint("status IN ('unverified', 'active', 'blocked')", name="ck_users_status"),
    Index("idx_users_status", "status"),
    Index("idx_users_last_login", "last_login"),
)

_SORT_COLUMNS = {
    "name": _users.c.name,
    "email": _users.c.email,
    "last_login": _users.c.last_login,
    "created_at": _users.c.created_at,
    "status": _users.c.status,
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///itums.db")
        user_id = store.create_user(User(name="Alice", email="a@x.com", password_hash=hash_password("pw")))
        user = store.get_by_email("A@X.com ")
        store.close()
    """

    def __init__(self, db_url: str, pool_size: int = 20, pool_timeout: float = 2.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
            )
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self.create_tables()

    # ------------------------------------------------------------------
    # Schema management (used by manage.py as well)
    # ------------------------------------------------------------------

    def create_tables(self) -> None:
        """Create the users table and its indexes if they do not exist. Idempotent."""
        _metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop every table owned by this store. Destroys all data."""
        _metadata.drop_all(self.engine)
        logger.warning("All user tables dropped")

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned UUID.

        The row is always inserted with the status carried by the dataclass
        (UserStatus.unverified unless a caller such as the test suite says
        otherwise). Raises sqlalchemy.exc.IntegrityError if the email already
        exists -- callers map that to 409.
        """
        user_id = str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name.strip(),
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    status=UserStatus(user.status).value,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by normalised email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login. Called only after a successful login."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def activate(self, user_id: str) -> User | None:
        """Move an unverified account to active and return the current row.

        The UPDATE only matches status='unverified', so replaying a
        verification token is a no-op for active accounts and can never lift
        a block. Returns None if the user no longer exists.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.status == UserStatus.unverified.value))
                .values(status=UserStatus.active.value)
            )
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            conn.commit()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "last_login",
        sort_order: str = "desc",
        status: UserStatus | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of users plus the total row count for the filter.

        NULL last_login values sort last in both directions so never-logged-in
        accounts do not crowd the top of the default view. id is the final
        tie-breaker to keep pages stable.
        """
        column = _SORT_COLUMNS.get(sort_by, _users.c.last_login)
        order = column.asc() if sort_order == "asc" else column.desc()
        if column is _users.c.last_login:
            order = order.nulls_last()

        where = _users.c.status == status.value if status is not None else None
        count_stmt = select(func.count()).select_from(_users)
        page_stmt = _users.select().order_by(order, _users.c.id).limit(limit).offset((page - 1) * limit)
        if where is not None:
            count_stmt = count_stmt.where(where)
            page_stmt = page_stmt.where(where)

        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
        return [_row_to_user(r) for r in rows], total

    def status_counts(self) -> dict[str, int]:
        """Return {"total", "active", "unverified", "blocked"} counts."""
        stats = {"total": 0, **{s.value: 0 for s in UserStatus}}
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.status, func.count()).group_by(_users.c.status)).fetchall()
        for status, count in rows:
            stats[status] = count
            stats["total"] += count
        return stats

    # ------------------------------------------------------------------
    # Bulk administrative actions
    # ------------------------------------------------------------------

    def block_users(self, user_ids: list[str]) -> list[User]:
        """Block the given users that are currently active or unverified.

        Returns the rows that actually changed. Already-blocked and unknown ids
        are skipped silently; the caller decides whether an empty result is
        an error. Self-block is the caller's check -- the store has no notion
        of who is asking.
        """
        return self._transition(
            user_ids,
            from_statuses=(UserStatus.active, UserStatus.unverified),
            to_status=UserStatus.blocked,
        )

    def unblock_users(self, user_ids: list[str]) -> list[User]:
        """Move the given blocked users back to active. Returns the rows that changed."""
        return self._transition(user_ids, from_statuses=(UserStatus.blocked,), to_status=UserStatus.active)

    def delete_users(self, user_ids: list[str]) -> list[User]:
        """Permanently delete users. Returns a snapshot of the deleted rows."""
        if not user_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(user_ids))).fetchall()
            if rows:
                conn.execute(_users.delete().where(_users.c.id.in_([r.id for r in rows])))
            conn.commit()
        return [_row_to_user(r) for r in rows]

    def delete_unverified(self) -> int:
        """Delete every account that never verified its email. Returns the count removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.status == UserStatus.unverified.value))
            conn.commit()
        return result.rowcount

    def delete_all(self) -> int:
        """Delete every user row, keeping the schema. Returns the count removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete())
            conn.commit()
        return result.rowcount

    def _transition(
        self,
        user_ids: list[str],
        from_statuses: tuple[UserStatus, ...],
        to_status: UserStatus,
    ) -> list[User]:
        if not user_ids:
            return []
        allowed = [s.value for s in from_statuses]
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.id.in_(user_ids) & _users.c.status.in_(allowed))
            ).fetchall()
            if rows:
                conn.execute(
                    _users.update()
                    .where(_users.c.id.in_([r.id for r in rows]) & _users.c.status.in_(allowed))
                    .values(status=to_status.value)
                )
            conn.commit()
        return [replace(_row_to_user(r), status=to_status) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        status=UserStatus(row.status),
        created_at=row.created_at,
        last_login=row.last_login,
    )
