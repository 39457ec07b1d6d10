# Overview: Service-layer operations for concurrency; transaction boundaries, row locks and retry on contention.

from __future__ import annotations

import re
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .audit_service import acting_as
from .errors import ForbiddenError, InvalidArgumentError, LockTimeoutError


_ROLE_NAME = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")

# SQLSTATE insufficient_privilege: a missing grant or an append-only trigger
_PG_INSUFFICIENT_PRIVILEGE = "42501"


def lock_for_update(query, *, skip_locked: bool = False):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole write
    transaction is serialized by BEGIN IMMEDIATE instead.
    """
    return query.with_for_update(skip_locked=skip_locked)


def database_role(privileged: bool) -> str | None:
    """
    PostgreSQL role for a write transaction, or None to stay the login role.

    Stock, balance and state transitions run as DATABASE_SERVICE_ROLE;
    everything else as DATABASE_APP_ROLE. The grants made by the migration
    are what actually enforce the split.
    """
    key = "DATABASE_SERVICE_ROLE" if privileged else "DATABASE_APP_ROLE"
    role = current_app.config.get(key)
    if not role:
        return None
    if not _ROLE_NAME.match(role):
        raise InvalidArgumentError(f"{key} is not a valid role name", details={"role": role})
    return role


def _begin_write_transaction(privileged: bool = False) -> None:
    """
    Start the write transaction on the session's connection.

    SQLite: take the database write lock up front (BEGIN IMMEDIATE) so two
    writers queue on the busy timeout instead of failing at commit.
    PostgreSQL: switch to the app or service role, then bound every
    row-lock wait in this transaction.
    """
    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        raw = db.session.connection().connection.driver_connection
        if not raw.in_transaction:
            db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        role = database_role(privileged)
        if role:
            db.session.execute(text(f'SET LOCAL ROLE "{role}"'))
        timeout_ms = int(current_app.config["LOCK_TIMEOUT_SECONDS"] * 1000)
        db.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


def run_in_transaction(
    func,
    *,
    actor_user_id: int | None = None,
    actor_ip: str | None = None,
    privileged: bool = False,
):
    """
    Execute `func` inside one write transaction and commit it.

    Any exception rolls the transaction back and propagates. Lock contention
    (OperationalError, StaleDataError) is retried with exponential backoff;
    once the attempts are used up it surfaces as LockTimeoutError.

    The actor is attached to the session for the duration so the audit
    capture attributes every change made by `func`. `privileged` selects the
    service role on PostgreSQL.
    """
    attempts = max(1, int(current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)))
    backoff_base = float(current_app.config.get("LOCK_RETRY_BACKOFF_SECONDS", 0.1))

    last_exc = None
    for attempt in range(attempts):
        try:
            with acting_as(actor_user_id, actor_ip):
                _begin_write_transaction(privileged)
                result = func()
                db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            current_app.logger.warning(
                "Write transaction contention (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            if attempt < attempts - 1:
                time.sleep(backoff_base * (2 ** attempt))
        except DBAPIError as exc:
            db.session.rollback()
            if getattr(exc.orig, "pgcode", None) == _PG_INSUFFICIENT_PRIVILEGE:
                raise ForbiddenError(
                    "The database refused this write for the current role",
                    details={"privileged": privileged},
                ) from exc
            raise
        except Exception:
            db.session.rollback()
            raise

    raise LockTimeoutError(
        "Could not acquire the required locks in time; retry the request",
        details={"attempts": attempts},
    ) from last_exc
