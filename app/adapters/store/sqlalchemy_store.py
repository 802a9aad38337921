"""SQLAlchemy-backed entity store (one instance per unit of work).

Notes:
- Tracked queries run on the unit-of-work session; SQLAlchemy's identity map
  and dirty tracking provide change tracking.
- Untracked queries run on a short-lived separate session whose results are
  expunged before it closes, so mutating them never reaches the database.
- Staged mutations are kept in memory and applied to the session only inside
  commit(); the session is created with autoflush disabled, so no SQL is
  emitted for writes before the unit of work is persisted.
- Deadlines are enforced between commit steps and inside statements
  (SQLite progress handler, PostgreSQL statement_timeout).
"""

from __future__ import annotations

import logging
import math
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Sequence

from sqlalchemy import Connection, func, inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.adapters.store.base import AbstractEntityStore, E, Mutation, MutationKind
from app.core.errors import (
    AppError,
    StorageAppError,
    StorageIntegrityError,
    StorageTimeoutError,
    ValidationAppError,
)
from app.models.entities import Entity

logger = logging.getLogger(__name__)

# Number of SQLite VM instructions between deadline checks
_SQLITE_PROGRESS_STEPS = 1000

_TIMEOUT_MARKERS = ("interrupted", "timeout", "timed out", "locked", "canceling statement")


class Deadline:
    """Absolute deadline derived from a relative timeout.

    A ``None`` timeout never expires.
    """

    def __init__(
        self,
        timeout: float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.timeout = timeout
        self._expires_at = None if timeout is None else clock() + timeout

    def remaining(self) -> float:
        if self._expires_at is None:
            return math.inf
        return self._expires_at - self._clock()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, step: str) -> None:
        if self.expired():
            raise StorageTimeoutError(
                code="storage_timeout",
                message=f"Storage deadline exceeded during {step}",
                details={"timeout_seconds": self.timeout or 0.0, "retryable": True},
            )


@contextmanager
def statement_deadline(connection: Connection, deadline: Deadline) -> Iterator[None]:
    """Make statements on ``connection`` abort once ``deadline`` expires."""

    if deadline.timeout is None:
        yield
        return

    dialect = connection.dialect.name
    if dialect == "sqlite":
        raw = connection.connection.driver_connection
        raw.set_progress_handler(lambda: 1 if deadline.expired() else 0, _SQLITE_PROGRESS_STEPS)
        try:
            yield
        finally:
            raw.set_progress_handler(None, _SQLITE_PROGRESS_STEPS)
    elif dialect == "postgresql":
        timeout_ms = max(1, int(deadline.remaining() * 1000))
        connection.exec_driver_sql(f"SET LOCAL statement_timeout = {timeout_ms}")
        yield
    else:
        yield


def validate_entity(entity: Entity) -> None:
    """Pre-flight constraint check for required fields and string lengths.

    Foreign keys populated through a relationship are resolved at flush
    time and are therefore not checked here.

    Raises:
        ValidationAppError: If a required column is None or a string is too long.
    """

    mapper = inspect(type(entity))
    state = inspect(entity)
    entity_name = type(entity).__name__

    relationship_columns: set[str] = set()
    for rel in mapper.relationships:
        # Never trigger a lazy load here; detached entities would raise
        if rel.key in state.unloaded:
            continue
        if state.attrs[rel.key].value is not None:
            relationship_columns.update(col.key for col in rel.local_columns)

    for column in mapper.columns:
        value = getattr(entity, column.key, None)
        if value is None:
            if (
                column.nullable
                or column.primary_key
                or column.default is not None
                or column.server_default is not None
                or column.key in relationship_columns
            ):
                continue
            raise ValidationAppError(
                code="required_field_missing",
                message=f"{entity_name}.{column.key} is required",
                details={"entity": entity_name, "field": column.key},
            )

        max_length = getattr(column.type, "length", None)
        if isinstance(value, str) and max_length is not None and len(value) > max_length:
            raise ValidationAppError(
                code="field_too_long",
                message=f"{entity_name}.{column.key} exceeds {max_length} characters",
                details={"entity": entity_name, "field": column.key, "max_length": max_length},
            )


def _is_timeout(exc: OperationalError, deadline: Deadline) -> bool:
    if deadline.expired():
        return True
    text = str(exc.orig or exc).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


class SqlAlchemyEntityStore(AbstractEntityStore):
    """Entity store over a SQLAlchemy ``sessionmaker``.

    Important:
        The session factory must be configured with ``autoflush=False`` and
        ``expire_on_commit=False`` (see app.core.database.build_session_factory).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        query_timeout_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._session = session_factory()
        self._query_timeout = query_timeout_seconds
        self._pending: list[Mutation] = []
        self._closed = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def pending(self) -> tuple[Mutation, ...]:
        return tuple(self._pending)

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageAppError(
                code="unit_of_work_closed",
                message="This unit of work has already been committed or closed",
            )

    def _build_select(self, entity_type: type[E], predicate: Any | None, order_by: Sequence[Any]):
        stmt = select(entity_type)
        if predicate is not None:
            stmt = stmt.where(predicate)
        if order_by:
            stmt = stmt.order_by(*order_by)
        return stmt

    def _run_select(self, stmt, *, track: bool) -> list[Any]:
        return self._read(lambda session: list(session.scalars(stmt).all()), track=track)

    def _read(self, fetch: Callable[[Session], Any], *, track: bool) -> Any:
        deadline = Deadline(self._query_timeout)
        try:
            if track:
                with statement_deadline(self._session.connection(), deadline):
                    return fetch(self._session)

            with self._session_factory() as reader:
                with statement_deadline(reader.connection(), deadline):
                    result = fetch(reader)
                reader.expunge_all()
                return result
        except OperationalError as exc:
            if _is_timeout(exc, deadline):
                raise StorageTimeoutError(
                    code="storage_timeout",
                    message="Storage deadline exceeded during query",
                    details={"timeout_seconds": self._query_timeout or 0.0, "retryable": True},
                ) from exc
            raise StorageAppError(code="storage_error", message="Query failed") from exc
        except SQLAlchemyError as exc:
            raise StorageAppError(code="storage_error", message="Query failed") from exc

    def query(
        self,
        entity_type: type[E],
        predicate: Any | None = None,
        *,
        track: bool,
        order_by: Sequence[Any] = (),
    ) -> list[E]:
        self._ensure_open()
        return self._run_select(self._build_select(entity_type, predicate, order_by), track=track)

    def page(
        self,
        entity_type: type[E],
        predicate: Any | None = None,
        *,
        track: bool,
        order_by: Sequence[Any] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[E]:
        self._ensure_open()
        stmt = self._build_select(entity_type, predicate, order_by).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._run_select(stmt, track=track)

    def count(self, entity_type: type[E], predicate: Any | None = None) -> int:
        self._ensure_open()
        stmt = select(func.count()).select_from(entity_type)
        if predicate is not None:
            stmt = stmt.where(predicate)
        return int(self._read(lambda session: session.scalar(stmt), track=False) or 0)

    def stage(self, mutation: Mutation) -> None:
        self._ensure_open()
        if mutation.kind in (MutationKind.CREATE, MutationKind.UPDATE):
            validate_entity(mutation.entity)
        self._pending.append(mutation)
        logger.debug(
            "store.staged",
            extra={
                "mutation": mutation.kind.value,
                "entity": type(mutation.entity).__name__,
                "pending": len(self._pending),
            },
        )

    def _apply(self, mutation: Mutation) -> None:
        entity = mutation.entity
        tracked = entity in self._session
        if mutation.kind is MutationKind.CREATE:
            self._session.add(entity)
        elif mutation.kind is MutationKind.UPDATE:
            if not tracked:
                self._session.merge(entity)
        elif mutation.kind is MutationKind.DELETE:
            self._session.delete(entity if tracked else self._session.merge(entity))

    def commit(self, *, timeout: float | None = None) -> None:
        self._ensure_open()
        deadline = Deadline(timeout)
        staged = len(self._pending)
        try:
            for mutation in self._pending:
                deadline.check("staging")
                self._apply(mutation)
            deadline.check("flush")
            with statement_deadline(self._session.connection(), deadline):
                self._session.flush()
                deadline.check("commit")
                self._session.commit()
        except AppError as exc:
            self._fail(exc, staged)
            raise
        except IntegrityError as exc:
            self._fail(exc, staged)
            raise StorageIntegrityError(
                code="storage_integrity_error",
                message="The store rejected the changes (constraint violation)",
                details={"retryable": False},
            ) from exc
        except OperationalError as exc:
            self._fail(exc, staged)
            if _is_timeout(exc, deadline):
                raise StorageTimeoutError(
                    code="storage_timeout",
                    message="Storage deadline exceeded while persisting changes",
                    details={"timeout_seconds": timeout or 0.0, "retryable": True},
                ) from exc
            raise StorageAppError(
                code="storage_error",
                message="Persisting changes failed",
                details={"retryable": False},
            ) from exc
        except SQLAlchemyError as exc:
            self._fail(exc, staged)
            raise StorageAppError(
                code="storage_error",
                message="Persisting changes failed",
                details={"retryable": False},
            ) from exc
        finally:
            self._pending.clear()
            self._closed = True

        logger.info("store.committed", extra={"mutations": staged})

    def _fail(self, exc: Exception, staged: int) -> None:
        self._session.rollback()
        logger.warning(
            "store.commit_failed",
            extra={"mutations": staged, "error_type": type(exc).__name__},
        )

    def rollback(self) -> None:
        self._pending.clear()
        self._session.rollback()

    def close(self) -> None:
        self._pending.clear()
        self._closed = True
        self._session.close()
