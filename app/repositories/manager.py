"""Unit of work: the repositories of one request plus a single save().

All repositories share one entity store, so everything staged through any of
them is committed together by save(), or not at all.
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from app.adapters.store.sqlalchemy_store import SqlAlchemyEntityStore
from app.repositories.company_repository import CompanyRepository
from app.repositories.employee_repository import EmployeeRepository


class RepositoryManager:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        commit_timeout_seconds: float | None = None,
        query_timeout_seconds: float | None = None,
    ) -> None:
        self._store = SqlAlchemyEntityStore(
            session_factory,
            query_timeout_seconds=query_timeout_seconds,
        )
        self._commit_timeout = commit_timeout_seconds
        self._company: CompanyRepository | None = None
        self._employee: EmployeeRepository | None = None

    @property
    def store(self) -> SqlAlchemyEntityStore:
        return self._store

    @property
    def company(self) -> CompanyRepository:
        if self._company is None:
            self._company = CompanyRepository(self._store)
        return self._company

    @property
    def employee(self) -> EmployeeRepository:
        if self._employee is None:
            self._employee = EmployeeRepository(self._store)
        return self._employee

    def save(self, *, timeout: float | None = None) -> None:
        """Persist every staged change; may be called once per unit of work.

        Args:
            timeout: Deadline in seconds; defaults to the configured commit timeout.

        Raises:
            StorageAppError: On failure (the unit of work is rolled back) or
                when called a second time.
        """

        self._store.commit(timeout=self._commit_timeout if timeout is None else timeout)

    def close(self) -> None:
        self._store.close()
