"""Employee data access.

Ordering contract: employee pages are sorted by the requested ``order_by``
fields (default ``name``), always followed by ``id`` as a tie breaker.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import and_

from app.adapters.store.base import AbstractEntityStore
from app.models.entities import Employee
from app.repositories.base import Repository
from app.repositories.paging import PagedList, PaginationMetadata
from app.schemas.employee import EmployeeParameters

_SORTABLE_FIELDS = {
    "name": Employee.name,
    "age": Employee.age,
    "position": Employee.position,
}


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_order_by(order_by: str | None) -> list[Any]:
    """Translate ``"name desc,age"`` into ORDER BY expressions.

    Unknown fields are ignored; an empty result falls back to ``name``.
    """

    clauses: list[Any] = []
    for raw in (order_by or "").split(","):
        parts = raw.strip().split()
        if not parts:
            continue
        column = _SORTABLE_FIELDS.get(parts[0].lower())
        if column is None:
            continue
        descending = len(parts) > 1 and parts[1].lower() == "desc"
        clauses.append(column.desc() if descending else column.asc())

    if not clauses:
        clauses.append(Employee.name.asc())
    clauses.append(Employee.id.asc())
    return clauses


class EmployeeRepository:
    def __init__(self, store: AbstractEntityStore) -> None:
        self._employees: Repository[Employee] = Repository(Employee, store)

    def _filter(self, company_id: uuid.UUID, params: EmployeeParameters) -> Any:
        condition = and_(
            Employee.company_id == company_id,
            Employee.age >= params.min_age,
            Employee.age <= params.max_age,
        )
        if params.search_term:
            term = _escape_like(params.search_term.strip())
            condition = and_(condition, Employee.name.ilike(f"%{term}%", escape="\\"))
        return condition

    def get_employees(
        self,
        company_id: uuid.UUID,
        params: EmployeeParameters,
        track: bool,
    ) -> PagedList[Employee]:
        condition = self._filter(company_id, params)
        total = self._employees.count(condition)
        items = self._employees.find_page(
            condition,
            track,
            order_by=build_order_by(params.order_by),
            offset=(params.page_number - 1) * params.page_size,
            limit=params.page_size,
        )
        return PagedList(
            items=items,
            metadata=PaginationMetadata(
                current_page=params.page_number,
                page_size=params.page_size,
                total_count=total,
            ),
        )

    def get_employee(
        self,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        track: bool,
    ) -> Employee | None:
        found = self._employees.find_by_condition(
            and_(Employee.company_id == company_id, Employee.id == employee_id),
            track,
        )
        return found[0] if found else None

    def create_employee_for_company(self, company_id: uuid.UUID, employee: Employee) -> None:
        employee.company_id = company_id
        self._employees.create(employee)

    def update_employee(self, employee: Employee) -> None:
        self._employees.update(employee)

    def delete_employee(self, employee: Employee) -> None:
        self._employees.delete(employee)
