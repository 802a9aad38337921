"""Employee use cases scoped to their company."""

from __future__ import annotations

import logging
import uuid

from app.core.errors import NotFoundAppError, ValidationAppError
from app.models.entities import Employee
from app.repositories.manager import RepositoryManager
from app.repositories.paging import PaginationMetadata
from app.schemas.employee import (
    EmployeeDto,
    EmployeeForCreation,
    EmployeeForUpdate,
    EmployeeParameters,
)
from app.services.company_service import _not_found as _company_not_found

logger = logging.getLogger(__name__)


class EmployeeService:
    def __init__(self, repositories: RepositoryManager) -> None:
        self._repositories = repositories

    def _ensure_company_exists(self, company_id: uuid.UUID) -> None:
        if self._repositories.company.get_company(company_id, track=False) is None:
            raise _company_not_found(company_id)

    def _get_employee_or_raise(
        self,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        track: bool,
    ) -> Employee:
        employee = self._repositories.employee.get_employee(company_id, employee_id, track)
        if employee is None:
            raise NotFoundAppError(
                code="employee_not_found",
                message=f"Employee with id: {employee_id} doesn't exist in the database.",
                details={"entity": "Employee", "entity_id": str(employee_id)},
            )
        return employee

    def get_employees(
        self,
        company_id: uuid.UUID,
        params: EmployeeParameters,
    ) -> tuple[list[EmployeeDto], PaginationMetadata]:
        if not params.valid_age_range:
            raise ValidationAppError(
                code="invalid_age_range",
                message="Max age can't be less than min age.",
            )
        self._ensure_company_exists(company_id)
        page = self._repositories.employee.get_employees(company_id, params, track=False)
        return [EmployeeDto.from_entity(e) for e in page.items], page.metadata

    def get_employee(self, company_id: uuid.UUID, employee_id: uuid.UUID) -> EmployeeDto:
        self._ensure_company_exists(company_id)
        return EmployeeDto.from_entity(
            self._get_employee_or_raise(company_id, employee_id, track=False)
        )

    def create_employee_for_company(
        self,
        company_id: uuid.UUID,
        payload: EmployeeForCreation,
    ) -> EmployeeDto:
        self._ensure_company_exists(company_id)
        employee = payload.to_entity()
        self._repositories.employee.create_employee_for_company(company_id, employee)
        self._repositories.save()
        logger.info(
            "employee.created",
            extra={"company_id": str(company_id), "employee_id": str(employee.id)},
        )
        return EmployeeDto.from_entity(employee)

    def update_employee_for_company(
        self,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        payload: EmployeeForUpdate,
    ) -> None:
        self._ensure_company_exists(company_id)
        employee = self._get_employee_or_raise(company_id, employee_id, track=True)
        payload.apply_to(employee)
        self._repositories.employee.update_employee(employee)
        self._repositories.save()
        logger.info("employee.updated", extra={"employee_id": str(employee_id)})

    def delete_employee_for_company(self, company_id: uuid.UUID, employee_id: uuid.UUID) -> None:
        self._ensure_company_exists(company_id)
        employee = self._get_employee_or_raise(company_id, employee_id, track=True)
        self._repositories.employee.delete_employee(employee)
        self._repositories.save()
        logger.info("employee.deleted", extra={"employee_id": str(employee_id)})
