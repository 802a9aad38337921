from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from app.core.database import get_repository_manager
from app.core.versioning import VersionRouter, resolve_for_request
from app.repositories.manager import RepositoryManager
from app.repositories.paging import PAGINATION_HEADER
from app.schemas.employee import (
    MAX_AGE_DEFAULT,
    EmployeeDto,
    EmployeeForCreation,
    EmployeeForUpdate,
    EmployeeParameters,
)
from app.services.employee_service import EmployeeService

router = APIRouter(prefix="/api/companies/{company_id}/employees", tags=["Employees"])

# The employee representation is the same in both API generations
EMPLOYEE_VERSIONS = ("1.0", "2.0")

HANDLERS = tuple(
    (identity, version, handler)
    for identity, handler in (
        ("employees.list", EmployeeService.get_employees),
        ("employees.get", EmployeeService.get_employee),
        ("employees.create", EmployeeService.create_employee_for_company),
        ("employees.update", EmployeeService.update_employee_for_company),
        ("employees.delete", EmployeeService.delete_employee_for_company),
    )
    for version in EMPLOYEE_VERSIONS
)


def register_versions(version_router: VersionRouter) -> None:
    for identity, version, handler in HANDLERS:
        version_router.register(identity, version, handler)


def _dispatch(request: Request, identity: str, repositories: RepositoryManager, *args: Any) -> Any:
    binding = resolve_for_request(request, identity)
    return binding.handler(EmployeeService(repositories), *args)


@router.get("", response_model=list[EmployeeDto])
def get_employees_for_company(
    company_id: uuid.UUID,
    request: Request,
    response: Response,
    page_number: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1),
    min_age: int = Query(0, ge=0),
    max_age: int = Query(MAX_AGE_DEFAULT, ge=0),
    search_term: str | None = Query(None, max_length=30),
    order_by: str | None = Query(None, description='Comma separated, e.g. "name desc,age"'),
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> list[EmployeeDto]:
    """Page through a company's employees.

    Paging metadata is returned in the ``X-Pagination`` header as JSON.
    Page sizes above 50 are clamped to 50.
    """

    params = EmployeeParameters(
        page_number=page_number,
        page_size=page_size,
        min_age=min_age,
        max_age=max_age,
        search_term=search_term,
        order_by=order_by,
    )
    employees, metadata = _dispatch(request, "employees.list", repositories, company_id, params)
    response.headers[PAGINATION_HEADER] = metadata.to_header()
    return employees


@router.get("/{employee_id}", response_model=EmployeeDto, name="get_employee_for_company")
def get_employee_for_company(
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    request: Request,
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> EmployeeDto:
    return _dispatch(request, "employees.get", repositories, company_id, employee_id)


@router.post("", response_model=EmployeeDto, status_code=201)
def create_employee_for_company(
    company_id: uuid.UUID,
    request: Request,
    response: Response,
    payload: EmployeeForCreation = Body(...),
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> EmployeeDto:
    employee = _dispatch(request, "employees.create", repositories, company_id, payload)
    response.headers["Location"] = str(
        request.url_for(
            "get_employee_for_company",
            company_id=str(company_id),
            employee_id=str(employee.id),
        )
    )
    return employee


@router.put("/{employee_id}", status_code=204)
def update_employee_for_company(
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    request: Request,
    payload: EmployeeForUpdate = Body(...),
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> Response:
    _dispatch(request, "employees.update", repositories, company_id, employee_id, payload)
    return Response(status_code=204)


@router.delete("/{employee_id}", status_code=204)
def delete_employee_for_company(
    company_id: uuid.UUID,
    employee_id: uuid.UUID,
    request: Request,
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> Response:
    _dispatch(request, "employees.delete", repositories, company_id, employee_id)
    return Response(status_code=204)
