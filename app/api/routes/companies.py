from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response

from app.core.database import get_repository_manager
from app.core.versioning import VersionRouter, resolve_for_request
from app.repositories.manager import RepositoryManager
from app.schemas.company import CompanyDto, CompanyForCreation, CompanyForUpdate, CompanyV2Dto
from app.services.company_service import CompanyService, parse_id_list

router = APIRouter(prefix="/api/companies", tags=["Companies"])


def _list_v1(service: CompanyService) -> list[CompanyDto]:
    return [CompanyDto.from_entity(company) for company in service.get_all_companies()]


def _list_v2(service: CompanyService) -> list[CompanyV2Dto]:
    return [CompanyV2Dto.from_entity(company) for company in service.get_all_companies()]


HANDLERS = (
    ("companies.list", "1.0", _list_v1),
    ("companies.list", "2.0", _list_v2),
    ("companies.get", "1.0", CompanyService.get_company),
    ("companies.get_collection", "1.0", CompanyService.get_by_ids),
    ("companies.create", "1.0", CompanyService.create_company),
    ("companies.create_collection", "1.0", CompanyService.create_company_collection),
    ("companies.update", "1.0", CompanyService.update_company),
    ("companies.delete", "1.0", CompanyService.delete_company),
)


def register_versions(version_router: VersionRouter) -> None:
    for identity, version, handler in HANDLERS:
        version_router.register(identity, version, handler)


def _dispatch(request: Request, identity: str, repositories: RepositoryManager, *args: Any) -> Any:
    binding = resolve_for_request(request, identity)
    return binding.handler(CompanyService(repositories), *args)


@router.get("", response_model=None)
def get_companies(
    request: Request,
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> Any:
    """List companies ordered by name.

    The representation depends on the ``api-version`` header: 1.0 returns
    ``full_address``, 2.0 returns address parts and the employee count.
    """

    return _dispatch(request, "companies.list", repositories)


@router.get(
    "/collection/({ids})",
    response_model=list[CompanyDto],
    name="get_company_collection",
)
def get_company_collection(
    ids: str,
    request: Request,
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> list[CompanyDto]:
    return _dispatch(request, "companies.get_collection", repositories, parse_id_list(ids))


@router.get("/{company_id}", response_model=CompanyDto, name="get_company")
def get_company(
    company_id: uuid.UUID,
    request: Request,
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> CompanyDto:
    return _dispatch(request, "companies.get", repositories, company_id)


@router.post("", response_model=CompanyDto, status_code=201)
def create_company(
    request: Request,
    response: Response,
    payload: CompanyForCreation = Body(...),
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> CompanyDto:
    """Create a company, optionally with its employees, in one save."""

    company = _dispatch(request, "companies.create", repositories, payload)
    response.headers["Location"] = str(request.url_for("get_company", company_id=str(company.id)))
    return company


@router.post("/collection", response_model=list[CompanyDto], status_code=201)
def create_company_collection(
    request: Request,
    response: Response,
    payloads: list[CompanyForCreation] = Body(...),
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> list[CompanyDto]:
    companies = _dispatch(request, "companies.create_collection", repositories, payloads)
    ids = ",".join(str(company.id) for company in companies)
    response.headers["Location"] = str(request.url_for("get_company_collection", ids=ids))
    return companies


@router.put("/{company_id}", status_code=204)
def update_company(
    company_id: uuid.UUID,
    request: Request,
    payload: CompanyForUpdate = Body(...),
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> Response:
    _dispatch(request, "companies.update", repositories, company_id, payload)
    return Response(status_code=204)


@router.delete("/{company_id}", status_code=204)
def delete_company(
    company_id: uuid.UUID,
    request: Request,
    repositories: RepositoryManager = Depends(get_repository_manager),
) -> Response:
    """Delete a company together with its employees."""

    _dispatch(request, "companies.delete", repositories, company_id)
    return Response(status_code=204)
