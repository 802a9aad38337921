"""Company use cases on top of the repository manager.

Reads use untracked queries; updates load the company tracked, mutate it and
save. Every write performs exactly one save of the request's unit of work.
"""

from __future__ import annotations

import logging
import uuid

from app.core.errors import NotFoundAppError, ValidationAppError
from app.models.entities import Company
from app.repositories.manager import RepositoryManager
from app.schemas.company import CompanyDto, CompanyForCreation, CompanyForUpdate

logger = logging.getLogger(__name__)


def _not_found(company_id: uuid.UUID) -> NotFoundAppError:
    return NotFoundAppError(
        code="company_not_found",
        message=f"The company with id: {company_id} doesn't exist in the database.",
        details={"entity": "Company", "entity_id": str(company_id)},
    )


def parse_id_list(raw: str) -> list[uuid.UUID]:
    """Parse a comma-separated list of UUIDs (``"id1,id2"``).

    Raises:
        ValidationAppError: If the list is empty or contains an invalid id.
    """

    parts = [part.strip() for part in (raw or "").split(",") if part.strip()]
    if not parts:
        raise ValidationAppError(code="ids_missing", message="Parameter ids is null")
    try:
        return [uuid.UUID(part) for part in parts]
    except ValueError as exc:
        raise ValidationAppError(
            code="ids_invalid",
            message="Parameter ids contains an invalid identifier",
        ) from exc


class CompanyService:
    def __init__(self, repositories: RepositoryManager) -> None:
        self._repositories = repositories

    def _get_company_or_raise(self, company_id: uuid.UUID, track: bool) -> Company:
        company = self._repositories.company.get_company(company_id, track)
        if company is None:
            raise _not_found(company_id)
        return company

    def get_all_companies(self) -> list[Company]:
        return self._repositories.company.get_all_companies(track=False)

    def get_company(self, company_id: uuid.UUID) -> CompanyDto:
        return CompanyDto.from_entity(self._get_company_or_raise(company_id, track=False))

    def get_by_ids(self, ids: list[uuid.UUID]) -> list[CompanyDto]:
        companies = self._repositories.company.get_by_ids(ids, track=False)
        if len(companies) != len(set(ids)):
            raise ValidationAppError(
                code="ids_mismatch",
                message="Collection count mismatch comparing to ids.",
            )
        return [CompanyDto.from_entity(company) for company in companies]

    def create_company(self, payload: CompanyForCreation) -> CompanyDto:
        company = payload.to_entity()
        self._repositories.company.create_company(company)
        self._repositories.save()
        logger.info(
            "company.created",
            extra={"company_id": str(company.id), "employees": len(company.employees)},
        )
        return CompanyDto.from_entity(company)

    def create_company_collection(self, payloads: list[CompanyForCreation]) -> list[CompanyDto]:
        if not payloads:
            raise ValidationAppError(
                code="company_collection_empty",
                message="Company collection sent from a client is null.",
            )
        companies = [payload.to_entity() for payload in payloads]
        for company in companies:
            self._repositories.company.create_company(company)
        self._repositories.save()
        logger.info("company.collection_created", extra={"count": len(companies)})
        return [CompanyDto.from_entity(company) for company in companies]

    def update_company(self, company_id: uuid.UUID, payload: CompanyForUpdate) -> None:
        company = self._get_company_or_raise(company_id, track=True)
        payload.apply_to(company)
        self._repositories.company.update_company(company)
        self._repositories.save()
        logger.info("company.updated", extra={"company_id": str(company_id)})

    def delete_company(self, company_id: uuid.UUID) -> None:
        company = self._get_company_or_raise(company_id, track=True)
        self._repositories.company.delete_company(company)
        self._repositories.save()
        logger.info("company.deleted", extra={"company_id": str(company_id)})
