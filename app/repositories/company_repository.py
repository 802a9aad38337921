"""Company data access.

Ordering contract: every list returned by this repository is sorted by
``name`` (ties broken by ``id``) so listings and their validators are stable.
"""

from __future__ import annotations

import uuid
from typing import Iterable

from app.adapters.store.base import AbstractEntityStore
from app.models.entities import Company
from app.repositories.base import Repository

_ORDER = (Company.name, Company.id)


class CompanyRepository:
    def __init__(self, store: AbstractEntityStore) -> None:
        self._companies: Repository[Company] = Repository(Company, store)

    def get_all_companies(self, track: bool) -> list[Company]:
        return self._companies.find_all(track, order_by=_ORDER)

    def get_company(self, company_id: uuid.UUID, track: bool) -> Company | None:
        found = self._companies.find_by_condition(Company.id == company_id, track)
        return found[0] if found else None

    def get_by_ids(self, ids: Iterable[uuid.UUID], track: bool) -> list[Company]:
        id_list = list(ids)
        if not id_list:
            return []
        return self._companies.find_by_condition(Company.id.in_(id_list), track, order_by=_ORDER)

    def create_company(self, company: Company) -> None:
        self._companies.create(company)

    def update_company(self, company: Company) -> None:
        self._companies.update(company)

    def delete_company(self, company: Company) -> None:
        self._companies.delete(company)
