"""Pydantic schemas for company requests and responses."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field

from app.models.entities import Company
from app.schemas.employee import EmployeeForCreation


class CompanyDto(BaseModel):
    """Company representation served by API version 1.0."""

    id: uuid.UUID
    name: str
    full_address: str = Field(..., description="Address and country joined by a space")

    @classmethod
    def from_entity(cls, company: Company) -> "CompanyDto":
        return cls(
            id=company.id,
            name=company.name,
            full_address=" ".join(part for part in (company.address, company.country) if part),
        )


class CompanyV2Dto(BaseModel):
    """Company representation served by API version 2.0."""

    id: uuid.UUID
    name: str
    address: str
    country: str | None = None
    employee_count: int = Field(..., ge=0)

    @classmethod
    def from_entity(cls, company: Company) -> "CompanyV2Dto":
        return cls(
            id=company.id,
            name=company.name,
            address=company.address,
            country=company.country,
            employee_count=len(company.employees),
        )


class CompanyForManipulation(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=60, description="Company name")
    address: str = Field(..., min_length=1, max_length=60, description="Street address")
    country: str | None = Field(None, max_length=60)


class CompanyForCreation(CompanyForManipulation):
    employees: list[EmployeeForCreation] = Field(
        default_factory=list,
        description="Employees created together with the company",
    )

    def to_entity(self) -> Company:
        company = Company(name=self.name, address=self.address, country=self.country)
        company.employees = [employee.to_entity() for employee in self.employees]
        return company


class CompanyForUpdate(CompanyForManipulation):
    def apply_to(self, company: Company) -> None:
        company.name = self.name
        company.address = self.address
        company.country = self.country
