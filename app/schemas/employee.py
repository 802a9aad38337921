"""Pydantic schemas for employee requests, responses and list parameters."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field

from app.models.entities import Employee

MAX_PAGE_SIZE = 50
MAX_AGE_DEFAULT = 2**31 - 1


class EmployeeDto(BaseModel):
    id: uuid.UUID
    name: str
    age: int
    position: str

    @classmethod
    def from_entity(cls, employee: Employee) -> "EmployeeDto":
        return cls(
            id=employee.id,
            name=employee.name,
            age=employee.age,
            position=employee.position,
        )


class EmployeeForManipulation(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=30, description="Employee name")
    age: int = Field(..., ge=18, le=120, description="Age in years")
    position: str = Field(..., min_length=1, max_length=20, description="Job position")


class EmployeeForCreation(EmployeeForManipulation):
    def to_entity(self) -> Employee:
        return Employee(name=self.name, age=self.age, position=self.position)


class EmployeeForUpdate(EmployeeForManipulation):
    def apply_to(self, employee: Employee) -> None:
        employee.name = self.name
        employee.age = self.age
        employee.position = self.position


class EmployeeParameters(BaseModel):
    """Paging, filtering, searching and sorting of employee listings."""

    page_number: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1)
    min_age: int = Field(0, ge=0)
    max_age: int = Field(MAX_AGE_DEFAULT, ge=0)
    search_term: str | None = Field(None, max_length=30)
    order_by: str | None = Field(None, description='e.g. "name desc,age"')

    def model_post_init(self, __context) -> None:
        # Oversized pages are clamped rather than rejected
        if self.page_size > MAX_PAGE_SIZE:
            self.page_size = MAX_PAGE_SIZE

    @property
    def valid_age_range(self) -> bool:
        return self.max_age >= self.min_age
