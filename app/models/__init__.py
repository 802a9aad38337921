from __future__ import annotations

from app.models.entities import Base, Company, Employee, Entity

__all__ = ["Base", "Company", "Employee", "Entity"]
