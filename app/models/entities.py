"""SQLAlchemy models for companies and their employees."""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for every persisted entity."""


class Entity(Base):
    """Abstract entity: anything persisted with an identity."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"{type(self).__name__}(id={self.id})"


class Company(Entity):
    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(60), nullable=False)
    address: Mapped[str] = mapped_column(String(60), nullable=False)
    country: Mapped[str | None] = mapped_column(String(60), nullable=True)

    # selectin so detached (untracked) results can still expose employees
    employees: Mapped[list["Employee"]] = relationship(
        back_populates="company",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Employee(Entity):
    __tablename__ = "employees"

    name: Mapped[str] = mapped_column(String(30), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[str] = mapped_column(String(20), nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    company: Mapped[Company] = relationship(back_populates="employees")
