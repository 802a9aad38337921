"""Entity store interfaces.

Repositories depend on this abstraction (not the concrete implementation) so
the relational engine can be swapped without touching the data-access layer.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence, TypeVar

from app.models.entities import Entity

E = TypeVar("E", bound=Entity)


class MutationKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Mutation:
    """A staged change, applied only when the unit of work is committed.

    Attributes:
        kind: create, update or delete.
        entity: The entity instance the change applies to.
    """

    kind: MutationKind
    entity: Entity


class AbstractEntityStore(ABC):
    """Interface for a relational store with optional change tracking.

    One store instance is one unit of work: mutations are staged and
    committed together or not at all.
    """

    @abstractmethod
    def query(
        self,
        entity_type: type[E],
        predicate: Any | None = None,
        *,
        track: bool,
        order_by: Sequence[Any] = (),
    ) -> list[E]:
        """Return entities of ``entity_type`` matching ``predicate``.

        Args:
            entity_type: Mapped entity class.
            predicate: Optional filter expression (None selects everything).
            track: When False, results are detached and never persisted.
            order_by: Optional ordering expressions.

        Returns:
            List of matching entities.
        """
        raise NotImplementedError

    @abstractmethod
    def count(self, entity_type: type[E], predicate: Any | None = None) -> int:
        """Return the number of entities matching ``predicate``."""
        raise NotImplementedError

    @abstractmethod
    def page(
        self,
        entity_type: type[E],
        predicate: Any | None = None,
        *,
        track: bool,
        order_by: Sequence[Any] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[E]:
        """Return one slice of the matching entities."""
        raise NotImplementedError

    @abstractmethod
    def stage(self, mutation: Mutation) -> None:
        """Stage a mutation; no I/O happens until commit()."""
        raise NotImplementedError

    @abstractmethod
    def commit(self, *, timeout: float | None = None) -> None:
        """Persist every staged mutation atomically.

        Raises:
            StorageTimeoutError: If the deadline expires (rolled back).
            StorageIntegrityError: On constraint violations (rolled back).
            StorageAppError: On any other store failure (rolled back).
        """
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        """Discard every staged mutation and tracked change."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection/session."""
        raise NotImplementedError
