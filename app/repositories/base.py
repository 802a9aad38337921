"""Generic repository over the entity store.

``Repository[T]`` is the only place that turns CRUD intentions into store
primitives. It never caches entities between calls and has no ordering
guarantee; concrete repositories compose it and document their own order.
"""

from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar

from app.adapters.store.base import AbstractEntityStore, Mutation, MutationKind
from app.models.entities import Entity

T = TypeVar("T", bound=Entity)


class Repository(Generic[T]):
    """CRUD over one entity type.

    Args:
        entity_type: Mapped entity class handled by this repository.
        store: Unit-of-work scoped entity store.
    """

    def __init__(self, entity_type: type[T], store: AbstractEntityStore) -> None:
        self._entity_type = entity_type
        self._store = store

    @property
    def entity_type(self) -> type[T]:
        return self._entity_type

    def find_all(self, track: bool, *, order_by: Sequence[Any] = ()) -> list[T]:
        """Return every entity; untracked results are detached (read-only path)."""
        return self._store.query(self._entity_type, None, track=track, order_by=order_by)

    def find_by_condition(
        self,
        predicate: Any,
        track: bool,
        *,
        order_by: Sequence[Any] = (),
    ) -> list[T]:
        return self._store.query(self._entity_type, predicate, track=track, order_by=order_by)

    def find_page(
        self,
        predicate: Any,
        track: bool,
        *,
        order_by: Sequence[Any] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[T]:
        return self._store.page(
            self._entity_type,
            predicate,
            track=track,
            order_by=order_by,
            offset=offset,
            limit=limit,
        )

    def count(self, predicate: Any | None = None) -> int:
        return self._store.count(self._entity_type, predicate)

    def create(self, entity: T) -> None:
        self._stage(MutationKind.CREATE, entity)

    def update(self, entity: T) -> None:
        self._stage(MutationKind.UPDATE, entity)

    def delete(self, entity: T) -> None:
        self._stage(MutationKind.DELETE, entity)

    def _stage(self, kind: MutationKind, entity: T) -> None:
        if not isinstance(entity, self._entity_type):
            raise TypeError(
                f"{type(self).__name__}[{self._entity_type.__name__}] cannot stage "
                f"{type(entity).__name__}"
            )
        self._store.stage(Mutation(kind=kind, entity=entity))
