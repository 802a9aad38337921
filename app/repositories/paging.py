"""Paged query results and the metadata sent in the X-Pagination header."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

PAGINATION_HEADER = "X-Pagination"


@dataclass(frozen=True)
class PaginationMetadata:
    current_page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    def to_header(self) -> str:
        """Serialise to the JSON value of the X-Pagination header."""
        return json.dumps(
            {
                "CurrentPage": self.current_page,
                "TotalPages": self.total_pages,
                "PageSize": self.page_size,
                "TotalCount": self.total_count,
                "HasPrevious": self.has_previous,
                "HasNext": self.has_next,
            },
            separators=(",", ":"),
        )


@dataclass
class PagedList(Generic[T]):
    items: list[T] = field(default_factory=list)
    metadata: PaginationMetadata = field(
        default_factory=lambda: PaginationMetadata(current_page=1, page_size=0, total_count=0)
    )

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
