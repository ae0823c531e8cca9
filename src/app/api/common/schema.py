from collections.abc import Sequence
from typing import Generic, Self, TypeVar

from pydantic import BaseModel, Field, computed_field

ItemT = TypeVar("ItemT", bound=BaseModel)


class PageQuery(BaseModel):
    """``?page=&page_size=`` query parameters, 1-based."""

    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class Page(BaseModel, Generic[ItemT]):
    items: list[ItemT]
    total: int
    page: int
    page_size: int

    @classmethod
    def build(cls, items: Sequence[ItemT], total: int, query: PageQuery) -> Self:
        return cls(items=list(items), total=total, page=query.page, page_size=query.page_size)

    @computed_field
    @property
    def pages(self) -> int:
        return -(-self.total // self.page_size)

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total
