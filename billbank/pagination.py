"""
Pagination Module

Page options, page metadata and the generic paginated query used by the
listing endpoints.
"""

from dataclasses import dataclass
from enum import Enum
from math import ceil
from typing import Any, Generic, List, Sequence, Tuple, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session


T = TypeVar("T")

MAX_TAKE = 50


class Order(Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class PageOptions:
    """Requested page; ``page`` is 1-based"""
    page: int = 1
    take: int = 10
    order: Order = Order.DESC
    
    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be at least 1")
        if not 1 <= self.take <= MAX_TAKE:
            raise ValueError(f"take must be between 1 and {MAX_TAKE}")
    
    @property
    def skip(self) -> int:
        return (self.page - 1) * self.take


@dataclass(frozen=True)
class PageMeta:
    page: int
    take: int
    item_count: int
    page_count: int
    has_previous_page: bool
    has_next_page: bool
    
    @classmethod
    def build(cls, page_options: PageOptions, item_count: int) -> 'PageMeta':
        page_count = ceil(item_count / page_options.take)
        return cls(
            page=page_options.page,
            take=page_options.take,
            item_count=item_count,
            page_count=page_count,
            has_previous_page=page_options.page > 1,
            has_next_page=page_options.page < page_count
        )


@dataclass
class Page(Generic[T]):
    items: List[T]
    meta: PageMeta


def paginate(
    session: Session,
    statement: Select,
    page_options: PageOptions,
    loader_options: Sequence[Any] = ()
) -> Tuple[List[Any], int]:
    """
    Run ``statement`` for one page and count all rows it matches.
    
    ``statement`` must be free of loader options so it can be wrapped in the
    count subquery; eager loading for the page itself goes in
    ``loader_options``.
    """
    total_count = session.scalar(
        select(func.count()).select_from(statement.order_by(None).subquery())
    )
    page_statement = (
        statement
        .options(*loader_options)
        .offset(page_options.skip)
        .limit(page_options.take)
    )
    items = session.scalars(page_statement).unique().all()
    return list(items), total_count or 0
