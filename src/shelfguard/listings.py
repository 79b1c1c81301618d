"""List endpoint configuration and the catalog backend boundary."""

from collections.abc import Mapping
from typing import Any, Optional, Protocol

import structlog

from shelfguard.filters import FailedValidation, QueryFilterSpec, Validator
from shelfguard.metrics import metrics
from shelfguard.models import ListingDefaults

logger = structlog.get_logger()

BOOKS = ListingDefaults(
    sort="id",
    sort_safelist=("id", "title", "author", "-id", "-title", "-author"),
)

READING_LISTS = ListingDefaults(
    sort="id",
    sort_safelist=("id", "name", "-id", "-name"),
)

REVIEWS = ListingDefaults(
    sort="id",
    sort_safelist=("id", "rating", "author", "-id", "-rating", "-author"),
)

Rows = list[dict[str, Any]]


class CatalogUnavailable(Exception):
    """No catalog backend has been configured."""


class Catalog(Protocol):
    """Row source for list endpoints.

    Implementations receive an already validated ``QueryFilterSpec`` and use
    its ``limit()``, ``offset()`` and ``order_by()`` to bound the query. Each
    method returns the page of rows and the total number of matching records.
    """

    async def list_books(
        self, title: str, author: str, filters: QueryFilterSpec
    ) -> tuple[Rows, int]: ...

    async def list_reading_lists(
        self, filters: QueryFilterSpec, user_id: Optional[int] = None
    ) -> tuple[Rows, int]: ...

    async def list_reviews(
        self,
        filters: QueryFilterSpec,
        *,
        book_id: Optional[int] = None,
        user_id: Optional[int] = None,
        rating: int = 0,
        author: str = "",
    ) -> tuple[Rows, int]: ...


def parse_filters(
    params: Mapping[str, str], defaults: ListingDefaults, v: Validator
) -> QueryFilterSpec:
    """Parse paging and sort parameters and record their violations on ``v``."""
    filters = QueryFilterSpec.parse(params, defaults)
    filters.validate_into(v)
    return filters


def ensure_valid(v: Validator, resource: str) -> None:
    """Raise ``FailedValidation`` with every collected error, if any."""
    if v.valid:
        return
    metrics.validation_failures_total.labels(resource=resource).inc()
    logger.info("validation_failed", resource=resource, errors=v.errors)
    raise FailedValidation(v.field_errors())


# Singleton instance
_catalog: Optional[Catalog] = None


def set_catalog(catalog: Optional[Catalog]) -> None:
    """Install the backend list endpoints read from."""
    global _catalog
    _catalog = catalog


def get_catalog() -> Catalog:
    """Get the configured catalog backend."""
    if _catalog is None:
        raise CatalogUnavailable("catalog backend not configured")
    return _catalog
