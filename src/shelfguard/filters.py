"""Paging, sorting and filtering of list requests.

A ``QueryFilterSpec`` is parsed from the raw query string of a list request,
validated against the endpoint's ``ListingDefaults`` and then handed to the
storage layer, which uses ``limit``, ``offset`` and ``order_by`` to build a
bounded query. The sort safelist is the only thing standing between client
input and the ``ORDER BY`` clause, since column names and directions cannot
be bound as query parameters.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from shelfguard.models import FieldError, ListingDefaults, Metadata, SortDirection, SortOption

MAX_PAGE = 10_000_000
MAX_PAGE_SIZE = 100

_INTEGER = re.compile(r"[+-]?[0-9]+")


class UnsafeSortError(ValueError):
    """A sort key outside the endpoint's safelist reached the query builder."""


class FailedValidation(Exception):
    """Query parameters were rejected; carries every field error."""

    def __init__(self, errors: list[FieldError]) -> None:
        super().__init__(", ".join(f"{e.field}: {e.message}" for e in errors))
        self.errors = errors

    def as_dict(self) -> dict[str, str]:
        return {error.field: error.message for error in self.errors}


class Validator:
    """Collects field errors, keeping the first message for each field."""

    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, field: str, message: str) -> None:
        self.errors.setdefault(field, message)

    def check(self, ok: bool, field: str, message: str) -> None:
        if not ok:
            self.add_error(field, message)

    def field_errors(self) -> list[FieldError]:
        return [FieldError(field=f, message=m) for f, m in self.errors.items()]


def read_str(params: Mapping[str, str], key: str, default: str) -> str:
    """Return a query parameter, or ``default`` when it is absent or empty."""
    value = params.get(key)
    if not value:
        return default
    return value


def read_int(params: Mapping[str, str], key: str, default: int, v: Validator) -> Optional[int]:
    """Return an integer query parameter.

    Only an optional sign followed by ASCII digits is accepted. Anything
    else is recorded on ``v`` and ``None`` is returned instead of falling
    back to the default.
    """
    value = params.get(key)
    if not value:
        return default
    if _INTEGER.fullmatch(value) is None:
        v.add_error(key, "must be an integer value")
        return None
    return int(value)


@dataclass(frozen=True)
class QueryFilterSpec:
    """Validated paging and sorting for a single list request."""

    page: Optional[int]
    page_size: Optional[int]
    sort: str
    defaults: ListingDefaults
    parse_errors: tuple[FieldError, ...] = ()

    @classmethod
    def parse(cls, raw_params: Mapping[str, str], defaults: ListingDefaults) -> "QueryFilterSpec":
        """Read ``page``, ``page_size`` and ``sort`` from the query string."""
        v = Validator()
        return cls(
            page=read_int(raw_params, "page", defaults.page, v),
            page_size=read_int(raw_params, "page_size", defaults.page_size, v),
            sort=read_str(raw_params, "sort", defaults.sort),
            defaults=defaults,
            parse_errors=tuple(v.field_errors()),
        )

    @property
    def sort_safelist(self) -> tuple[str, ...]:
        return self.defaults.sort_safelist

    def validate_into(self, v: Validator) -> None:
        """Run the filter rules, adding failures to an existing validator."""
        for error in self.parse_errors:
            v.add_error(error.field, error.message)

        if self.page is not None:
            v.check(self.page > 0, "page", "must be greater than zero")
            v.check(self.page <= MAX_PAGE, "page", "must be a maximum of 10 million")
        if self.page_size is not None:
            v.check(self.page_size > 0, "page_size", "must be greater than zero")
            v.check(self.page_size <= MAX_PAGE_SIZE, "page_size", "must be a maximum of 100")
        v.check(self.sort in self.sort_safelist, "sort", "invalid sort value")

    def validate(self) -> list[FieldError]:
        """Return every violation; an empty list means the filters are usable."""
        v = Validator()
        self.validate_into(v)
        return v.field_errors()

    def _sort_option(self) -> SortOption:
        option = self.defaults.sort_options().get(self.sort)
        if option is None:
            raise UnsafeSortError(f"unsafe sort parameter: {self.sort}")
        return option

    def sort_column(self) -> str:
        """Bare column name of the requested sort, taken from the safelist."""
        return self._sort_option().column

    def sort_direction(self) -> SortDirection:
        """``DESC`` when the sort key carries a leading ``-``."""
        return self._sort_option().direction

    def limit(self) -> int:
        return self._page_size()

    def offset(self) -> int:
        return (self._page() - 1) * self._page_size()

    def order_by(self, tiebreaker: Optional[str] = "id") -> str:
        """Trusted ``ORDER BY`` clause for the requested sort.

        The tiebreaker keeps paging stable when the sort column has
        duplicates.
        """
        option = self._sort_option()
        clause = f"ORDER BY {option.column} {option.direction.value}"
        if tiebreaker and tiebreaker != option.column:
            clause += f", {tiebreaker} ASC"
        return clause

    def metadata(self, total_records: int) -> Metadata:
        return Metadata.compute(total_records, self._page(), self._page_size())

    def _page(self) -> int:
        if self.page is None:
            raise ValueError("page was not a valid integer")
        return self.page

    def _page_size(self) -> int:
        if self.page_size is None:
            raise ValueError("page_size was not a valid integer")
        return self.page_size
