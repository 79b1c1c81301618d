"""Domain models for Shelfguard."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SortDirection(StrEnum):
    """SQL ordering direction."""

    ASC = "ASC"
    DESC = "DESC"


class SortOption(BaseModel):
    """One entry of an endpoint's sort safelist."""

    column: str = Field(..., min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    direction: SortDirection

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_key(cls, key: str) -> "SortOption":
        """Build from a client sort key such as ``title`` or ``-title``."""
        if key.startswith("-"):
            return cls(column=key[1:], direction=SortDirection.DESC)
        return cls(column=key, direction=SortDirection.ASC)

    @property
    def key(self) -> str:
        prefix = "-" if self.direction == SortDirection.DESC else ""
        return f"{prefix}{self.column}"


class FieldError(BaseModel):
    """A rejected query parameter and the reason."""

    field: str
    message: str

    model_config = ConfigDict(frozen=True)


class ListingDefaults(BaseModel):
    """Per-endpoint paging and sorting configuration."""

    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=100)
    sort: str = "id"
    sort_safelist: tuple[str, ...] = ("id", "-id")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _default_sort_is_safe(self) -> "ListingDefaults":
        if self.sort not in self.sort_safelist:
            raise ValueError(f"default sort {self.sort!r} is not in the sort safelist")
        # Rejects keys that are not plain column names
        for key in self.sort_safelist:
            SortOption.from_key(key)
        return self

    def sort_options(self) -> dict[str, SortOption]:
        """The safelist as a closed mapping of client key to sort option."""
        return {key: SortOption.from_key(key) for key in self.sort_safelist}


class Metadata(BaseModel):
    """Pagination summary embedded in list responses."""

    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def compute(cls, total_records: int, page: int, page_size: int) -> "Metadata":
        """
        Compute metadata for one page of a result set.

        An empty result set yields the all-zero sentinel. ``page_size`` must
        be positive, which filter validation guarantees.
        """
        if total_records == 0:
            return cls()

        return cls(
            current_page=page,
            page_size=page_size,
            first_page=1,
            last_page=-(-total_records // page_size),
            total_records=total_records,
        )


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""

    error: str | dict[str, str]


class HealthResponse(BaseModel):
    """Health check payload."""

    status: str
    environment: str
    version: str
