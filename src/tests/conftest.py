"""Pytest configuration and fixtures."""

import pytest

from shelfguard.admission import AdmissionController
from shelfguard.listings import set_catalog


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCatalog:
    """In-memory catalog that records the filters it was called with."""

    def __init__(self, rows=None, total: int = 0) -> None:
        self.rows = rows or []
        self.total = total
        self.calls: list[tuple[str, tuple, dict]] = []

    async def list_books(self, title, author, filters):
        self.calls.append(("list_books", (title, author, filters), {}))
        return self.rows, self.total

    async def list_reading_lists(self, filters, user_id=None):
        self.calls.append(("list_reading_lists", (filters,), {"user_id": user_id}))
        return self.rows, self.total

    async def list_reviews(self, filters, *, book_id=None, user_id=None, rating=0, author=""):
        self.calls.append(
            (
                "list_reviews",
                (filters,),
                {"book_id": book_id, "user_id": user_id, "rating": rating, "author": author},
            )
        )
        return self.rows, self.total


@pytest.fixture
def clock():
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def controller(clock):
    """Create an admission controller with burst 5 and 2 tokens per second."""
    ctrl = AdmissionController(refill_rate=2.0, burst=5, clock=clock, autostart=False)
    yield ctrl
    ctrl.stop()


@pytest.fixture
def catalog():
    """Create and install a fake catalog backend."""
    fake = FakeCatalog(
        rows=[{"id": 11, "title": "Dune"}, {"id": 12, "title": "Emma"}],
        total=25,
    )
    set_catalog(fake)
    yield fake
    set_catalog(None)
