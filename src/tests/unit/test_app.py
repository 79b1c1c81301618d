"""Unit tests for FastAPI app endpoints."""

import json
from unittest.mock import patch

import pytest
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient

from shelfguard import __version__
from shelfguard.admission import AdmissionController
from shelfguard.app import app, request_validation_handler


@pytest.fixture
def limiter(clock):
    """Patch in a controller with plenty of headroom."""
    ctrl = AdmissionController(refill_rate=10.0, burst=100, clock=clock, autostart=False)
    with patch("shelfguard.app.get_controller", return_value=ctrl):
        yield ctrl


@pytest.fixture
def client(limiter):
    """Create a test client."""
    return TestClient(app, raise_server_exceptions=False)


class TestHealthEndpoints:
    """Tests for health endpoints."""

    def test_healthcheck(self, client):
        """Test health check reports status, environment and version."""
        response = client.get("/v1/healthcheck")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "available"
        assert data["version"] == __version__
        assert "environment" in data

    def test_metrics(self, client):
        """Test the Prometheus endpoint exposes admission counters."""
        client.get("/v1/healthcheck")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "shelfguard_admission_total" in response.text
        assert "shelfguard_limiter_clients" in response.text


class TestAdmissionMiddleware:
    """Tests for rate limiting at the HTTP layer."""

    def test_rate_limit_exceeded(self, clock):
        """Test requests beyond the burst get a 429 envelope."""
        ctrl = AdmissionController(refill_rate=1.0, burst=2, clock=clock, autostart=False)
        with patch("shelfguard.app.get_controller", return_value=ctrl):
            client = TestClient(app, raise_server_exceptions=False)

            assert client.get("/v1/healthcheck").status_code == 200
            assert client.get("/v1/healthcheck").status_code == 200
            response = client.get("/v1/healthcheck")

        assert response.status_code == 429
        assert response.json() == {"error": "rate limit exceeded"}
        assert response.headers["Retry-After"] == "1"

    def test_client_keyed_by_peer_host(self, client, limiter):
        """Test the limiter tracks the peer address."""
        client.get("/v1/healthcheck")

        assert "testclient" in limiter

    def test_disabled_limiter_passes_through(self, clock):
        """Test pass-through mode neither limits nor tracks clients."""
        ctrl = AdmissionController(
            enabled=False, refill_rate=1.0, burst=1, clock=clock, autostart=False
        )
        with patch("shelfguard.app.get_controller", return_value=ctrl):
            client = TestClient(app, raise_server_exceptions=False)
            statuses = {client.get("/v1/healthcheck").status_code for _ in range(5)}

        assert statuses == {200}
        assert len(ctrl) == 0


class TestListEndpoints:
    """Tests for list endpoints."""

    def test_list_books(self, client, catalog):
        """Test books are returned with pagination metadata."""
        response = client.get("/v1/books?page=2&page_size=10&sort=-title&title=du")

        assert response.status_code == 200
        data = response.json()
        assert [b["id"] for b in data["books"]] == [11, 12]
        assert data["metadata"] == {
            "current_page": 2,
            "page_size": 10,
            "first_page": 1,
            "last_page": 3,
            "total_records": 25,
        }

        name, (title, author, filters), _ = catalog.calls[0]
        assert name == "list_books"
        assert (title, author) == ("du", "")
        assert filters.order_by() == "ORDER BY title DESC, id ASC"
        assert (filters.limit(), filters.offset()) == (10, 10)

    def test_list_books_invalid_filters(self, client, catalog):
        """Test every invalid parameter is reported and no data is read."""
        response = client.get("/v1/books?page=0&page_size=101&sort=isbn")

        assert response.status_code == 422
        assert response.json() == {
            "error": {
                "page": "must be greater than zero",
                "page_size": "must be a maximum of 100",
                "sort": "invalid sort value",
            }
        }
        assert catalog.calls == []

    def test_list_books_non_numeric_page(self, client, catalog):
        """Test a non-numeric page is a validation failure."""
        response = client.get("/v1/books?page=abc")

        assert response.status_code == 422
        assert response.json()["error"] == {"page": "must be an integer value"}

    def test_repeated_parameter_first_value_wins(self, client, catalog):
        """Test only the first value of a repeated parameter is read."""
        response = client.get("/v1/books?page=2&page=abc&sort=-id&sort=isbn")

        assert response.status_code == 200
        assert response.json()["metadata"]["current_page"] == 2
        _, (_, _, filters), _ = catalog.calls[0]
        assert filters.sort == "-id"

    def test_repeated_parameter_invalid_first_value(self, client, catalog):
        """Test a bad first value is rejected even when a later one is valid."""
        response = client.get("/v1/books?page=abc&page=2")

        assert response.status_code == 422
        assert response.json()["error"] == {"page": "must be an integer value"}

    def test_empty_result_metadata(self, client, catalog):
        """Test an empty result set carries the all-zero metadata."""
        catalog.rows, catalog.total = [], 0

        response = client.get("/v1/lists")

        assert response.status_code == 200
        assert response.json() == {
            "reading_lists": [],
            "metadata": {
                "current_page": 0,
                "page_size": 0,
                "first_page": 0,
                "last_page": 0,
                "total_records": 0,
            },
        }

    def test_reading_list_sort_safelist(self, client, catalog):
        """Test reading lists refuse book-only sort keys."""
        response = client.get("/v1/lists?sort=title")

        assert response.status_code == 422
        assert response.json()["error"] == {"sort": "invalid sort value"}

    def test_book_reviews(self, client, catalog):
        """Test book reviews pass rating and author filters through."""
        response = client.get("/v1/books/7/reviews?rating=4&author=ann&sort=-rating")

        assert response.status_code == 200
        name, (filters,), kwargs = catalog.calls[0]
        assert name == "list_reviews"
        assert kwargs == {"book_id": 7, "user_id": None, "rating": 4, "author": "ann"}
        assert filters.sort_column() == "rating"

    def test_book_reviews_bad_rating(self, client, catalog):
        """Test rating errors are reported alongside filter errors."""
        response = client.get("/v1/books/7/reviews?rating=high&page_size=0")

        assert response.status_code == 422
        assert response.json()["error"] == {
            "rating": "must be an integer value",
            "page_size": "must be greater than zero",
        }

    def test_user_lists_and_reviews(self, client, catalog):
        """Test the per-user listings scope by user id."""
        assert client.get("/v1/users/3/lists").status_code == 200
        assert client.get("/v1/users/3/reviews?sort=-author").status_code == 200

        assert catalog.calls[0][2] == {"user_id": 3}
        assert catalog.calls[1][2]["user_id"] == 3

    def test_catalog_not_configured(self, client):
        """Test list endpoints answer 503 without a backend."""
        response = client.get("/v1/books")

        assert response.status_code == 503
        assert response.json() == {"error": "the catalog is not available"}

    def test_page_past_the_end(self, client, catalog):
        """Test an out-of-range page is not an error."""
        catalog.rows = []

        response = client.get("/v1/books?page=9")

        assert response.status_code == 200
        assert response.json()["metadata"]["current_page"] == 9
        assert response.json()["metadata"]["last_page"] == 3


class TestErrorHandling:
    """Tests for error handlers."""

    def test_unhandled_exception(self, client, catalog):
        """Test unexpected errors produce the generic 500 envelope."""
        async def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        catalog.list_books = boom

        response = client.get("/v1/books")

        assert response.status_code == 500
        assert response.json() == {
            "error": "the server encountered a problem and could not process your request"
        }

    def test_unknown_route(self, client):
        """Test unknown paths use the error envelope."""
        response = client.get("/v1/nope")

        assert response.status_code == 404
        assert response.json() == {"error": "the requested resource could not be found"}

    def test_method_not_allowed(self, client, catalog):
        """Test an unsupported method names the method and keeps Allow."""
        response = client.post("/v1/books")

        assert response.status_code == 405
        assert response.json() == {
            "error": "the POST method is not supported for this resource"
        }
        assert "GET" in response.headers["allow"]
        assert catalog.calls == []

    @pytest.mark.parametrize(
        "path", ["/v1/books/abc/reviews", "/v1/users/1.5/lists", "/v1/users/x/reviews"]
    )
    def test_malformed_path_id_is_not_found(self, client, catalog, path):
        """Test a non-integer id is a 404, not a validation failure."""
        response = client.get(path)

        assert response.status_code == 404
        assert response.json() == {"error": "the requested resource could not be found"}
        assert catalog.calls == []

    async def test_non_path_validation_error_keeps_field_map(self):
        """Test framework validation errors outside the path become a 422 field map."""
        exc = RequestValidationError(
            [
                {"loc": ("query", "q"), "msg": "Field required", "type": "missing"},
                {"loc": ("query", "q"), "msg": "second", "type": "missing"},
            ]
        )
        request = Request({"type": "http", "method": "GET", "path": "/", "headers": []})

        response = await request_validation_handler(request, exc)

        assert response.status_code == 422
        assert json.loads(response.body) == {"error": {"q": "Field required"}}

    def test_error_envelope_documented(self, client):
        """Test list routes advertise the error envelope in the schema."""
        schema = client.get("/openapi.json").json()

        responses = schema["paths"]["/v1/books"]["get"]["responses"]
        for status in ("404", "422", "429", "500", "503"):
            ref = responses[status]["content"]["application/json"]["schema"]["$ref"]
            assert ref == "#/components/schemas/ErrorResponse"


class TestLifespan:
    """Tests for application startup and shutdown."""

    def test_lifespan_starts_and_stops_sweeper(self):
        """Test the controller is built on startup and stopped on shutdown."""
        with patch("shelfguard.app.setup_logging"):
            with TestClient(app) as client:
                from shelfguard.admission import get_controller

                controller = get_controller()
                assert controller.running is True
                assert client.get("/v1/healthcheck").status_code == 200

        assert controller.running is False
