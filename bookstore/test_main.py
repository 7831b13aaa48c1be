import asyncio
import json

from sqlalchemy.exc import IntegrityError
from starlette.requests import Request

from bookstore.main import integrity_error_handler, unexpected_error_handler


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/no-such-route")
    assert response.status_code == 404
    assert response.json() == {"status": "fail", "message": "Not Found"}


def test_request_validation_lists_field_errors(client):
    response = client.post(
        "/auth/register",
        json={"name": "Weak", "email": "weak@example.com", "password": "short"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "fail"
    assert body["message"] == "Password must be at least 6 characters long"
    assert body["errors"][0]["field"] == "password"


def test_protected_route_without_token(client):
    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["status"] == "fail"


def make_request():
    return Request({"type": "http", "method": "PATCH", "path": "/books/1", "headers": []})


def render(response):
    return response.status_code, json.loads(response.body)


def test_integrity_error_names_duplicates_only_for_unique_violations():
    duplicate = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: books.isbn"))
    status_code, body = render(asyncio.run(integrity_error_handler(make_request(), duplicate)))
    assert status_code == 400
    assert body["message"] == "Duplicate field value. Please use another value."

    missing = IntegrityError("UPDATE", {}, Exception("NOT NULL constraint failed: books.is_featured"))
    status_code, body = render(asyncio.run(integrity_error_handler(make_request(), missing)))
    assert status_code == 400
    assert "Duplicate" not in body["message"]


def test_unexpected_errors_are_reported_generically():
    status_code, body = render(asyncio.run(unexpected_error_handler(make_request(), RuntimeError("boom"))))
    assert status_code == 500
    assert body == {"status": "error", "message": "Something went wrong!"}
