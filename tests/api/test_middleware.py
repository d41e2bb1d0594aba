"""
Tests for the HTTP layer: per-request RLS context and problem responses.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel

from warden.api import ProblemDetail, RLSContextMiddleware, register_rls_error_handlers
from warden.repository import create_orm, pydantic_adapter
from warden.rls import create_rls_context, rls_context, rls_plugin


class OrderIn(BaseModel):
    tenant_id: int
    status: str = "placed"


def header_resolver(request: Request):
    user = request.headers.get("X-User-ID")
    if not user:
        return None
    tenant = request.headers.get("X-Tenant-ID")
    return create_rls_context(int(user), tenant_id=int(tenant) if tenant else None, roles=["user"])


async def async_header_resolver(request: Request):
    return header_resolver(request)


def build_app(engine, orders_schema, resolver=header_resolver) -> FastAPI:
    orm = create_orm(engine, [rls_plugin(orders_schema)])
    orders = orm.repository("orders", create_schema=pydantic_adapter(OrderIn))

    app = FastAPI()
    app.add_middleware(RLSContextMiddleware, resolver=resolver)
    register_rls_error_handlers(app)

    @app.get("/orders")
    async def list_orders():
        return [row["id"] for row in orders.find_all()]

    @app.get("/whoami")
    async def whoami():
        ctx = rls_context.get_current_or_null()
        return {"tenant_id": ctx.tenant_id if ctx else None}

    @app.post("/orders", status_code=201)
    async def create_order(request: Request):
        return orders.create(await request.json())

    @app.delete("/orders/{order_id}")
    async def delete_order(order_id: int):
        return {"deleted": orders.delete(order_id)}

    return app


@pytest.fixture
def client(engine, orders_schema):
    return TestClient(build_app(engine, orders_schema))


def as_tenant(user: int, tenant: int) -> dict[str, str]:
    return {"X-User-ID": str(user), "X-Tenant-ID": str(tenant)}


class TestContextMiddleware:
    def test_reads_are_scoped_per_request(self, client):
        assert client.get("/orders", headers=as_tenant(1, 7)).json() == [1, 2, 4]
        assert client.get("/orders", headers=as_tenant(3, 8)).json() == [3]

    def test_context_does_not_leak_between_requests(self, client):
        client.get("/whoami", headers=as_tenant(1, 7))
        assert client.get("/whoami").json() == {"tenant_id": None}
        assert rls_context.get_current_or_null() is None

    def test_async_resolver(self, engine, orders_schema):
        client = TestClient(build_app(engine, orders_schema, resolver=async_header_resolver))
        assert client.get("/orders", headers=as_tenant(3, 8)).json() == [3]


class TestProblemResponses:
    def test_missing_context_is_unauthorized(self, client):
        response = client.get("/orders")
        assert response.status_code == 401
        body = ProblemDetail.model_validate(response.json())
        assert body.title == "Unauthorized"
        assert body.code == "RLS_CONTEXT_MISSING"

    def test_violation_is_forbidden(self, client):
        response = client.delete("/orders/2", headers=as_tenant(1, 7))
        assert response.status_code == 403
        body = response.json()
        assert body["title"] == "Forbidden"
        assert body["code"] == "RLS_POLICY_VIOLATION"
        assert "no-shipped-delete" in body["detail"]
        assert body["instance"].endswith("/orders/2")

    def test_invisible_row_is_not_found(self, client):
        response = client.delete("/orders/3", headers=as_tenant(1, 7))
        assert response.status_code == 404
        assert response.json()["title"] == "Not Found"

    def test_allowed_delete(self, client):
        response = client.delete("/orders/1", headers=as_tenant(1, 7))
        assert response.status_code == 200
        assert response.json() == {"deleted": 1}

    def test_invalid_payload_is_bad_request(self, client):
        response = client.post("/orders", json={"status": "placed"}, headers=as_tenant(1, 7))
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["errors"][0]["loc"] == ["tenant_id"]

    def test_create(self, client):
        response = client.post("/orders", json={"tenant_id": 7}, headers=as_tenant(1, 7))
        assert response.status_code == 201
        assert response.json()["status"] == "placed"
