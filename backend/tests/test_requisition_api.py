"""Requisition API and health endpoint tests."""

from decimal import Decimal

BASE = "/api/v1/requisitions"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_readiness(client):
    resp = client.get("/health/ready")
    assert resp.status_code == 200
    assert resp.json()["checks"]["database"] == "healthy"


def test_correlation_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Correlation-ID": "req-123"})
    assert resp.headers["X-Correlation-ID"] == "req-123"


def test_requisition_progress(client, employee_headers, confirmed_po, test_requisition, product_a):
    resp = client.get(f"{BASE}/{test_requisition.id}", headers=employee_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    line = next(rp for rp in body["required_products"] if rp["product_id"] == product_a.id)
    assert Decimal(line["purchased_quantity"]) == Decimal("10")
    assert Decimal(line["pending_po_quantity"]) == Decimal("0")


def test_unknown_requisition(client, employee_headers):
    resp = client.get(f"{BASE}/9999", headers=employee_headers)
    assert resp.status_code == 404
    assert resp.json()["details"]["entity"] == "Requisition"


def test_sync_tasks_listing(client, admin_headers, employee_headers, confirmed_po):
    resp = client.get(f"{BASE}/sync-tasks", params={"purchase_order_id": confirmed_po.id},
                      headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    assert [t["event"] for t in body["items"]] == ["reserve", "confirm"]
    assert all(t["status"] == "applied" for t in body["items"])

    resp = client.get(f"{BASE}/sync-tasks", headers=employee_headers)
    assert resp.status_code == 403


def test_sync_tasks_are_paged(client, admin_headers, confirmed_po):
    params = {"purchase_order_id": confirmed_po.id, "limit": 1}
    first = client.get(f"{BASE}/sync-tasks", params=params, headers=admin_headers).json()
    assert first["total"] == 2
    assert first["has_more"] is True
    assert [t["event"] for t in first["items"]] == ["reserve"]

    second = client.get(f"{BASE}/sync-tasks", params={**params, "skip": 1}, headers=admin_headers).json()
    assert second["total"] == 2
    assert second["has_more"] is False
    assert [t["event"] for t in second["items"]] == ["confirm"]


def test_retry_with_nothing_pending(client, admin_headers, confirmed_po):
    resp = client.post(f"{BASE}/sync-tasks/retry", json={"limit": 10}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"processed": 0, "applied": 0, "pending": 0, "failed": 0}
