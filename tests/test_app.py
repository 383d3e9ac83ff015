from __future__ import annotations

import asyncio

import pytest

import costs
from app import build_pipeline, create_app
from config import Settings
from conftest import BACK, FRONT
from errors import SafetyBlockedError


@pytest.fixture
def pipeline(tmp_path, store, client, bus):
    settings = Settings(db_path=tmp_path / "catalog.db")
    return build_pipeline(settings, store=store, client=client, bus=bus)


@pytest.fixture
def http(pipeline):
    app = create_app(Settings(), pipeline=pipeline, start_pipeline=False)
    app.config["TESTING"] = True
    return app.test_client()


def _create(http, **body):
    body.setdefault("front_image", FRONT)
    return http.post("/api/products", json=body)


def test_create_product(http, pipeline):
    resp = _create(http, back_image=BACK, gender="female", age=28, fit="oversize")

    assert resp.status_code == 201
    data = resp.get_json()
    product = data["product"]
    assert product["id"] == data["id"]
    assert product["overall_status"] == "running"
    assert product["analysis_status"] == "pending"
    assert product["age"] == "28"
    assert product["has_back"] is True
    assert product["can_retry"] is False
    assert "raw_front" not in product
    assert pipeline.store.products.get(data["id"]).raw_back == BACK


@pytest.mark.parametrize("body", [{}, {"front_image": "   "}, {"back_image": BACK}])
def test_create_requires_front_image(http, body):
    resp = http.post("/api/products", json=body)
    assert resp.status_code == 400
    assert "front_image" in resp.get_json()["error"]


def test_list_products_omits_image_payloads(http):
    _create(http)
    _create(http, back_image=BACK)

    resp = http.get("/api/products")

    assert resp.status_code == 200
    products = resp.get_json()
    assert len(products) == 2
    for p in products:
        assert not {"raw_front", "raw_back", "model_front", "model_back"} & set(p)


def test_get_product_returns_full_record(http):
    pid = _create(http).get_json()["id"]
    data = http.get(f"/api/products/{pid}").get_json()
    assert data["raw_front"] == FRONT
    assert data["model_front"] is None


def test_unknown_product_is_404(http):
    assert http.get("/api/products/nope").status_code == 404
    assert http.delete("/api/products/nope").status_code == 404
    assert http.post("/api/products/nope/retry").status_code == 404
    assert http.patch("/api/products/nope", json={"fit": "slim"}).status_code == 404


def test_retry_running_product_is_refused(http):
    pid = _create(http).get_json()["id"]
    resp = http.post(f"/api/products/{pid}/retry")
    assert resp.status_code == 400
    assert "not exited" in resp.get_json()["error"]


def test_failed_product_can_be_retried(http, pipeline, client):
    pid = _create(http).get_json()["id"]
    client.fail["analyze"] = SafetyBlockedError("blocked")
    asyncio.run(pipeline.tick())

    product = http.get(f"/api/products/{pid}").get_json()
    assert product["overall_status"] == "exited"
    assert product["error_log"] == "blocked"
    assert product["can_retry"] is True

    notes = http.get("/api/notifications").get_json()
    assert notes[0]["product_id"] == pid

    resp = http.post(f"/api/products/{pid}/retry")
    assert resp.status_code == 200
    assert resp.get_json()["overall_status"] == "running"
    assert resp.get_json()["analysis_status"] == "pending"


def test_edit_requeues_invalidated_stages(http, pipeline):
    pid = _create(http, fit="oversize").get_json()["id"]
    for _ in range(4):
        asyncio.run(pipeline.tick())
    assert http.get(f"/api/products/{pid}").get_json()["overall_status"] == "finished"

    resp = http.patch(f"/api/products/{pid}", json={"background": "urban"})

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["overall_status"] == "running"
    assert data["seo_status"] == "completed"
    assert data["front_status"] == "pending"
    assert data["background"] == "urban"


def test_edit_with_invalid_value_is_400(http):
    pid = _create(http).get_json()["id"]
    resp = http.patch(f"/api/products/{pid}", json={"gender": ["not", "text"]})
    assert resp.status_code == 400


def test_delete_product(http, bus):
    pid = _create(http).get_json()["id"]
    q = bus.subscribe()

    resp = http.delete(f"/api/products/{pid}")

    assert resp.status_code == 200
    assert http.get(f"/api/products/{pid}").status_code == 404
    event = q.get_nowait()
    assert event["type"] == "product_deleted"
    assert event["id"] == pid


def test_notifications_remove_and_clear(http, pipeline):
    first = pipeline.sink.emit("p1", "one")
    pipeline.sink.emit("p2", "two")

    assert http.delete(f"/api/notifications/{first.id}").status_code == 200
    assert http.delete(f"/api/notifications/{first.id}").status_code == 404
    assert [e["message"] for e in http.get("/api/notifications").get_json()] == ["two"]

    assert http.delete("/api/notifications").get_json() == {"cleared": True}
    assert http.get("/api/notifications").get_json() == []


def test_metrics(http, pipeline):
    costs.record_usage(pipeline.store, "gpt-4o-mini", 0.5, 1_700_000_000.0)
    data = http.get("/api/metrics").get_json()
    assert data["total_requests"] == 1
    assert data["models"][0]["model_id"] == "gpt-4o-mini"
    assert data["models"][0]["usage_history"][0]["count"] == 1
