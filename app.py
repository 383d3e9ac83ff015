"""Product Listing Builder — Flask API in front of the generation pipeline."""

from __future__ import annotations

import json
import logging
import queue
from typing import Dict, Generator, Optional

from dotenv import load_dotenv
from flask import Flask, Response, current_app, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

import costs
import log_setup
from config import Settings
from db import RecordStore
from errors import ProductNotFound, RetryNotAllowed
from events import EventBus
from gen_client import GenerationClient
from models import ProductRecord
from notify import NotificationSink
from pipeline import PipelineOrchestrator

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_pipeline(
    settings: Settings,
    store: Optional[RecordStore] = None,
    client=None,
    bus: Optional[EventBus] = None,
) -> PipelineOrchestrator:
    """Assemble store, client, sink and orchestrator from settings."""
    store = store or RecordStore(settings.db_path)
    store.init_db()
    bus = bus or EventBus()
    sink = NotificationSink(store, bus)
    if client is None:
        client = GenerationClient(
            settings,
            usage_cb=lambda model, cost: costs.record_usage(store, model, cost, sink.clock()),
        )
    return PipelineOrchestrator(
        store,
        client,
        sink,
        bus=bus,
        interval=settings.interval,
        timeout=settings.timeout,
        max_retries=settings.max_retries,
    )


def _pipeline() -> PipelineOrchestrator:
    return current_app.extensions["pipeline"]


def _product_view(record: ProductRecord, full: bool = False) -> Dict:
    data = record.model_dump(mode="json") if full else record.summary()
    data["can_retry"] = _pipeline().can_retry(record)
    return data


# ---------------------------------------------------------------------------
# SSE helpers
# ---------------------------------------------------------------------------

def _sse_event(data: dict) -> str:
    return f"data: {json.dumps(data)}\n\n"


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[PipelineOrchestrator] = None,
    start_pipeline: bool = True,
) -> Flask:
    settings = settings or Settings.from_env()
    pipeline = pipeline or build_pipeline(settings)

    app = Flask(__name__)
    CORS(app)
    app.extensions["pipeline"] = pipeline

    @app.errorhandler(ProductNotFound)
    def _not_found(exc: ProductNotFound):
        return jsonify({"error": f"product {exc.args[0]} not found"}), 404

    @app.errorhandler(RetryNotAllowed)
    def _retry_refused(exc: RetryNotAllowed):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(ValidationError)
    def _invalid(exc: ValidationError):
        return jsonify({"error": "invalid product data",
                        "details": exc.errors(include_url=False, include_context=False, include_input=False)}), 400

    @app.errorhandler(ValueError)
    def _bad_value(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    # -----------------------------------------------------------------------
    # Routes: products
    # -----------------------------------------------------------------------

    @app.post("/api/products")
    def api_create_product():
        body = request.get_json(silent=True) or {}
        raw_front = (body.get("front_image") or "").strip()
        if not raw_front:
            return jsonify({"error": "front_image is required"}), 400
        attributes = {k: body.get(k) for k in (
            "gender", "age", "body_type", "fit", "background",
            "accessory", "description", "language",
        )}
        record = _pipeline().create_product(
            raw_front, (body.get("back_image") or "").strip(), **attributes
        )
        return jsonify({"id": record.id, "product": _product_view(record)}), 201

    @app.get("/api/products")
    def api_list_products():
        return jsonify([_product_view(r) for r in _pipeline().store.products.list()])

    @app.get("/api/products/<product_id>")
    def api_get_product(product_id: str):
        return jsonify(_product_view(_pipeline().get_product(product_id), full=True))

    @app.patch("/api/products/<product_id>")
    def api_edit_product(product_id: str):
        body = request.get_json(silent=True) or {}
        record = _pipeline().edit(product_id, body)
        return jsonify(_product_view(record))

    @app.post("/api/products/<product_id>/retry")
    def api_retry_product(product_id: str):
        record = _pipeline().retry(product_id)
        return jsonify(_product_view(record))

    @app.delete("/api/products/<product_id>")
    def api_delete_product(product_id: str):
        if not _pipeline().cancel(product_id):
            raise ProductNotFound(product_id)
        return jsonify({"deleted": product_id})

    # -----------------------------------------------------------------------
    # Routes: notifications & metrics
    # -----------------------------------------------------------------------

    @app.get("/api/notifications")
    def api_notifications():
        return jsonify([e.model_dump() for e in _pipeline().sink.list()])

    @app.delete("/api/notifications/<entry_id>")
    def api_remove_notification(entry_id: str):
        if not _pipeline().sink.remove(entry_id):
            return jsonify({"error": "Not found"}), 404
        return jsonify({"deleted": entry_id})

    @app.delete("/api/notifications")
    def api_clear_notifications():
        _pipeline().sink.clear()
        return jsonify({"cleared": True})

    @app.get("/api/metrics")
    def api_metrics():
        return jsonify(costs.metrics_summary(_pipeline().store))

    # -----------------------------------------------------------------------
    # Routes: live updates
    # -----------------------------------------------------------------------

    @app.get("/api/stream")
    def api_stream():
        """Server-Sent Events relay of every product / notification change."""
        bus = _pipeline().bus
        q = bus.subscribe()

        def generate() -> Generator[str, None, None]:
            # Send a heartbeat first so the connection opens
            yield _sse_event({"type": "heartbeat"})
            try:
                while True:
                    try:
                        event = q.get(timeout=25)
                    except queue.Empty:
                        yield _sse_event({"type": "heartbeat"})
                        continue
                    yield _sse_event(event)
            finally:
                bus.unsubscribe(q)

        return Response(
            generate(),
            mimetype="text/event-stream",
            headers={
                "Cache-Control": "no-cache, no-transform",
                "X-Accel-Buffering": "no",
                "Connection": "keep-alive",
            },
        )

    if start_pipeline:
        pipeline.start()

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    load_dotenv()
    log_setup.configure()

    settings = Settings.from_env()
    missing = settings.missing_keys()
    if missing:
        log.warning("Missing credentials: %s — affected stages will fail", ", ".join(missing))

    app = create_app(settings)
    print(f"\n  Product Listing Builder → http://localhost:{settings.port}\n")
    try:
        app.run(host="0.0.0.0", port=settings.port, debug=False, threaded=True)
    finally:
        app.extensions["pipeline"].stop(timeout=10)
