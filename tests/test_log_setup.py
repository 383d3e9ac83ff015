from __future__ import annotations

import asyncio
import logging

import pytest

import log_setup
from models import StageStatus


class _Collect(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records = []
        self.addFilter(log_setup.ProductFilter())

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def collected():
    handler = _Collect()
    root = logging.getLogger()
    old_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    yield handler.records
    root.removeHandler(handler)
    root.setLevel(old_level)


def test_product_context_tags_records(collected):
    log = logging.getLogger("catalog.test")

    log.info("outside")
    with log_setup.product_context("p1"):
        log.info("inside")
    log.info("explicit", extra={"product": "p2"})

    assert [(r.getMessage(), r.product) for r in collected] == [
        ("outside", "-"), ("inside", "p1"), ("explicit", "p2"),
    ]


def test_tick_logs_carry_the_product_id(collected, orchestrator, store, make_product):
    product = make_product()

    asyncio.run(orchestrator.tick())

    assert store.products.get(product.id).analysis_status == StageStatus.COMPLETED
    stage_lines = [r for r in collected if r.name == "pipeline" and "analysis" in r.getMessage()]
    assert stage_lines
    assert {r.product for r in stage_lines} == {product.id}
