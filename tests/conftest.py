from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from db import RecordStore
from events import EventBus
from notify import NotificationSink
from pipeline import PipelineOrchestrator

FRONT = "data:image/png;base64,RlJPTlQ="
BACK = "data:image/png;base64,QkFDSw=="
SYNTH = "data:image/png;base64,U1lOVEg="

T0 = 1_700_000_000.0


class Clock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClient:
    """Stands in for GenerationClient; records every call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, object]] = []
        self.seo_result: Dict = {
            "title": "Relaxed Linen Summer Shirt",
            "description": "A breezy linen shirt ☀️ with coconut buttons 🥥 ...",
            "tags": ["#linen", "#summer", "#shirt", "#relaxed", "#beach"],
        }
        self.image: Optional[str] = SYNTH
        self.fail: Dict[str, Exception] = {}
        self.fail_on_image: Dict[str, Exception] = {}
        self.gate = None  # asyncio.Event that analyze waits on, when set

    async def analyze(self, image: str, instruction: str) -> str:
        self.calls.append(("analyze", image))
        if self.gate is not None:
            await self.gate.wait()
        if image in self.fail_on_image:
            raise self.fail_on_image[image]
        if "analyze" in self.fail:
            raise self.fail["analyze"]
        return "front: white linen shirt" if image == FRONT else "back: plain linen back"

    async def generate_text(self, prompt: str) -> Dict:
        self.calls.append(("generate_text", prompt))
        if "generate_text" in self.fail:
            raise self.fail["generate_text"]
        return self.seo_result

    async def synthesize_image(self, prompt: str, conditioning_images: Sequence[str]) -> str:
        self.calls.append(("synthesize_image", list(conditioning_images)))
        if "synthesize_image" in self.fail:
            raise self.fail["synthesize_image"]
        return self.image

    def count(self, capability: str) -> int:
        return sum(1 for name, _ in self.calls if name == capability)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store(tmp_path) -> RecordStore:
    s = RecordStore(tmp_path / "catalog.db")
    s.init_db()
    return s


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def sink(store, bus, clock) -> NotificationSink:
    return NotificationSink(store, bus, clock=clock)


@pytest.fixture
def orchestrator(store, client, sink, bus, clock) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        store, client, sink, bus=bus, clock=clock,
        interval=0.05, timeout=600.0, max_retries=3,
    )


@pytest.fixture
def make_product(orchestrator):
    def _make(raw_back: str = "", **attrs):
        attrs.setdefault("gender", "female")
        attrs.setdefault("age", "28")
        attrs.setdefault("fit", "oversize")
        attrs.setdefault("background", "white")
        attrs.setdefault("description", "coconut buttons")
        return orchestrator.create_product(FRONT, raw_back, **attrs)
    return _make
