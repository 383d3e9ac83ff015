"""Record schemas for products, error-log entries and usage metrics.

Every record crossing the store boundary is decoded through one of these
models, so status fields can only ever hold a known value.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StageStatus(str, Enum):
    PENDING = "pending"
    UPDATING = "updating"
    COMPLETED = "completed"
    FAILED = "failed"


class OverallStatus(str, Enum):
    RUNNING = "running"
    FINISHED = "finished"
    EXITED = "exited"


# Pipeline stages in execution order
STAGES: Tuple[str, ...] = ("analysis", "seo", "front", "back")

STAGE_LABELS: Dict[str, str] = {
    "analysis": "Visual analysis",
    "seo":      "SEO copy",
    "front":    "Front image",
    "back":     "Back image",
}

# Output fields owned by each stage
STAGE_OUTPUTS: Dict[str, Tuple[str, ...]] = {
    "analysis": ("front_analyse", "back_analyse"),
    "seo":      ("product_title", "product_desc", "tags"),
    "front":    ("model_front",),
    "back":     ("model_back",),
}

TERMINAL_STATUSES = (OverallStatus.FINISHED, OverallStatus.EXITED)
OPEN_STAGE_STATUSES = (StageStatus.PENDING, StageStatus.UPDATING)


def status_field(stage: str) -> str:
    if stage not in STAGES:
        raise ValueError(f"unknown stage {stage!r}")
    return f"{stage}_status"


class ProductRecord(BaseModel):
    """One product's generation job and everything it has produced so far."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    id: str = Field(frozen=True)
    created_at: float = Field(frozen=True)
    updated_at: float

    raw_front: str
    raw_back: str = ""

    gender: str = ""
    age: str = ""
    body_type: str = ""
    fit: str = ""
    background: str = ""
    accessory: str = ""
    description: str = ""
    language: str = "en"

    overall_status: OverallStatus = OverallStatus.RUNNING
    analysis_status: StageStatus = StageStatus.PENDING
    seo_status: StageStatus = StageStatus.PENDING
    front_status: StageStatus = StageStatus.PENDING
    back_status: StageStatus = StageStatus.PENDING

    front_analyse: Optional[str] = None
    back_analyse: Optional[str] = None
    product_title: Optional[str] = None
    product_desc: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    model_front: Optional[str] = None
    model_back: Optional[str] = None

    retry_count: int = Field(default=0, ge=0)
    error_log: Optional[str] = None

    @field_validator("analysis_status", "seo_status", "front_status", "back_status", mode="before")
    @classmethod
    def _missing_stage_is_pending(cls, value: Any) -> Any:
        # A stage that was never reached may be stored without a status
        return StageStatus.PENDING if value is None else value

    @field_validator("raw_back", mode="before")
    @classmethod
    def _none_back_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("age", mode="before")
    @classmethod
    def _age_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def stage_status(self, stage: str) -> StageStatus:
        return getattr(self, status_field(stage))

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        if self.overall_status == OverallStatus.RUNNING:
            return True
        return any(self.stage_status(s) in OPEN_STAGE_STATUSES for s in STAGES)

    @property
    def has_back(self) -> bool:
        return bool(self.raw_back)

    def with_changes(self, **changes: Any) -> "ProductRecord":
        """Return a validated copy with ``changes`` applied (id/created_at stay fixed)."""
        changes.pop("id", None)
        changes.pop("created_at", None)
        data = self.model_dump()
        data.update(changes)
        return ProductRecord.model_validate(data)

    def summary(self) -> Dict[str, Any]:
        """Lightweight view for listings (no image payloads)."""
        return self.model_dump(
            mode="json",
            exclude={"raw_front", "raw_back", "model_front", "model_back"},
        ) | {
            "has_back": self.has_back,
            "has_model_front": bool(self.model_front),
            "has_model_back": bool(self.model_back),
        }


class ErrorLogEntry(BaseModel):
    id: str
    product_id: Optional[str] = None
    message: str
    timestamp: float


class DailyUsage(BaseModel):
    date: str            # YYYY-MM-DD, UTC
    count: int = 0
    cost: float = 0.0


class UsageMetric(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    total_requests: int = 0
    total_cost: float = 0.0
    usage_history: List[DailyUsage] = Field(default_factory=list)
    last_updated: float = 0.0
