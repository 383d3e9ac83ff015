"""Stage executors.

Each executor takes the current record and the generation client and returns
the output fields its stage owns.  Executors never touch status fields and
never persist anything; the orchestrator does both.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List

from pydantic import BaseModel, Field, ValidationError, field_validator

import prompts
from errors import MalformedOutputError, StageOrderError
from models import ProductRecord, StageStatus

log = logging.getLogger(__name__)

StageExecutor = Callable[[ProductRecord, Any], Awaitable[Dict[str, Any]]]


class SeoCopy(BaseModel):
    """Shape the text model must answer with for the SEO stage."""

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


def _require(record: ProductRecord, stage: str, needs: str) -> None:
    if record.stage_status(needs) != StageStatus.COMPLETED:
        raise StageOrderError(
            f"{stage} stage needs {needs} completed (is {record.stage_status(needs).value})"
        )


async def run_analysis(record: ProductRecord, client) -> Dict[str, Any]:
    """Describe the raw front (and back) photo.  Populated fields are kept as-is."""
    update: Dict[str, Any] = {}
    if not record.front_analyse:
        update["front_analyse"] = await client.analyze(record.raw_front, prompts.ANALYSIS_INSTRUCTION)
    if record.has_back and not record.back_analyse:
        update["back_analyse"] = await client.analyze(record.raw_back, prompts.ANALYSIS_INSTRUCTION)
    return update


async def run_seo(record: ProductRecord, client) -> Dict[str, Any]:
    _require(record, "seo", "analysis")
    result = await client.generate_text(prompts.build_seo_prompt(record))
    try:
        copy = SeoCopy.model_validate(result)
    except ValidationError as exc:
        raise MalformedOutputError(
            f"SEO result is not {{title, description}}: {exc.error_count()} problem(s)"
        ) from exc
    return {
        "product_title": copy.title,
        "product_desc": copy.description,
        "tags": copy.tags,
    }


async def run_front(record: ProductRecord, client) -> Dict[str, Any]:
    _require(record, "front", "seo")
    image = await client.synthesize_image(
        prompts.build_synthesis_prompt(record, "front"),
        [record.raw_front],
    )
    if not image:
        raise MalformedOutputError("Front image synthesis returned no image")
    return {"model_front": image}


async def run_back(record: ProductRecord, client) -> Dict[str, Any]:
    _require(record, "back", "front")
    if not record.has_back:
        log.debug("no back photo, back stage skipped")
        return {}
    image = await client.synthesize_image(
        prompts.build_synthesis_prompt(record, "back"),
        [record.raw_back, record.model_front or ""],
    )
    if not image:
        raise MalformedOutputError("Back image synthesis returned no image")
    return {"model_back": image}


STAGE_EXECUTORS: Dict[str, StageExecutor] = {
    "analysis": run_analysis,
    "seo":      run_seo,
    "front":    run_front,
    "back":     run_back,
}
