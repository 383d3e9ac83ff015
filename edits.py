"""Which stages an attribute edit invalidates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from models import ProductRecord

# Changing any of these changes the copy as well as the pictures
CRITICAL_FIELDS = ("gender", "age", "body_type", "fit", "description", "language")
# These only change what the pictures look like
VISUAL_FIELDS = ("background", "accessory")

EDITABLE_FIELDS = CRITICAL_FIELDS + VISUAL_FIELDS


@dataclass
class ConfigDiff:
    has_changes: bool = False
    needs_seo: bool = False
    needs_front: bool = False
    needs_back: bool = False

    def stages(self) -> List[str]:
        out = []
        if self.needs_seo:
            out.append("seo")
        if self.needs_front:
            out.append("front")
        if self.needs_back:
            out.append("back")
        return out


def _changed(old: ProductRecord, changes: Dict[str, Any], field: str) -> bool:
    if field not in changes or changes[field] is None:
        return False
    return str(changes[field]) != str(getattr(old, field))


def analyze_config_diff(old: ProductRecord, changes: Dict[str, Any]) -> ConfigDiff:
    if any(_changed(old, changes, f) for f in CRITICAL_FIELDS):
        return ConfigDiff(has_changes=True, needs_seo=True, needs_front=True, needs_back=True)
    if any(_changed(old, changes, f) for f in VISUAL_FIELDS):
        return ConfigDiff(has_changes=True, needs_front=True, needs_back=True)
    return ConfigDiff()
