"""Prompt builders for the analysis, SEO and image-synthesis stages."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from models import ProductRecord

ANALYSIS_INSTRUCTION = (
    "You are a fashion merchandiser. Describe the garment in this photo as concise "
    "attribute text: garment type, colours, pattern, fabric and texture, neckline, "
    "sleeves, closures, logos or prints, and any distinctive details. "
    "Ignore the background. Plain text, no more than 80 words."
)

_SOLID_COLOURS = (
    "orange", "black", "white", "grey", "gray", "coffee", "kahve",
    "turuncu", "siyah", "beyaz",
)

_BACKGROUNDS = {
    "coffee":  "Solid coffee brown studio background",
    "kahve":   "Solid coffee brown studio background",
    "urban":   "Modern city street, natural daylight, urban atmosphere, blurred background",
    "cafe":    "High-end luxury cafe interior, soft ambient lighting, cozy atmosphere",
    "orange":  "Solid orange studio background, professional lighting",
    "black":   "Solid black studio background, dramatic lighting",
    "white":   "Solid white studio background, high key lighting",
    "studio":  "Professional studio background",
}

_ACCESSORIES = {
    "bag":      "holding a stylish handbag",
    "çanta":    "holding a stylish handbag",
    "glasses":  "wearing modern sunglasses",
    "güneş gözlüğü": "wearing modern sunglasses",
    "wallet":   "holding a leather wallet",
    "car_key":  "holding a car key",
}

NEGATIVE_CONSTRAINTS = (
    "Negative Constraints: (NO OBJECTS, NO STUDIO LIGHTS, NO STANDS, NO CHAIRS, "
    "NO BODY DISFIGURATION, NO MISSING LIMBS). "
    "Image must be a clean, high-fashion photograph."
)


@dataclass
class TranslatedInputs:
    gender: str
    age: str
    body_type: str
    fit: str
    background: str
    accessory: str
    description: str


def translate_inputs(record: ProductRecord) -> TranslatedInputs:
    """Map the user's form values (English or Turkish) onto prompt vocabulary."""
    gender = "Female" if record.gender.strip().lower() in ("kadın", "kadin", "female", "woman") else "Male"

    raw_body = record.body_type.lower()
    if "slim" in raw_body or "zayıf" in raw_body:
        body_type = "Slender"
    elif "plus" in raw_body or "büyük" in raw_body:
        body_type = "Curvy"
    else:
        body_type = "Average"

    raw_fit = record.fit.lower()
    if "oversize" in raw_fit or "bol" in raw_fit:
        fit = "Oversized"
    elif "slim" in raw_fit or "dar" in raw_fit:
        fit = "Slim fit"
    else:
        fit = "Regular fit"

    bg_key = record.background.strip().lower()
    background = _BACKGROUNDS.get(bg_key) or record.background.strip() or "Studio lighting, solid color background"

    accessory = _ACCESSORIES.get(record.accessory.strip().lower(), "")

    return TranslatedInputs(
        gender=gender,
        age=record.age or "25",
        body_type=body_type,
        fit=fit,
        background=background,
        accessory=accessory,
        description=record.description.strip(),
    )


def smooth_prompt(prompt: str) -> str:
    """Replace wording that tends to trip image-model safety filters."""
    prompt = re.sub(r"plus size", "Curvy/Full-figured", prompt, flags=re.IGNORECASE)
    prompt = re.sub(r"\bModel\b", "Subject", prompt)
    return re.sub(r"\bmodel\b", "subject", prompt, flags=re.IGNORECASE)


def environment_block(background: str) -> str:
    bg = background.lower()
    if "solid" in bg or "studio" in bg or any(c in bg for c in _SOLID_COLOURS):
        return (
            f"Background: Abstract solid {background} color field. 2D flat background. "
            "Seamless paper. No depth. No horizon. No shadows. No props."
        )
    return f"Background: {background}. Blurred depth-of-field."


def build_seo_prompt(record: ProductRecord) -> str:
    t = translate_inputs(record)
    language = "Turkish (Türkçe)" if record.language == "tr" else "English"
    analysis = record.front_analyse or ""
    if record.back_analyse:
        analysis += f"\nBack view: {record.back_analyse}"

    return (
        "TASK: Write a high-ranking SEO product title and description for an "
        "e-commerce fashion listing.\n\n"
        "VISUAL ANALYSIS OF THE GARMENT:\n"
        f"{analysis}\n\n"
        "PRODUCT ATTRIBUTES:\n"
        f"- Gender: {t.gender}\n"
        f"- Age Group: {t.age}\n"
        f"- Body Type: {t.body_type}\n"
        f"- Fit: {t.fit}\n"
        f"- User Specific Details (MUST INCORPORATE): {t.description}\n\n"
        "DESCRIPTION RULES: a single cohesive paragraph; use concrete visual details "
        "(colours, patterns, distinct features); include ALL user specific details; "
        "exactly 5 emojis spread naturally through the text.\n"
        "TITLE RULES: concise, about 5 words.\n"
        "TAGS RULES: exactly 5 SEO tags on product type, fabric, style and fit.\n"
        f"LANGUAGE: {language}.\n\n"
        'Return ONLY JSON: {"title": "...", "description": "...", "tags": ["...", "..."]}'
    )


def build_synthesis_prompt(record: ProductRecord, view: str = "front") -> str:
    """Structured on-model photography prompt for the front or back view."""
    t = translate_inputs(record)
    seo_context: Optional[str] = record.product_title
    if seo_context and record.front_analyse:
        seo_context = f"{seo_context}. {record.front_analyse}"

    if view == "back":
        header = (
            "TASK: Professional Fashion Photography. IMAGE 1 shows the back of the clothing "
            "item; IMAGE 2 shows the same outfit already worn, from the front. Dress the item "
            "onto the same person, keeping face, body, pose styling and background identical."
        )
        view_line = "VIEW: Back View (facing away from camera). Show the back of the outfit."
    else:
        header = (
            "TASK: Professional Fashion Photography. Take the clothing item shown in IMAGE 1 "
            "and dress it onto a professional model."
        )
        view_line = "VIEW: Front View. Full body shot."

    parts = [
        header,
        f"Model: {t.age} year old {t.gender}, {t.body_type} physique, professional pose.",
        f"Fit: Ensure the item has a {t.fit} look on the model as requested.",
        (
            f"Product Description: {seo_context}. Texture, logo, and cut must match the "
            "reference image exactly."
            if seo_context
            else f"Product: {t.fit} clothing."
        ),
        environment_block(t.background),
        view_line,
    ]
    if t.accessory:
        parts.append(f"Accessory: {t.accessory}.")
    parts.append(NEGATIVE_CONSTRAINTS)

    return smooth_prompt(" ".join(parts))
