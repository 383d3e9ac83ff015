"""Helpers for moving images around as base64 data URLs."""

from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
from typing import Tuple, Union

_DEFAULT_MIME = "image/png"


def to_data_url(image: Union[str, bytes], mime_type: str = _DEFAULT_MIME) -> str:
    """Normalise raw bytes, bare base64 or an existing data URL into a data URL."""
    if isinstance(image, bytes):
        return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
    image = image.strip()
    if image.startswith("data:") or image.startswith(("http://", "https://")):
        return image
    return f"data:{mime_type};base64,{image}"


def split_data_url(data_url: str) -> Tuple[str, bytes]:
    """Return (mime_type, raw bytes) for a base64 data URL."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("not a data URL")
    header, payload = data_url.split(",", 1)
    mime_type = header[5:].split(";")[0] or _DEFAULT_MIME
    return mime_type, base64.b64decode(payload)


def file_to_data_url(path: Union[str, Path]) -> str:
    path = Path(path)
    mime_type = mimetypes.guess_type(path.name)[0] or _DEFAULT_MIME
    return to_data_url(path.read_bytes(), mime_type)


def save_data_url(data_url: str, path: Union[str, Path]) -> Path:
    """Write a data URL's payload to ``path`` and return it."""
    _, raw = split_data_url(data_url)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(raw)
    return path
