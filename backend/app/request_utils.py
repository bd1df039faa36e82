# Overview: Request body helpers for endpoints that accept JSON or multipart uploads.

from __future__ import annotations

import json

from flask import request


def request_payload() -> dict:
    """
    JSON body, or the form fields of a multipart request.

    Form values that hold JSON arrays/objects (e.g. `items`) are decoded so
    services see the same shape either way.
    """
    if request.is_json:
        return request.get_json(silent=True) or {}

    payload = {}
    for key, value in request.form.items():
        stripped = value.strip()
        if stripped[:1] in ("[", "{"):
            try:
                payload[key] = json.loads(stripped)
                continue
            except ValueError:
                pass
        payload[key] = value
    return payload


def uploads(field: str) -> list:
    """Non-empty uploaded files under `field` (also accepts `field[]`)."""
    files = request.files.getlist(field) or request.files.getlist(f"{field}[]")
    return [f for f in files if f and f.filename]


def uploads_by_prefix(prefix: str) -> dict[str, list]:
    """Group uploads whose field name starts with `prefix` (e.g. items.0.photos)."""
    grouped: dict[str, list] = {}
    for key in request.files:
        if key.startswith(prefix):
            name = key[:-2] if key.endswith("[]") else key
            grouped.setdefault(name, []).extend(f for f in request.files.getlist(key) if f and f.filename)
    return grouped
