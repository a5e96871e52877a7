"""Conditional-request helpers for cached JSON listings."""
import hashlib
import json


def render_json(payload) -> bytes:
    """Deterministic JSON body; the ETag is computed over exactly these bytes."""
    return json.dumps(payload, separators=(",", ":")).encode()


def make_etag(body: bytes) -> str:
    return f'W/"{hashlib.sha256(body).hexdigest()}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """True when the ``If-None-Match`` header names *etag* (or ``*``)."""
    if not if_none_match:
        return False
    candidates = {tag.strip() for tag in if_none_match.split(",")}
    return "*" in candidates or etag in candidates
