"""Deterministic request fingerprints used as cache and deduplication keys."""

import hashlib
import json
from typing import Any, Mapping, Optional


def normalize_headers(headers: Optional[Mapping[str, str]]) -> list:
    """Lower-case names, strip values, sort by name."""
    if not headers:
        return []
    return sorted((str(k).strip().lower(), str(v).strip()) for k, v in headers.items())


def canonical_body(body: Any) -> Optional[str]:
    if body is None:
        return None
    if isinstance(body, bytes):
        return hashlib.sha256(body).hexdigest()
    if isinstance(body, str):
        return body
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def compute_fingerprint(
    url: str,
    method: str = "GET",
    headers: Optional[Mapping[str, str]] = None,
    body: Any = None,
) -> str:
    """
    Hash the semantic content of a request.

    Header order and dict key order do not affect the result. The output is a
    fixed-length SHA-256 hex digest regardless of body size.

    Args:
        url: Target URL
        method: HTTP method (case-insensitive)
        headers: Request headers
        body: JSON-serializable body, raw bytes or text

    Returns:
        64-character hex digest
    """
    key_data = {
        "url": url,
        "method": method.upper(),
        "headers": normalize_headers(headers),
        "body": canonical_body(body),
    }
    encoded = json.dumps(key_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
