# ============================================================================
# SNAP Bank Bridge v1.0.0
# Request Canonicalizer - Byte-Exact Signing Input
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Turns a relative URL and a request body into the exact byte form
#          the bank hashes. A single differing byte means a silent rejection.
#
# Canonical URL:
#   path   -> percent-encode all but A-Z a-z 0-9 - _ . ~ /  (uppercase hex)
#   query  -> pairs sorted by (name, value) byte-wise, each re-encoded with
#             ? = & additionally left unescaped, joined with &
#
# Canonical body digest:
#   lowercase hex SHA-256 of the JSON body with insignificant whitespace
#   removed. Key order and number spelling are preserved as sent.
#
# ============================================================================

import hashlib
import json
from typing import Any, List, Tuple, Union
from urllib.parse import parse_qsl, quote, unquote, urlsplit

# quote() never escapes A-Z a-z 0-9 - _ . ~ so only the extras are listed
PATH_SAFE = "/"
QUERY_PAIR_SAFE = "?=&"

JSON_WHITESPACE = frozenset(" \t\n\r")

EMPTY_BODY_DIGEST = hashlib.sha256(b"").hexdigest()

Body = Union[None, bytes, bytearray, str, dict, list]


def canonicalize_relative_url(raw_url: str) -> str:
    """
    Canonicalize a relative URL for signing.

    Args:
        raw_url: Path with optional query, e.g. "/va/payment?b=2&a=1"

    Returns:
        Canonical path plus "?query" when the query is non-empty
    """
    parts = urlsplit(raw_url)
    path = quote(unquote(parts.path), safe=PATH_SAFE)

    query = canonicalize_query(parts.query)
    if query:
        return f"{path}?{query}"
    return path


def canonicalize_query(raw_query: str) -> str:
    """Sort and re-encode query pairs; ties on name break by value."""
    if not raw_query:
        return ""

    pairs: List[Tuple[str, str]] = parse_qsl(raw_query, keep_blank_values=True)
    pairs.sort(key=lambda pair: (pair[0].encode("utf-8"), pair[1].encode("utf-8")))

    return "&".join(
        quote(f"{name}={value}", safe=QUERY_PAIR_SAFE)
        for name, value in pairs
    )


def minify_json(raw: Union[bytes, bytearray, str]) -> bytes:
    """
    Strip whitespace outside JSON string literals.

    The input is scanned rather than re-serialized so that the bytes which
    survive are exactly the bytes the peer sent.
    """
    text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw

    out = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
            out.append(ch)
        elif ch not in JSON_WHITESPACE:
            out.append(ch)

    return "".join(out).encode("utf-8")


def serialize_body(body: Any) -> bytes:
    """
    Produce the minified wire bytes for a body.

    Outbound callers send these exact bytes and sign the digest of them.
    """
    if body is None:
        return b""
    if isinstance(body, (bytes, bytearray, str)):
        return minify_json(body)
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonical_body_digest(raw_body: Body) -> str:
    """
    Lowercase hex SHA-256 of the minified body.

    None and empty bodies hash as a zero-length byte sequence.
    """
    payload = serialize_body(raw_body)
    if not payload:
        return EMPTY_BODY_DIGEST
    return hashlib.sha256(payload).hexdigest()
