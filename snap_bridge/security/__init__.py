# ============================================================================
# SNAP Bank Bridge v1.0.0
# Security Module - Canonicalization and Signatures
# ============================================================================

from snap_bridge.security.canonicalizer import (
    EMPTY_BODY_DIGEST,
    canonical_body_digest,
    canonicalize_query,
    canonicalize_relative_url,
    minify_json,
    serialize_body,
)
from snap_bridge.security.signer import (
    KeyMaterial,
    SnapSigner,
    load_key_material,
    load_private_key,
    load_public_key,
)

__all__ = [
    "EMPTY_BODY_DIGEST",
    "canonical_body_digest",
    "canonicalize_query",
    "canonicalize_relative_url",
    "minify_json",
    "serialize_body",
    "KeyMaterial",
    "SnapSigner",
    "load_key_material",
    "load_private_key",
    "load_public_key",
]
