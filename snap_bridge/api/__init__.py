from snap_bridge.api.ingress import IngressVerifier, InboundRequest, VerificationResult, parse_rfc3339

__all__ = ["IngressVerifier", "InboundRequest", "VerificationResult", "parse_rfc3339"]
