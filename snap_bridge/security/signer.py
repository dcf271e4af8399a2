# ============================================================================
# SNAP Bank Bridge v1.0.0
# Signature Engine - Asymmetric (RSA) and Symmetric (HMAC-SHA512)
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Signs and verifies every exchange with the bank
#
# SOVEREIGN MANDATE:
#   - Key material loaded once, explicitly, before the signer exists
#   - Secrets and signatures NEVER appear in logs
#   - Symmetric verification uses hmac.compare_digest (constant time)
#   - A mismatch returns False; only a broken verifier raises
#
# Signature Formats:
#   asymmetric  = base64(RSA-PKCS1v15-SHA256(private_key, clientId|timestamp))
#   symmetric   = base64(HMAC-SHA512(secret,
#                   METHOD:canonicalURL:token:bodyDigest:timestamp))
#
# Error Codes:
#   - SNAP-KEY-001: Key file missing, malformed or not RSA
#   - SNAP-SIG-001: Signing primitive failed
#   - SNAP-SIG-002: Signature is not valid base64
#   - SNAP-CFG-001: Verification requested without a public key
#
# ============================================================================

import base64
import binascii
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from snap_bridge.errors import ConfigurationError, CryptographicError, KeyLoadError, SigningError
from snap_bridge.security.canonicalizer import Body, canonical_body_digest, canonicalize_relative_url

logger = logging.getLogger(__name__)


# ============================================================================
# Key Material
# ============================================================================

@dataclass(frozen=True)
class KeyMaterial:
    """Loaded RSA key pair. The public key belongs to the counterparty."""
    private_key: rsa.RSAPrivateKey
    public_key: Optional[rsa.RSAPublicKey] = None


def _read_pem(path: str, label: str) -> bytes:
    if not path:
        raise KeyLoadError(f"{label} path is not configured")
    if not os.path.isfile(path):
        raise KeyLoadError(f"{label} file not found | path={path}")
    try:
        with open(path, "rb") as handle:
            return handle.read()
    except OSError as e:
        raise KeyLoadError(f"{label} file unreadable | path={path}") from e


def load_private_key(path: str) -> rsa.RSAPrivateKey:
    """
    Load an RSA private key from a PKCS#1 or PKCS#8 PEM file.

    Raises:
        KeyLoadError: Missing file, bad PEM or non-RSA key
    """
    pem = _read_pem(path, "Private key")
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"Private key PEM could not be parsed | path={path}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(
            f"Private key is not RSA | path={path} | type={type(key).__name__}"
        )
    return key


def load_public_key(path: str) -> rsa.RSAPublicKey:
    """Load an RSA public key from a PKIX (SubjectPublicKeyInfo) PEM file."""
    pem = _read_pem(path, "Public key")
    try:
        key = serialization.load_pem_public_key(pem)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"Public key PEM could not be parsed | path={path}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyLoadError(
            f"Public key is not RSA | path={path} | type={type(key).__name__}"
        )
    return key


def load_key_material(
    private_key_path: str,
    public_key_path: Optional[str] = None
) -> KeyMaterial:
    """Load both halves of the key material. Fatal on any failure."""
    try:
        private_key = load_private_key(private_key_path)
        public_key = load_public_key(public_key_path) if public_key_path else None
    except KeyLoadError as e:
        logger.error(f"[{e.error_code}] Key material load failed | reason={e.message}")
        raise

    logger.info(
        f"[SNAP-SEC] Key material loaded | "
        f"private_key_bits={private_key.key_size} | "
        f"public_key_loaded={public_key is not None}"
    )
    return KeyMaterial(private_key=private_key, public_key=public_key)


# ============================================================================
# Signer
# ============================================================================

class SnapSigner:
    """
    SNAP Signature Engine.

    Holds the loaded key material and the shared client secret. Every
    operation is pure given that state.

    Example Usage:
        signer = SnapSigner.from_paths(
            client_id="partner-01",
            client_secret=secret,
            private_key_path="keys/private.pem",
            public_key_path="keys/bank_public.pem",
        )
        signature = signer.create_asymmetric_signature(timestamp)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        key_material: KeyMaterial
    ) -> None:
        if not client_id:
            raise ConfigurationError("client_id is required for signing")
        self.client_id = client_id
        self._client_secret = client_secret or ""
        self._keys = key_material

    @classmethod
    def from_paths(
        cls,
        client_id: str,
        client_secret: str,
        private_key_path: str,
        public_key_path: Optional[str] = None
    ) -> "SnapSigner":
        return cls(client_id, client_secret, load_key_material(private_key_path, public_key_path))

    @property
    def has_public_key(self) -> bool:
        return self._keys.public_key is not None

    def reload_keys(self, private_key_path: str, public_key_path: Optional[str] = None) -> None:
        """
        Replace key material after an explicit reconfiguration.

        The current keys stay in place if the new ones fail to load.
        """
        self._keys = load_key_material(private_key_path, public_key_path)

    # ------------------------------------------------------------------------
    # Asymmetric
    # ------------------------------------------------------------------------

    def create_asymmetric_signature(self, timestamp: str) -> str:
        """
        Sign clientId|timestamp with RSA PKCS#1 v1.5 over SHA-256.

        Returns:
            Base64 signature for the X-SIGNATURE header
        """
        payload = f"{self.client_id}|{timestamp}".encode("utf-8")
        try:
            raw = self._keys.private_key.sign(payload, padding.PKCS1v15(), hashes.SHA256())
        except (ValueError, TypeError) as e:
            logger.error(f"[SNAP-SIG-001] Asymmetric signing failed | error={type(e).__name__}")
            raise SigningError("RSA signing failed") from e

        logger.debug(
            f"[SNAP-SEC] Asymmetric signature created | "
            f"client_id={self.client_id} | timestamp={timestamp} | signature=[REDACTED]"
        )
        return base64.b64encode(raw).decode("ascii")

    def verify_asymmetric_signature(self, timestamp: str, client_key: str, signature: str) -> bool:
        """
        Verify a counterparty's clientKey|timestamp signature.

        Returns:
            True on match, False on mismatch

        Raises:
            ConfigurationError: No counterparty public key was loaded
            CryptographicError: Signature is not valid base64
        """
        if self._keys.public_key is None:
            raise ConfigurationError(
                "Counterparty public key not loaded; asymmetric verification unavailable"
            )

        raw = _decode_signature(signature)
        payload = f"{client_key}|{timestamp}".encode("utf-8")
        try:
            self._keys.public_key.verify(raw, payload, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            logger.info(
                f"[SNAP-SEC] Asymmetric signature mismatch | "
                f"client_key={client_key} | timestamp={timestamp}"
            )
            return False
        return True

    # ------------------------------------------------------------------------
    # Symmetric
    # ------------------------------------------------------------------------

    @staticmethod
    def string_to_sign(
        method: str,
        relative_url: str,
        token: str,
        body: Body,
        timestamp: str
    ) -> str:
        """METHOD:canonicalURL:token:bodyDigest:timestamp"""
        return ":".join((
            method.upper(),
            canonicalize_relative_url(relative_url),
            token or "",
            canonical_body_digest(body),
            timestamp,
        ))

    def create_symmetric_signature(
        self,
        method: str,
        relative_url: str,
        token: str,
        body: Body,
        timestamp: str,
        secret: Optional[Union[str, bytes]] = None
    ) -> str:
        """
        HMAC-SHA512 over the string-to-sign, base64 encoded.

        Args:
            secret: Shared secret; defaults to this client's secret
        """
        key = _secret_bytes(self._client_secret if secret is None else secret)
        message = self.string_to_sign(method, relative_url, token, body, timestamp)
        digest = hmac.new(key, message.encode("utf-8"), hashlib.sha512).digest()

        logger.debug(
            f"[SNAP-SEC] Symmetric signature created | "
            f"method={method.upper()} | url={relative_url} | signature=[REDACTED]"
        )
        return base64.b64encode(digest).decode("ascii")

    def verify_symmetric_signature(
        self,
        method: str,
        relative_url: str,
        token: str,
        body: Body,
        timestamp: str,
        signature: str,
        secret: Optional[Union[str, bytes]] = None
    ) -> bool:
        """Recompute and compare in constant time."""
        expected = self.create_symmetric_signature(
            method, relative_url, token, body, timestamp, secret=secret
        )
        return hmac.compare_digest(expected.encode("ascii"), (signature or "").encode("utf-8"))


def _secret_bytes(secret: Union[str, bytes]) -> bytes:
    if isinstance(secret, bytes):
        return secret
    return secret.encode("utf-8")


def _decode_signature(signature: str) -> bytes:
    try:
        return base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning("[SNAP-SIG-002] Signature is not valid base64")
        raise CryptographicError("Signature is not valid base64") from e
