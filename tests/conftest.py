"""
Shared fixtures for the SNAP bridge test suite.

RSA key pairs are generated once per session with cryptography and written
to PEM files, so the signer loads them exactly as it would in production.
"""

import os
import sys
import threading

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from snap_bridge.security.signer import SnapSigner, load_key_material


CLIENT_ID = "partner-client-01"
CLIENT_SECRET = "shared-secret-0123456789abcdef"
BANK_CLIENT_ID = "bank-client-77"
BANK_CLIENT_SECRET = "bank-secret-fedcba9876543210"


class InMemoryRedis:
    """Minimal thread-safe stand-in for the redis-py calls the store makes."""

    def __init__(self):
        self._lock = threading.Lock()
        self.hashes = {}
        self.strings = {}
        self.ttls = {}
        self.sets = {}

    def hget(self, key, field):
        with self._lock:
            return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        with self._lock:
            self.hashes.setdefault(key, {})[field] = value
            return 1

    def get(self, key):
        with self._lock:
            return self.strings.get(key)

    def set(self, key, value, ex=None):
        with self._lock:
            self.strings[key] = value
            self.ttls[key] = ex
            return True

    def delete(self, key):
        with self._lock:
            return int(self.strings.pop(key, None) is not None)

    def sadd(self, key, member):
        with self._lock:
            members = self.sets.setdefault(key, set())
            if member in members:
                return 0
            members.add(member)
            return 1


def _write_key_pair(directory, name, traditional=False):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_format = (
        serialization.PrivateFormat.TraditionalOpenSSL
        if traditional else serialization.PrivateFormat.PKCS8
    )
    private_path = directory / f"{name}_private.pem"
    public_path = directory / f"{name}_public.pem"
    private_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        private_format,
        serialization.NoEncryption(),
    ))
    public_path.write_bytes(key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ))
    return str(private_path), str(public_path)


@pytest.fixture(scope="session")
def key_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("keys")


@pytest.fixture(scope="session")
def partner_keys(key_dir):
    """Our key pair, private key in PKCS#8."""
    return _write_key_pair(key_dir, "partner")


@pytest.fixture(scope="session")
def bank_keys(key_dir):
    """The bank's key pair, private key in PKCS#1 (traditional OpenSSL)."""
    return _write_key_pair(key_dir, "bank", traditional=True)


@pytest.fixture
def partner_signer(partner_keys, bank_keys):
    """Our signer: signs with our key, verifies with the bank's public key."""
    private_path, _ = partner_keys
    _, bank_public_path = bank_keys
    return SnapSigner(CLIENT_ID, CLIENT_SECRET, load_key_material(private_path, bank_public_path))


@pytest.fixture
def bank_signer(bank_keys, partner_keys):
    """The bank's side of the handshake, used to forge inbound requests."""
    private_path, _ = bank_keys
    _, partner_public_path = partner_keys
    return SnapSigner(BANK_CLIENT_ID, BANK_CLIENT_SECRET,
                      load_key_material(private_path, partner_public_path))


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def credentials():
    return {
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "bank_client_id": BANK_CLIENT_ID,
        "bank_client_secret": BANK_CLIENT_SECRET,
    }
