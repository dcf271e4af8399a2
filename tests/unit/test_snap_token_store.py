"""
Unit Tests - Redis Token Store
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from snap_bridge.config import SnapConfig
from snap_bridge.errors import PersistenceTransientError
from snap_bridge.storage.token_store import (
    BANK_ICONS_KEY,
    PARTNERED_BANKS_KEY,
    RedisTokenStore,
    create_redis_client,
)


@pytest.fixture
def store(fake_redis):
    return RedisTokenStore(fake_redis, external_id_namespace="bca")


@pytest.fixture
def broken_store():
    client = MagicMock()
    for op in ("hget", "hset", "get", "set", "delete", "sadd"):
        getattr(client, op).side_effect = RedisConnectionError("connection refused")
    return RedisTokenStore(client)


class TestCredentials:

    def test_register_and_lookup(self, store):
        store.register_client("bank-01", "s3cret")
        assert store.get_client_secret("bank-01") == "s3cret"

    def test_unknown_client(self, store):
        assert store.get_client_secret("nobody") is None

    def test_secret_not_logged(self, store, caplog):
        with caplog.at_level("DEBUG"):
            store.register_client("bank-01", "s3cret-value")
        assert "s3cret-value" not in caplog.text


class TestAccessTokens:

    def test_store_sets_ttl(self, store, fake_redis):
        store.store_access_token("tok", "bank-01", 900)
        assert fake_redis.strings["access-tokens:tok"] == "bank-01"
        assert fake_redis.ttls["access-tokens:tok"] == 900

    def test_lookup(self, store):
        store.store_access_token("tok", "bank-01", 900)
        assert store.lookup_access_token("tok") == "bank-01"
        assert store.lookup_access_token("other") is None
        assert store.lookup_access_token("") is None

    def test_revoke(self, store):
        store.store_access_token("tok", "bank-01", 900)
        store.revoke_access_token("tok")
        assert store.lookup_access_token("tok") is None


class TestReplayGuard:

    def test_first_claim_wins(self, store, fake_redis):
        assert store.claim_external_id("123")
        assert not store.claim_external_id("123")
        assert fake_redis.sets["unique-external-id:bca"] == {"123"}

    def test_namespaces_are_separate(self, fake_redis):
        assert RedisTokenStore(fake_redis, "bca").claim_external_id("1")
        assert RedisTokenStore(fake_redis, "bri").claim_external_id("1")


class TestReferenceLookups:

    def test_hits_and_misses(self, store, fake_redis):
        fake_redis.hset(PARTNERED_BANKS_KEY, "014", "BCA")
        fake_redis.hset(BANK_ICONS_KEY, "014", "https://cdn.example/bca.png")
        assert store.bank_name("014") == "BCA"
        assert store.bank_icon("014") == "https://cdn.example/bca.png"
        assert store.bank_name("999") == ""

    def test_outage_falls_back_to_empty(self, broken_store):
        assert broken_store.bank_name("014") == ""
        assert broken_store.bank_icon("014") == ""


class TestOutages:

    @pytest.mark.parametrize("call", [
        lambda s: s.get_client_secret("x"),
        lambda s: s.register_client("x", "y"),
        lambda s: s.store_access_token("t", "x", 10),
        lambda s: s.lookup_access_token("t"),
        lambda s: s.revoke_access_token("t"),
        lambda s: s.claim_external_id("1"),
    ])
    def test_raises_persistence_transient(self, broken_store, call):
        with pytest.raises(PersistenceTransientError) as exc_info:
            call(broken_store)
        assert exc_info.value.error_code == "SNAP-DB-002"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    def test_timeout_is_transient(self):
        client = MagicMock()
        client.get.side_effect = RedisTimeoutError("slow")
        with pytest.raises(PersistenceTransientError):
            RedisTokenStore(client).lookup_access_token("tok")


class TestCreateRedisClient:

    def test_decodes_responses(self):
        with patch("snap_bridge.storage.token_store.redis.Redis.from_url") as from_url:
            create_redis_client("redis://cache:6379/2")
        from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=True)

    def test_from_config_uses_redis_url(self):
        config = SnapConfig(redis_url="redis://cache:6380/4")
        with patch("snap_bridge.storage.token_store.redis.Redis.from_url") as from_url:
            store = RedisTokenStore.from_config(config, external_id_namespace="bri")
        from_url.assert_called_once_with("redis://cache:6380/4", decode_responses=True)
        assert store.external_id_namespace == "bri"
