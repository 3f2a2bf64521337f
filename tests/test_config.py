"""Tests for config loading and API tokens."""

import hashlib
import hmac

import pytest

from server import auth
from server.config import load_config, set_client_token, write_default_config


def test_default_config_roundtrip(tmp_path):
    path = tmp_path / "config.ini"
    write_default_config(path, remote_url="http://library.local:8282/", user_id="user-1", secret="abc")

    config = load_config(path)

    assert config.server_port == 8282
    assert config.api.auth_enabled
    assert config.client.remote_url == "http://library.local:8282"
    assert config.client.user_id == "user-1"
    assert config.sync.max_attempts == 5
    assert config.sync.auto_sync_delay_seconds == 2.0


def test_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.ini")


def test_set_client_token_keeps_other_settings(tmp_path):
    path = tmp_path / "config.ini"
    write_default_config(path, remote_url="http://127.0.0.1:8282", user_id="user-1")

    set_client_token(path, "tok-123")
    config = load_config(path)

    assert config.client.token == "tok-123"
    assert config.client.user_id == "user-1"
    assert not config.api.auth_enabled


def test_max_attempts_has_a_floor(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[sync]\nmax_attempts = 0\n")
    assert load_config(path).sync.max_attempts == 1


def test_token_roundtrip():
    token = auth.create_token("user-1", "secret")
    assert auth.verify_token(token, "secret") == "user-1"
    assert auth.verify_token(token, "other-secret") is None
    assert auth.verify_token("garbage", "secret") is None


def test_expired_token_is_rejected():
    token = auth.create_token("user-1", "secret", max_age_days=-1)
    assert auth.verify_token(token, "secret") is None


def test_bearer_token_parsing():
    assert auth.bearer_token("Bearer abc") == "abc"
    assert auth.bearer_token("bearer  abc ") == "abc"
    assert auth.bearer_token("Basic abc") is None
    assert auth.bearer_token(None) is None


def signed(payload_bytes, secret="secret"):
    sig = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
    return f"{auth._b64_encode(payload_bytes)}.{auth._b64_encode(sig)}"


@pytest.mark.parametrize(
    "payload",
    [b"[]", b'"user-1"', b'{"u": "user-1", "e": "9999999999"}', b'{"u": "", "e": 9999999999}', b"{not json"],
)
def test_signed_token_with_bad_payload_is_rejected(payload):
    assert auth.verify_token(signed(payload), "secret") is None


def test_unsigned_payload_is_never_parsed():
    forged = f"{auth._b64_encode(b'[]')}.abc"
    assert auth.verify_token(forged, "secret") is None
    assert auth.verify_token("e30.é", "secret") is None
