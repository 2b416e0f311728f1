"""Tests for the session registry and session tokens (backend.stores.sessions)."""

from __future__ import annotations

import pytest

from backend.stores.sessions import SessionRegistry, SessionTokens


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSessionRegistry:
    def test_establish_and_lookup(self) -> None:
        registry = SessionRegistry()
        registry.establish("sid-1", "admin")

        assert registry.is_authenticated("sid-1") is True
        assert registry.username_for("sid-1") == "admin"
        assert len(registry) == 1

    def test_unknown_connection(self) -> None:
        registry = SessionRegistry()

        assert registry.is_authenticated("nope") is False
        assert registry.username_for("nope") is None

    def test_revoke(self) -> None:
        registry = SessionRegistry()
        registry.establish("sid-1", "admin")

        revoked = registry.revoke("sid-1")

        assert revoked is not None and revoked.username == "admin"
        assert registry.is_authenticated("sid-1") is False
        assert registry.revoke("sid-1") is None

    def test_connections_snapshot(self) -> None:
        registry = SessionRegistry()
        registry.establish("a", "u1")
        registry.establish("b", "u2")

        snapshot = registry.connections()
        registry.revoke("a")

        assert sorted(snapshot) == ["a", "b"]
        assert registry.connections() == ["b"]


class TestSessionTokens:
    def test_issue_and_verify(self) -> None:
        tokens = SessionTokens("secret")
        assert tokens.verify(tokens.issue("admin")) == "admin"

    def test_username_with_colon(self) -> None:
        tokens = SessionTokens("secret")
        assert tokens.verify(tokens.issue("a:b")) == "a:b"

    def test_other_secret_rejected(self) -> None:
        token = SessionTokens("secret").issue("admin")
        assert SessionTokens("other").verify(token) is None

    def test_tampered_payload_rejected(self) -> None:
        tokens = SessionTokens("secret")
        payload, signature = tokens.issue("admin").split(".")
        forged = SessionTokens("attacker").issue("root").split(".")[0]

        assert tokens.verify(f"{forged}.{signature}") is None
        assert tokens.verify(f"{payload}.{signature}") == "admin"

    @pytest.mark.parametrize("token", [None, 123, "", "no-dot", "abc.def", "é.ü"])
    def test_malformed_tokens(self, token: object) -> None:
        assert SessionTokens("secret").verify(token) is None

    def test_expiry(self) -> None:
        clock = FakeClock()
        tokens = SessionTokens("secret", ttl_seconds=3600, clock=clock)
        token = tokens.issue("admin")

        clock.now += 3599
        assert tokens.verify(token) == "admin"

        clock.now += 2
        assert tokens.verify(token) is None

    def test_zero_ttl_never_expires(self) -> None:
        clock = FakeClock()
        tokens = SessionTokens("secret", ttl_seconds=0, clock=clock)
        token = tokens.issue("admin")

        clock.now += 10 * 365 * 24 * 3600

        assert tokens.verify(token) == "admin"

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            SessionTokens("")
