"""Tests for process wiring and the CLI (backend.main)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils

from backend.config import Settings
from backend.main import APP_CONTEXT, _parse_args, build_app, main
from backend.stores.credentials import verify_password


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api_key="sk-test",
        data_dir=tmp_path / "data",
        schedule_dir=tmp_path / "scheduled",
        public_dir=tmp_path / "public",
        session_path=tmp_path / "session",
        session_secret="test-secret",
    )


@pytest.fixture()
def transport() -> MagicMock:
    mock = MagicMock()
    mock.is_ready = False
    mock.run = AsyncMock()
    mock.close = AsyncMock()
    return mock


class TestParseArgs:
    def test_defaults(self) -> None:
        args = _parse_args([])
        assert args.setup is False
        assert args.hash_password is None
        assert args.username == "admin"
        assert args.port is None

    def test_flags(self) -> None:
        args = _parse_args(["--setup", "--port", "8080"])
        assert args.setup is True
        assert args.port == 8080


class TestHashPassword:
    def test_prints_credential_line(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["--hash-password", "s3cret", "--username", "maria"])

        username, stored = capsys.readouterr().out.strip().split("|")
        assert username == "maria"
        assert verify_password(stored, "s3cret")


class TestBuildApp:
    def test_prepares_storage(self, settings: Settings, transport: MagicMock) -> None:
        build_app(settings, transport=transport, completion=MagicMock())

        for name in ("users.txt", "training.txt", "prompts_log.txt", "conversations.json"):
            assert (settings.data_dir / name).exists()
        assert settings.schedule_dir.is_dir()

    def test_wires_transport_events(self, settings: Settings, transport: MagicMock) -> None:
        app = build_app(settings, transport=transport, completion=MagicMock())
        ctx = app[APP_CONTEXT]

        events = {c.args[0]: c.args[1] for c in transport.on.call_args_list}
        assert events == {
            "qr": ctx.gateway.push_qr,
            "ready": ctx.gateway.push_ready,
            "disconnected": ctx.gateway.push_disconnected,
            "message": ctx.responder.handle,
        }

    async def test_serves_dashboard(self, settings: Settings, transport: MagicMock) -> None:
        settings.public_dir.mkdir(parents=True)
        (settings.public_dir / "index.html").write_text("<h1>console</h1>", encoding="utf-8")
        app = build_app(settings, transport=transport, completion=MagicMock())

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/")
            assert resp.status == 200
            assert "console" in await resp.text()

        transport.run.assert_awaited_once()
        transport.close.assert_awaited()

    async def test_missing_dashboard(self, settings: Settings, transport: MagicMock) -> None:
        app = build_app(settings, transport=transport, completion=MagicMock())

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/")
            assert resp.status == 404
