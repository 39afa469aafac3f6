"""Tests for the ``/ws`` push channel.

Driven through ``TestClient.websocket_connect`` inside the same client
context as the HTTP calls, so both share one event loop and one registry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from modqueue.api.main import create_app
from modqueue.api.websocket import handle_frame
from modqueue.config import AppConfig
from modqueue.distribution.broadcaster import UpdateBroadcaster
from modqueue.distribution.registry import PendingRegistry
from modqueue.distribution.sessions import ModeratorSessionManager, SessionRole
from modqueue.store.artifacts import LocalArtifactStore


def _make_app(tmp_path: Path, **overrides: Any) -> Any:
    values: dict[str, Any] = {"storage_dir": tmp_path}
    values.update(overrides)
    return create_app(AppConfig(**values), id_factory=iter(["mod_a", "mod_b"]).__next__)


@pytest.fixture()
def client(tmp_path: Path) -> Iterator[TestClient]:
    with TestClient(_make_app(tmp_path)) as test_client:
        yield test_client


def _submit(client: TestClient) -> str:
    response = client.post(
        "/submissions",
        files={"image": ("x.jpg", b"jpeg", "image/jpeg")},
        data={"caption": "caption"},
    )
    assert response.status_code == 201
    return str(response.json()["item_id"])


class TestProtocol:
    def test_ping_is_answered(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    @pytest.mark.parametrize("frame", ["not json", "{}", '{"type": ""}', '{"type": "dance"}', "[1]"])
    def test_bad_frames_are_ignored(self, client: TestClient, frame: str) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_text(frame)
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_moderator_receives_id_then_queued_items(self, client: TestClient) -> None:
        item_id = _submit(client)
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "moderator"})
            assert ws.receive_json() == {"type": "assignedId", "id": "mod_a"}
            assert ws.receive_json() == {
                "pendingImages": [{"url": f"/media/pending/{item_id}", "ownerId": "mod_a"}]
            }

    def test_legacy_admin_type_accepted(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "admin"})
            assert ws.receive_json()["type"] == "assignedId"
            assert ws.receive_json() == {"pendingImages": []}

    def test_viewer_receives_collection(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "viewer"})
            assert ws.receive_json() == {"images": []}

    def test_second_identification_is_ignored(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "viewer"})
            ws.receive_json()
            ws.send_json({"type": "moderator"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
        assert client.get("/status").json()["moderators"] == 0

    def test_disconnect_hands_items_to_remaining_moderator(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as second:
            with client.websocket_connect("/ws") as first:
                first.send_json({"type": "moderator"})
                first.receive_json()
                first.receive_json()
                second.send_json({"type": "moderator"})
                assert second.receive_json() == {"type": "assignedId", "id": "mod_b"}
                assert second.receive_json() == {"pendingImages": []}

                item_id = _submit(client)
                assert first.receive_json()["pendingImages"][0]["ownerId"] == "mod_a"

            assert second.receive_json() == {
                "pendingImages": [{"url": f"/media/pending/{item_id}", "ownerId": "mod_b"}]
            }


class TestModeratorKey:
    def test_missing_key_is_rejected(self, tmp_path: Path) -> None:
        with TestClient(_make_app(tmp_path, moderator_key="k")) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "moderator"})
                assert ws.receive_json() == {"type": "error", "error": "unauthorized"}
                ws.send_json({"type": "moderator", "key": "k"})
                assert ws.receive_json() == {"type": "assignedId", "id": "mod_a"}


class TestKeepalive:
    def test_silent_client_is_closed(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path, ping_interval_seconds=0.05, max_missed_pings=2)
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "moderator"})
                ws.receive_json()
                ws.receive_json()
                with pytest.raises(WebSocketDisconnect) as excinfo:
                    ws.receive_json()
                assert excinfo.value.code == 1001
            assert client.get("/status").json()["moderators"] == 0


class TestHandleFrame:
    """Direct dispatch tests without a transport."""

    class _Channel:
        def __init__(self) -> None:
            self.sent: list[dict[str, Any]] = []

        async def send_json(self, data: Any) -> None:
            self.sent.append(data)

    def _manager(self, tmp_path: Path) -> ModeratorSessionManager:
        registry = PendingRegistry()
        return ModeratorSessionManager(
            registry, UpdateBroadcaster(registry, LocalArtifactStore(tmp_path))
        )

    def test_client_alias_registers_viewer(self, tmp_path: Path) -> None:
        manager = self._manager(tmp_path)
        channel = self._Channel()
        session = manager.open(channel)

        asyncio.run(handle_frame(manager, session, '{"type": "client"}'))

        assert session.role is SessionRole.VIEWER
        assert channel.sent == [{"images": []}]

    def test_wrong_key_leaves_session_unidentified(self, tmp_path: Path) -> None:
        manager = self._manager(tmp_path)
        session = manager.open(self._Channel())

        asyncio.run(
            handle_frame(manager, session, '{"type": "moderator", "key": "bad"}', moderator_key="k")
        )

        assert session.role is SessionRole.UNIDENTIFIED
        assert manager.moderator_ids() == []
