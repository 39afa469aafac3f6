"""End-to-end tests for the moderation lifecycle.

Covers the full path through HTTP and the ``/ws`` push channel:
    1. An item submitted with no moderator connected stays unclaimed; the
       first moderator to connect receives it.
    2. Two queued items go to the first moderator; a second moderator joining
       afterwards receives nothing (assigned work is never reshuffled).
    3. Approving an item removes it from the owner's view and pushes the new
       public collection to viewers.
    4. A moderator leaving hands its items, oldest first, to the one left.
    5. A restart rebuilds the pending registry from storage.

Design notes:
    - ``TestClient`` is used as a context manager so the application's
      startup hook runs and HTTP requests and WebSocket sessions share one
      event loop.
    - Moderator ids come from a deterministic factory.
    - Storage is a fresh ``tmp_path`` per test.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from modqueue.api.main import create_app
from modqueue.config import AppConfig

_KEY = "integration-key"
_AUTH = {"X-Moderator-Key": _KEY}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_client(storage_dir: Path) -> TestClient:
    config = AppConfig(storage_dir=storage_dir, moderator_key=_KEY)
    return TestClient(create_app(config, id_factory=iter(["mod_A", "mod_B", "mod_C"]).__next__))


def _submit(client: TestClient, caption: str = "caption") -> str:
    response = client.post(
        "/submissions",
        files={"image": ("photo.jpg", b"\xff\xd8jpeg", "image/jpeg")},
        data={"caption": caption},
    )
    assert response.status_code == 201, response.text
    return str(response.json()["item_id"])


def _identify_moderator(ws: Any) -> tuple[str, list[dict[str, Any]]]:
    ws.send_json({"type": "moderator", "key": _KEY})
    assigned = ws.receive_json()
    assert assigned["type"] == "assignedId"
    view = ws.receive_json()
    return str(assigned["id"]), list(view["pendingImages"])


def _url(item_id: str) -> str:
    return f"/media/pending/{item_id}"


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_item_waits_for_first_moderator(tmp_path: Path) -> None:
    with _make_client(tmp_path) as client:
        item_id = _submit(client)
        assert client.get("/status").json()["unclaimed"] == 1

        with client.websocket_connect("/ws") as ws:
            moderator_id, view = _identify_moderator(ws)

        assert moderator_id == "mod_A"
        assert view == [{"url": _url(item_id), "ownerId": "mod_A"}]


def test_joining_moderator_does_not_take_assigned_work(tmp_path: Path) -> None:
    with _make_client(tmp_path) as client:
        first_id = _submit(client)
        second_id = _submit(client)

        with client.websocket_connect("/ws") as ws_a:
            _, view_a = _identify_moderator(ws_a)
            assert [entry["url"] for entry in view_a] == [_url(first_id), _url(second_id)]

            with client.websocket_connect("/ws") as ws_b:
                _, view_b = _identify_moderator(ws_b)
                assert view_b == []

                status = client.get("/status").json()
                assert status["loads"] == {"mod_A": 2, "mod_B": 0}

                # the next submission goes to the idle moderator
                third_id = _submit(client)
                assert ws_b.receive_json() == {
                    "pendingImages": [{"url": _url(third_id), "ownerId": "mod_B"}]
                }


def test_approval_reaches_owner_and_viewers(tmp_path: Path) -> None:
    with _make_client(tmp_path) as client:
        item_id = _submit(client)

        with client.websocket_connect("/ws") as viewer:
            viewer.send_json({"type": "viewer"})
            assert viewer.receive_json() == {"images": []}

            with client.websocket_connect("/ws") as moderator:
                _, view = _identify_moderator(moderator)
                assert view == [{"url": _url(item_id), "ownerId": "mod_A"}]

                response = client.post(
                    "/moderation/approve", json={"imagePath": view[0]["url"]}, headers=_AUTH
                )
                assert response.status_code == 200

                assert moderator.receive_json() == {"pendingImages": []}
                assert viewer.receive_json() == {"images": [f"/media/public/{item_id}"]}

        assert (tmp_path / "public" / item_id).exists()
        assert not (tmp_path / "pending" / item_id).exists()


def test_departing_moderator_hands_items_over_in_order(tmp_path: Path) -> None:
    with _make_client(tmp_path) as client:
        with client.websocket_connect("/ws") as ws_n:
            with client.websocket_connect("/ws") as ws_m:
                _identify_moderator(ws_m)
                ids = [_submit(client) for _ in range(3)]
                for _ in ids:
                    ws_m.receive_json()
                _, view_n = _identify_moderator(ws_n)
                assert view_n == []

            handed_over = ws_n.receive_json()["pendingImages"]

        assert handed_over == [{"url": _url(item_id), "ownerId": "mod_B"} for item_id in ids]


def test_restart_restores_pending_items(tmp_path: Path) -> None:
    with _make_client(tmp_path) as client:
        item_ids = [_submit(client), _submit(client)]

    with _make_client(tmp_path) as restarted:
        status = restarted.get("/status").json()
        assert status["pending"] == 2
        assert status["unclaimed"] == 2

        with restarted.websocket_connect("/ws") as ws:
            _, view = _identify_moderator(ws)

    # restored items keep submission order
    assert [entry["url"] for entry in view] == [_url(item_id) for item_id in item_ids]
