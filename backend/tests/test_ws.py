"""WebSocket protocol: subscribe/unsubscribe bookkeeping, replay and live events."""

import pytest
from fastapi.testclient import TestClient

from main import create_app
from transport import NullTransport


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        c.post("/topics", json={"name": "orders"})
        yield c


def _subscribe(ws, topic="orders", client_id="s1", **extra):
    ws.send_json({"type": "subscribe", "topic": topic, "client_id": client_id, "request_id": "r1", **extra})


def test_ping(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "ping", "request_id": "p1"})
        assert ws.receive_json()["type"] == "pong"


@pytest.mark.parametrize("frame", ["not json", '"a string"', '{"type": "dance"}'])
def test_bad_frames(client, frame):
    with client.websocket_connect("/ws") as ws:
        ws.send_text(frame)
        resp = ws.receive_json()
        assert resp["type"] == "error"
        assert resp["error"]["code"] == "BAD_REQUEST"


def test_subscribe_requires_client_id(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "subscribe", "topic": "orders"})
        assert ws.receive_json()["error"]["code"] == "BAD_REQUEST"


def test_subscribe_to_missing_topic(client):
    with client.websocket_connect("/ws") as ws:
        _subscribe(ws, topic="ghost")
        resp = ws.receive_json()
        assert resp["error"]["code"] == "TOPIC_NOT_FOUND"
        assert resp["topic"] == "ghost"


def test_subscribe_counts_and_blocks_delete(client):
    with client.websocket_connect("/ws") as ws:
        _subscribe(ws)
        ack = ws.receive_json()
        assert ack["type"] == "ack"
        assert ack["subscribers"] == 1
        assert client.get("/topics").json() == {"topics": [{"name": "orders", "subscribers": 1}]}
        assert client.get("/health").json()["subscribers"] == 1

        resp = client.delete("/topics/orders")
        assert resp.status_code == 409
        assert resp.json()["status"] == "has_subscribers"
        assert resp.json()["subscribers"] == 1

        ws.send_json({"type": "unsubscribe", "topic": "orders", "client_id": "s1"})
        assert ws.receive_json()["subscribers"] == 0

    assert client.delete("/topics/orders").status_code == 200


def test_resubscribe_same_client_is_one_subscriber(client):
    with client.websocket_connect("/ws") as ws:
        _subscribe(ws)
        ws.receive_json()
        _subscribe(ws)
        assert ws.receive_json()["subscribers"] == 1


def test_live_event_after_http_publish(client):
    with client.websocket_connect("/ws") as ws:
        _subscribe(ws)
        ws.receive_json()

        client.post("/publish", json={"topic": "orders", "message": {"id": "m1", "payload": {"x": 1}}})
        event = ws.receive_json()

        assert event["type"] == "event"
        assert event["channel"] == "topic-orders"
        assert event["event"] == "event-message"
        assert event["data"]["id"] == "m1"
        assert event["data"]["payload"] == {"x": 1}
        assert event["data"]["timestamp"]


def test_subscribe_replays_last_n(client):
    for i in range(1, 4):
        client.post("/publish", json={"topic": "orders", "message": {"id": f"msg-{i}", "payload": i}})

    with client.websocket_connect("/ws") as ws:
        _subscribe(ws, last_n=2)
        frames = [ws.receive_json() for _ in range(3)]

    ack = next(f for f in frames if f["type"] == "ack")
    events = [f["data"]["id"] for f in frames if f["type"] == "event"]
    assert ack["replayed"] == 2
    assert events == ["msg-2", "msg-3"]


def test_replay_larger_than_subscriber_queue_arrives_whole(client):
    for i in range(1, 101):
        client.post("/publish", json={"topic": "orders", "message": {"id": f"msg-{i}", "payload": i}})

    with client.websocket_connect("/ws") as ws:
        _subscribe(ws, last_n=100)
        frames = [ws.receive_json() for _ in range(101)]

    ack = next(f for f in frames if f["type"] == "ack")
    events = [f["data"]["id"] for f in frames if f["type"] == "event"]
    assert ack["replayed"] == 100
    assert events == [f"msg-{i}" for i in range(1, 101)]
    assert not [f for f in frames if f["type"] == "error"]


def test_subscribe_with_zero_last_n_skips_replay(client):
    client.post("/publish", json={"topic": "orders", "message": {"id": "msg-1", "payload": 1}})
    with client.websocket_connect("/ws") as ws:
        _subscribe(ws, last_n=0)
        ack = ws.receive_json()
    assert ack["type"] == "ack"
    assert "replayed" not in ack


@pytest.mark.parametrize("last_n", ["lots", 2.7, -1])
def test_subscribe_rejects_bad_last_n(client, last_n):
    with client.websocket_connect("/ws") as ws:
        _subscribe(ws, last_n=last_n)
        assert ws.receive_json()["error"]["code"] == "BAD_REQUEST"
    assert client.get("/topics").json()["topics"][0]["subscribers"] == 0


def test_publish_over_websocket(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "publish", "topic": "orders", "request_id": "r9",
                      "message": {"id": "m1", "payload": {"amount": 9.99}}})
        ack = ws.receive_json()
        assert ack["type"] == "ack"
        assert ack["message_id"] == "m1"
        assert ack["broadcast"] is True

        ws.send_json({"type": "publish", "topic": "ghost", "message": {"payload": 1}})
        assert ws.receive_json()["error"]["code"] == "TOPIC_NOT_FOUND"

        ws.send_json({"type": "publish", "topic": "orders", "message": {"id": "m2"}})
        assert ws.receive_json()["error"]["code"] == "INVALID_INPUT"

    assert client.get("/stats").json()["topics"]["orders"]["messages"] == 1


def test_control_channel_announces_topics(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "subscribe", "channel": "control-topics", "client_id": "watcher"})
        ack = ws.receive_json()
        assert ack["topic"] == "control-topics"

        client.post("/topics", json={"name": "payments"})
        event = ws.receive_json()
        assert event["channel"] == "control-topics"
        assert event["event"] == "topic_created"
        assert event["data"]["topic"] == "payments"

    # control subscriptions are not topic subscribers
    assert client.get("/health").json()["subscribers"] == 0


def test_subscribe_without_live_delivery():
    with TestClient(create_app(transport=NullTransport())) as client:
        client.post("/topics", json={"name": "orders"})
        with client.websocket_connect("/ws") as ws:
            _subscribe(ws)
            assert ws.receive_json()["error"]["code"] == "NOT_CONFIGURED"
