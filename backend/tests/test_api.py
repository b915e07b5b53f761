import pytest
from fastapi.testclient import TestClient

from app.settings import Settings
from main import CARD_GAME_PREFIX, create_app

WS_PATH = f"{CARD_GAME_PREFIX}/ws"


@pytest.fixture()
def client():
    # long bot delay keeps timers from firing mid-test
    app = create_app(Settings(bot_response_delay_sec=30))
    with TestClient(app) as test_client:
        yield test_client


def connect(client):
    ws = client.websocket_connect(WS_PATH)
    return ws


def receive(ws, expected_type):
    message = ws.receive_json()
    assert message["type"] == expected_type, message
    return message["payload"]


def create_two_player_room(client, ws_a, ws_b):
    receive(ws_a, "connected")
    receive(ws_b, "connected")

    ws_a.send_json({"type": "create_room", "payload": {"playerName": "Alice", "playerId": "alice"}})
    created = receive(ws_a, "room_created")
    assert created["playerId"] == "alice"
    waiting = receive(ws_a, "room_state")
    assert waiting["status"] == "waiting"

    ws_b.send_json({"type": "join_room", "payload": {"roomId": created["roomId"], "playerName": "Bob", "playerId": "bob"}})
    assert receive(ws_b, "room_joined") == {"roomId": created["roomId"], "playerId": "bob"}
    for ws in (ws_a, ws_b):
        state = receive(ws, "room_state")
        assert state["status"] == "playing"
        hand = receive(ws, "round_hand")
        assert len(hand["hand"]) == 5
    return created["roomId"]


def test_health_and_empty_rooms(client):
    r = client.get(f"{CARD_GAME_PREFIX}/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "project": "cardgame"}

    rooms = client.get(f"{CARD_GAME_PREFIX}/rooms")
    assert rooms.status_code == 200
    assert rooms.json() == {"rooms": []}


def test_malformed_messages_return_errors_without_disconnect(client):
    with connect(client) as ws:
        assert receive(ws, "connected") == {"message": "ws ready"}

        ws.send_text("{not json")
        assert receive(ws, "error") == {"message": "Invalid JSON payload."}

        ws.send_json({"payload": {}})
        assert receive(ws, "error") == {"message": "Missing message type."}

        ws.send_json({"type": "shuffle"})
        assert receive(ws, "error") == {"message": "Unknown message type: shuffle"}

        ws.send_text('{"type": "shuffle", "payload": {"x": ' + "9" * 5000 + "}}")
        assert receive(ws, "error") == {"message": "Invalid JSON payload."}

        ws.send_json({"type": "create_room", "payload": {"playerName": 42}})
        assert receive(ws, "error") == {"message": "Invalid payload for create_room."}

        ws.send_json({"type": "create_room", "payload": {"playerName": "   "}})
        assert receive(ws, "error") == {"message": "Player name is required."}

        ws.send_json({"type": "join_room", "payload": {"roomId": "0000", "playerName": "Ann"}})
        assert receive(ws, "error") == {"message": "Room not found."}

        ws.send_json({"type": "play_cards", "payload": {"roomId": "0000"}})
        assert receive(ws, "error") == {"message": "Room ID and player ID are required."}


def test_start_bot_deals_hand_and_lists_room(client):
    with connect(client) as ws:
        receive(ws, "connected")
        ws.send_json({"type": "start_bot", "payload": {}})

        created = receive(ws, "room_created")
        assert created["playerId"].startswith("user_")
        state = receive(ws, "room_state")
        assert state["status"] == "playing"
        assert state["round"] == 1
        assert [p["name"] for p in state["players"]] == ["Player", "Bot"]
        assert all(p["hp"] == 10 for p in state["players"])
        hand = receive(ws, "round_hand")
        assert hand["roomId"] == created["roomId"]
        assert hand["requiredPickCount"] == 3
        assert len(hand["hand"]) == 5
        assert len(hand["deck"]) == 10
        assert len(hand["opponentDeck"]) == 10

        rooms = client.get(f"{CARD_GAME_PREFIX}/rooms").json()["rooms"]
        assert rooms == [
            {
                "roomId": created["roomId"],
                "status": "playing",
                "round": 1,
                "playersCount": 2,
                "hasBot": True,
                "players": [{"name": "Player", "isBot": False}, {"name": "Bot", "isBot": True}],
            }
        ]

        ws.send_json({"type": "start_bot", "payload": {"playerName": "Again"}})
        assert receive(ws, "error") == {"message": "Room already exists for this connection."}

        bot_id = state["players"][1]["playerId"]
        ws.send_json(
            {"type": "play_cards", "payload": {"roomId": created["roomId"], "playerId": bot_id, "picks": [0, 1, 2]}}
        )
        assert receive(ws, "error") == {"message": "Player is not bound to this connection."}


def test_create_room_honours_requested_id(client):
    with connect(client) as ws:
        receive(ws, "connected")
        ws.send_json({"type": "create_room", "payload": {"playerName": "Alice", "roomId": "4321"}})
        assert receive(ws, "room_created")["roomId"] == "4321"


def test_two_player_round_flow(client):
    with connect(client) as ws_a, connect(client) as ws_b:
        room_id = create_two_player_room(client, ws_a, ws_b)

        ws_a.send_json(
            {"type": "play_cards", "payload": {"roomId": room_id, "playerId": "alice", "round": 1, "picks": [0, 1, 2]}}
        )
        for ws in (ws_a, ws_b):
            state = receive(ws, "room_state")
            assert [p["submitted"] for p in state["players"]] == [True, False]

        ws_a.send_json(
            {"type": "play_cards", "payload": {"roomId": room_id, "playerId": "alice", "round": 1, "picks": [0, 1, 2]}}
        )
        assert receive(ws_a, "error") == {"message": "Cards already submitted."}

        ws_b.send_json(
            {"type": "play_cards", "payload": {"roomId": room_id, "playerId": "bob", "round": 2, "picks": [0, 1, 2]}}
        )
        assert receive(ws_b, "error") == {"message": "Round mismatch."}

        ws_b.send_json(
            {"type": "play_cards", "payload": {"roomId": room_id, "playerId": "bob", "round": 1, "picks": [2, 3, 4]}}
        )
        for ws in (ws_a, ws_b):
            receive(ws, "room_state")
            reveal = receive(ws, "round_reveal")
            assert (reveal["p1Id"], reveal["p2Id"]) == ("alice", "bob")
            assert len(reveal["p1"]) == len(reveal["p2"]) == 3
            result = receive(ws, "round_result")
            assert [step["index"] for step in result["steps"]] == [1, 2, 3]
            assert result["p1Hp"] == result["steps"][-1]["p1Hp"]
            state = receive(ws, "room_state")
            assert [p["submitted"] for p in state["players"]] == [False, False]

        ws_a.send_json({"type": "round_confirm", "payload": {"roomId": room_id, "playerId": "alice", "round": 1}})
        ws_b.send_json({"type": "round_confirm", "payload": {"roomId": room_id, "playerId": "bob", "round": 1}})
        for ws in (ws_a, ws_b):
            state = receive(ws, "room_state")
            assert state["round"] == 2
            hand = receive(ws, "round_hand")
            assert hand["round"] == 2
            assert len(hand["discard"]) == 5


def test_third_player_rejected_and_disconnect_frees_seat(client):
    with connect(client) as ws_a:
        with connect(client) as ws_b:
            room_id = create_two_player_room(client, ws_a, ws_b)

            with connect(client) as ws_c:
                receive(ws_c, "connected")
                ws_c.send_json({"type": "join_room", "payload": {"roomId": room_id, "playerName": "Carol"}})
                assert receive(ws_c, "error") == {"message": "Room is full."}

        state = receive(ws_a, "room_state")
        assert state["status"] == "waiting"
        assert [p["playerId"] for p in state["players"]] == ["alice"]

        rooms = client.get(f"{CARD_GAME_PREFIX}/rooms").json()["rooms"]
        assert rooms[0]["playersCount"] == 1


def test_last_human_leaving_tears_down_room(client):
    with connect(client) as ws:
        receive(ws, "connected")
        ws.send_json({"type": "create_room_bot", "payload": {"playerName": "Solo"}})
        room_id = receive(ws, "room_created")["roomId"]
        receive(ws, "room_state")
        receive(ws, "round_hand")
        # messages are handled in order, so the bot timer is armed by now
        ws.send_json({"type": "shuffle"})
        receive(ws, "error")
        room = client.app.state.registry.get(room_id)
        task = room.bot_task
        assert task is not None

    with connect(client) as other:
        # a round-trip on a new socket guarantees the earlier disconnect was processed
        receive(other, "connected")
        other.send_json({"type": "shuffle"})
        receive(other, "error")

    assert client.get(f"{CARD_GAME_PREFIX}/rooms").json() == {"rooms": []}
    assert room.closed
    assert room.bot_task is None
    assert task.cancelled()


def test_huge_card_index_answers_error_and_keeps_seat(client):
    with connect(client) as ws_a, connect(client) as ws_b:
        room_id = create_two_player_room(client, ws_a, ws_b)

        ws_a.send_json(
            {"type": "play_cards", "payload": {"roomId": room_id, "playerId": "alice", "picks": [10**400, 1, 2]}}
        )
        assert receive(ws_a, "error") == {"message": "Card index out of range."}

        ws_a.send_json({"type": "play_cards", "payload": {"roomId": room_id, "playerId": "alice", "picks": [0, 1, 2]}})
        for ws in (ws_a, ws_b):
            state = receive(ws, "room_state")
            assert state["status"] == "playing"
            assert [p["submitted"] for p in state["players"]] == [True, False]


def test_connection_cannot_act_for_another_seat(client):
    with connect(client) as ws_a, connect(client) as ws_b:
        room_id = create_two_player_room(client, ws_a, ws_b)

        ws_b.send_json({"type": "play_cards", "payload": {"roomId": room_id, "playerId": "alice", "picks": [0, 1, 2]}})
        assert receive(ws_b, "error") == {"message": "Player is not bound to this connection."}
        ws_b.send_json({"type": "rematch", "payload": {"roomId": room_id, "playerId": "alice"}})
        assert receive(ws_b, "error") == {"message": "Player is not bound to this connection."}

        room = client.app.state.registry.get(room_id)
        assert room.actions == {}
