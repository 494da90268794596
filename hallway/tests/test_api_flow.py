import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


PARTICIPANTS = ("alice", "bob", "carol")


def _add_topics(client, headers, participant_id):
    for index in range(1, 4):
        response = client.post(
            "/api/topics",
            json={"text": f"{participant_id} topic {index}"},
            headers=headers(participant_id),
        )
        assert response.status_code == 201, response.json()


def _meeting_in_ranking(client, as_participant):
    for participant_id in PARTICIPANTS:
        _add_topics(client, as_participant, participant_id)

    response = client.post(
        "/api/meetings", json={"name": "Quarterly sync"}, headers=as_participant("alice")
    )
    assert response.status_code == 201, response.json()
    meeting_id = response.json()["meeting_id"]

    for participant_id in ("bob", "carol"):
        response = client.post(
            f"/api/meetings/{meeting_id}/registration",
            headers=as_participant(participant_id),
        )
        assert response.status_code == 204

    response = client.post(
        f"/api/meetings/{meeting_id}/check-in/open", headers=as_participant("alice")
    )
    assert response.status_code == 200, response.json()
    assert response.json()["phase"] == "checking_in"

    for participant_id in PARTICIPANTS:
        response = client.post(
            f"/api/meetings/{meeting_id}/check-in", headers=as_participant(participant_id)
        )
        assert response.status_code == 200, response.json()

    response = client.post(
        f"/api/meetings/{meeting_id}/cohorts", headers=as_participant("alice")
    )
    assert response.status_code == 200, response.json()
    assert response.json()["phase"] == "cohorts_formed"

    response = client.post(
        f"/api/meetings/{meeting_id}/ranking/open", headers=as_participant("alice")
    )
    assert response.status_code == 200, response.json()
    snapshot = response.json()
    assert snapshot["phase"] == "ranking_in_progress"
    return meeting_id, snapshot["cohorts"][0]["cohort_id"]


def test_requests_without_identity_are_refused(client: TestClient):
    response = client.get("/api/topics")
    assert response.status_code == 401


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["active_meeting_locks"] == 0


def test_topic_crud(client: TestClient, as_participant):
    response = client.post(
        "/api/topics", json={"text": "Budget"}, headers=as_participant("alice")
    )
    assert response.status_code == 201
    topic_id = response.json()["topic_id"]
    client.post("/api/topics", json={"text": "Hiring"}, headers=as_participant("alice"))

    response = client.put(
        f"/api/topics/{topic_id}/preference",
        json={"preference": -5},
        headers=as_participant("alice"),
    )
    assert response.status_code == 200
    listed = client.get("/api/topics", headers=as_participant("alice")).json()["topics"]
    assert [topic["text"] for topic in listed] == ["Hiring", "Budget"]

    response = client.delete(f"/api/topics/{topic_id}", headers=as_participant("bob"))
    assert response.status_code == 403
    assert response.json()["error"] == "access_denied"

    response = client.delete(f"/api/topics/{topic_id}", headers=as_participant("alice"))
    assert response.status_code == 204


def test_full_round_resolves_meeting(client: TestClient, as_participant):
    meeting_id, cohort_id = _meeting_in_ranking(client, as_participant)

    slate = client.get(f"/api/cohorts/{cohort_id}/slate", headers=as_participant("bob"))
    assert slate.status_code == 200, slate.json()
    entries = slate.json()["entries"]
    assert len(entries) == 9
    ballot = [entry["entry_id"] for entry in entries]

    receipts = []
    for participant_id in PARTICIPANTS:
        response = client.post(
            f"/api/cohorts/{cohort_id}/ballots",
            json={"ordered_entry_ids": ballot},
            headers=as_participant(participant_id),
        )
        assert response.status_code == 200, response.json()
        receipts.append(response.json())

    assert receipts[0]["cohort_resolved"] is False
    assert receipts[-1]["cohort_resolved"] is True
    assert receipts[-1]["meeting_resolved"] is True
    assert receipts[-1]["result"]["selected_entry_ids"] == ballot[:2]

    result = client.get(f"/api/cohorts/{cohort_id}/result", headers=as_participant("carol"))
    assert result.status_code == 200
    assert sum(row["score"] for row in result.json()["scores"]) == 108

    again = client.post(f"/api/cohorts/{cohort_id}/resolve", headers=as_participant("alice"))
    assert again.status_code == 200
    assert again.json()["selected_entry_ids"] == ballot[:2]

    late = client.post(
        f"/api/cohorts/{cohort_id}/ballots",
        json={"ordered_entry_ids": ballot},
        headers=as_participant("bob"),
    )
    assert late.status_code == 409
    assert late.json()["error"] == "duplicate_submission"

    state = client.get(f"/api/meetings/{meeting_id}/state", headers=as_participant("bob"))
    assert state.json()["phase"] == "resolved"
    assert state.json()["cohorts"][0]["selected"][0]["entry_id"] == ballot[0]

    response = client.post(
        f"/api/meetings/{meeting_id}/rounds", headers=as_participant("alice")
    )
    assert response.status_code == 200
    assert response.json()["round_number"] == 2


def test_incomplete_ballot_is_rejected(client: TestClient, as_participant):
    meeting_id, cohort_id = _meeting_in_ranking(client, as_participant)
    entries = client.get(
        f"/api/cohorts/{cohort_id}/slate", headers=as_participant("alice")
    ).json()["entries"]
    ballot = [entry["entry_id"] for entry in entries]

    response = client.post(
        f"/api/cohorts/{cohort_id}/ballots",
        json={"ordered_entry_ids": ballot[:-1]},
        headers=as_participant("alice"),
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "invalid_ballot"
    assert body["missing"] == [ballot[-1]]

    state = client.get(f"/api/meetings/{meeting_id}/state", headers=as_participant("alice"))
    assert state.json()["phase"] == "ranking_in_progress"

    early = client.post(f"/api/cohorts/{cohort_id}/resolve", headers=as_participant("alice"))
    assert early.status_code == 409
    assert early.json()["error"] == "ballots_outstanding"


def test_only_organizer_moves_meeting_forward(client: TestClient, as_participant):
    response = client.post(
        "/api/meetings", json={"name": "Offsite"}, headers=as_participant("alice")
    )
    meeting_id = response.json()["meeting_id"]
    client.post(f"/api/meetings/{meeting_id}/registration", headers=as_participant("bob"))

    response = client.post(
        f"/api/meetings/{meeting_id}/check-in/open", headers=as_participant("bob")
    )
    assert response.status_code == 403

    response = client.post(
        f"/api/meetings/{meeting_id}/check-in", headers=as_participant("bob")
    )
    assert response.status_code == 409
    assert response.json()["error"] == "illegal_transition"


def test_form_cohorts_needs_three_checked_in(client: TestClient, as_participant):
    response = client.post(
        "/api/meetings", json={"name": "Offsite"}, headers=as_participant("alice")
    )
    meeting_id = response.json()["meeting_id"]
    client.post(f"/api/meetings/{meeting_id}/check-in/open", headers=as_participant("alice"))
    client.post(f"/api/meetings/{meeting_id}/check-in", headers=as_participant("alice"))

    response = client.post(
        f"/api/meetings/{meeting_id}/cohorts", headers=as_participant("alice")
    )
    assert response.status_code == 409
    assert response.json()["error"] == "insufficient_participants"


def test_meeting_listing_and_preferences(client: TestClient, as_participant):
    first = client.post(
        "/api/meetings", json={"name": "Standup"}, headers=as_participant("alice")
    ).json()["meeting_id"]
    second = client.post(
        "/api/meetings", json={"name": "Retro"}, headers=as_participant("alice")
    ).json()["meeting_id"]

    response = client.put(
        f"/api/meetings/{second}/preference",
        json={"preference": 3},
        headers=as_participant("alice"),
    )
    assert response.status_code == 204

    registered = client.get("/api/meetings/registered", headers=as_participant("alice"))
    assert registered.json()["meetings"] == [second, first]

    listed = client.get("/api/meetings", headers=as_participant("bob")).json()
    assert {item["meeting_id"] for item in listed} == {first, second}
    assert all(item["registered"] is False for item in listed)

    response = client.post("/api/meetings", json={"name": ""}, headers=as_participant("alice"))
    assert response.status_code == 422


def test_meeting_socket_acknowledges_and_answers(client: TestClient, as_participant):
    meeting_id = client.post(
        "/api/meetings", json={"name": "Live"}, headers=as_participant("alice")
    ).json()["meeting_id"]

    with client.websocket_connect(f"/ws/meetings/{meeting_id}?participantId=alice") as socket:
        ack = socket.receive_json()
        assert ack["type"] == "connection_ack"
        assert ack["payload"]["participantId"] == "alice"
        assert ack["payload"]["state"]["phase"] == "scheduled"

        socket.send_json({"type": "ping"})
        assert socket.receive_json()["type"] == "pong"

        socket.send_json({"type": "state_request"})
        state = socket.receive_json()
        assert state["type"] == "meeting_state"
        assert state["payload"]["meeting_id"] == meeting_id


def test_meeting_socket_rejects_unknown_meeting(client: TestClient):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/meetings/MTG19990101-0001") as socket:
            socket.receive_json()
