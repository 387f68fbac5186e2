from codecollab.protocol.messages import parse_request
from codecollab.protocol.types import *
from codecollab.realtime.coordinator import SessionCoordinator


# ---------- helpers ----------
def send(coord, conn, type_, **payload):
    return coord.handle(conn, type_, parse_request(type_, payload))


def frames_for(deliveries, conn, type_=None):
    return [
        d.frame for d in deliveries
        if conn in d.targets and (type_ is None or d.frame["type"] == type_)
    ]


def targets_of(deliveries, type_):
    out = set()
    for d in deliveries:
        if d.frame["type"] == type_:
            out.update(d.targets)
    return out


def make_room(*conns, room="r1", language="python"):
    """First conn creates the room, the rest join it."""
    coord = SessionCoordinator()
    for conn in conns:
        coord.connect(conn)
    send(coord, conns[0], JOIN_ROOM, roomId=room, language=language, username=conns[0].upper())
    for conn in conns[1:]:
        send(coord, conn, JOIN_ROOM, roomId=room, username=conn.upper())
    return coord


# ---------- joining ----------
def test_join_creates_default_state():
    coord = SessionCoordinator()
    coord.connect("a")
    out = send(coord, "a", JOIN_ROOM, roomId="r1", language="python", username="Alice")

    room = coord.rooms["r1"]
    assert list(room.participants) == ["a"]
    assert room.host_id == "a"
    assert room.code_of("a") == "# Start coding here..."
    assert room.viewing("a") == "a"

    [state] = frames_for(out, "a", ROOM_STATE)
    assert state["payload"]["isHost"] is True
    assert state["payload"]["language"] == "python"
    assert state["payload"]["code"] == "# Start coding here..."
    assert state["payload"]["viewingUserId"] == "a"
    assert state["payload"]["participants"] == [{"id": "a", "name": "Alice", "isHost": True}]


def test_join_unknown_room_without_language_fails():
    coord = SessionCoordinator()
    coord.connect("a")
    out = send(coord, "a", JOIN_ROOM, roomId="nope", username="Alice")

    assert coord.rooms == {}
    [err] = frames_for(out, "a", ERROR)
    assert err["payload"]["code"] == ERR_ROOM_NOT_FOUND
    assert coord.registry.room_of("a") is None


def test_second_join_ignores_language_and_notifies_others():
    coord = make_room("a")
    coord.connect("b")
    out = send(coord, "b", JOIN_ROOM, roomId="r1", language="java", username="Bob")

    room = coord.rooms["r1"]
    assert room.language == "python"
    assert room.host_id == "a"
    assert room.code_of("b") == "# Start coding here..."
    assert room.viewing("b") == "b"

    [state] = frames_for(out, "b", ROOM_STATE)
    assert state["payload"]["isHost"] is False
    assert targets_of(out, USER_JOINED) == {"a"}
    [joined] = frames_for(out, "a", USER_JOINED)
    assert [p["id"] for p in joined["payload"]["participants"]] == ["a", "b"]


def test_join_other_room_leaves_current_one():
    coord = make_room("a", "b")
    out = send(coord, "b", JOIN_ROOM, roomId="r2", language="cpp", username="Bob")

    assert not coord.rooms["r1"].has_participant("b")
    assert coord.rooms["r2"].host_id == "b"
    assert coord.registry.room_of("b") == "r2"
    assert targets_of(out, USER_LEFT) == {"a"}


def test_rejoin_same_room_does_not_duplicate():
    coord = make_room("a", "b")
    send(coord, "b", JOIN_ROOM, roomId="r1", username="Bobby")
    room = coord.rooms["r1"]
    assert list(room.participants) == ["a", "b"]
    assert room.participants["b"] == "Bobby"
    assert coord.total_sessions == 2


# ---------- the A/B scenario ----------
def test_switch_view_then_edit_reaches_both_viewers():
    coord = make_room("a", "b")

    out = send(coord, "b", VIEW_USER_CODE, roomId="r1", targetUserId="a")
    [push] = frames_for(out, "b", CODE_UPDATE)
    assert push["payload"] == {"ownerId": "a", "code": "# Start coding here..."}
    [notice] = frames_for(out, "a", VIEW_STATE_CHANGED)
    assert notice["payload"] == {"userId": "b", "viewingUserId": "a"}
    # informational only
    assert coord.rooms["r1"].viewing("a") == "a"

    out = send(coord, "a", CODE_CHANGE, roomId="r1", code="print(1)")
    assert targets_of(out, CODE_UPDATE) == {"a", "b"}
    assert frames_for(out, "b", CODE_UPDATE)[0]["payload"] == {"ownerId": "a", "code": "print(1)"}
    assert coord.rooms["r1"].code_of("b") == "# Start coding here..."


# ---------- edit visibility ----------
def test_edit_only_reaches_viewers_of_target():
    coord = make_room("a", "b", "c")
    send(coord, "c", VIEW_USER_CODE, roomId="r1", targetUserId="b")

    out = send(coord, "b", CODE_CHANGE, roomId="r1", code="b code")
    assert targets_of(out, CODE_UPDATE) == {"b", "c"}
    assert frames_for(out, "a") == []


def test_non_host_cannot_edit_unviewed_buffer():
    coord = make_room("a", "b", "c")
    room = coord.rooms["r1"]
    before = dict(room.buffers)

    # explicit target it is not viewing
    assert send(coord, "b", CODE_CHANGE, roomId="r1", code="x", targetUserId="c") == []
    # own buffer while viewing someone else
    send(coord, "b", VIEW_USER_CODE, roomId="r1", targetUserId="a")
    assert send(coord, "b", CODE_CHANGE, roomId="r1", code="x") == []
    assert room.buffers == before


def test_viewer_may_edit_viewed_buffer():
    coord = make_room("a", "b")
    send(coord, "b", VIEW_USER_CODE, roomId="r1", targetUserId="a")
    out = send(coord, "b", CODE_CHANGE, roomId="r1", code="from b", targetUserId="a")
    assert coord.rooms["r1"].code_of("a") == "from b"
    assert targets_of(out, CODE_UPDATE) == {"a", "b"}


def test_host_override_edits_any_buffer():
    coord = make_room("a", "b", "c")
    send(coord, "c", VIEW_USER_CODE, roomId="r1", targetUserId="b")

    out = send(coord, "a", CODE_CHANGE, roomId="r1", code="fixed", targetUserId="b")
    assert coord.rooms["r1"].code_of("b") == "fixed"
    # the host is still looking at its own buffer, so it is not in the fan-out
    assert targets_of(out, CODE_UPDATE) == {"b", "c"}


def test_edit_counts_lines():
    coord = make_room("a")
    send(coord, "a", CODE_CHANGE, roomId="r1", code="a\nb\nc")
    assert coord.stats()["totalLinesOfCode"] == 3


def test_switch_view_to_unknown_buffer_is_ignored():
    coord = make_room("a")
    assert send(coord, "a", VIEW_USER_CODE, roomId="r1", targetUserId="ghost") == []
    assert coord.rooms["r1"].viewing("a") == "a"


# ---------- leave / teardown ----------
def test_leave_keeps_buffer_for_host_inspection():
    coord = make_room("a", "b")
    send(coord, "b", CODE_CHANGE, roomId="r1", code="b's work")
    out = send(coord, "b", LEAVE_ROOM, roomId="r1")

    room = coord.rooms["r1"]
    assert not room.has_participant("b")
    assert "b" not in room.view_state
    assert room.code_of("b") == "b's work"
    [left] = frames_for(out, "a", USER_LEFT)
    assert left["payload"]["userId"] == "b"
    assert [p["id"] for p in left["payload"]["participants"]] == ["a"]

    out = send(coord, "a", VIEW_USER_CODE, roomId="r1", targetUserId="b")
    assert frames_for(out, "a", CODE_UPDATE)[0]["payload"]["code"] == "b's work"


def test_leave_by_non_member_is_noop():
    coord = make_room("a")
    coord.connect("z")
    assert send(coord, "z", LEAVE_ROOM, roomId="r1") == []
    assert send(coord, "z", LEAVE_ROOM, roomId="missing") == []


def test_room_torn_down_after_everyone_leaves():
    conns = ["a", "b", "c", "d"]
    coord = make_room(*conns)
    send(coord, "c", VIEW_USER_CODE, roomId="r1", targetUserId="a")

    send(coord, "b", LEAVE_ROOM, roomId="r1")
    coord.disconnect("a")
    send(coord, "d", LEAVE_ROOM, roomId="r1")
    assert "r1" in coord.rooms
    coord.disconnect("c")

    assert "r1" not in coord.rooms
    assert coord.stats()["activeUsers"] == 0


def test_host_leaving_passes_host():
    coord = make_room("a", "b", "c")
    out = send(coord, "a", LEAVE_ROOM, roomId="r1")
    assert coord.rooms["r1"].host_id == "b"
    assert targets_of(out, HOST_CHANGED) == {"b", "c"}
    [left] = frames_for(out, "b", USER_LEFT)
    assert left["payload"]["participants"][0] == {"id": "b", "name": "B", "isHost": True}


def test_disconnect_resets_viewers_of_departed():
    coord = make_room("a", "b")
    send(coord, "b", CODE_CHANGE, roomId="r1", code="mine")
    send(coord, "b", VIEW_USER_CODE, roomId="r1", targetUserId="a")

    out = coord.disconnect("a")
    room = coord.rooms["r1"]
    assert room.viewing("b") == "b"
    assert frames_for(out, "b", CODE_UPDATE)[0]["payload"] == {"ownerId": "b", "code": "mine"}
    assert room.host_id == "b"
    assert not coord.registry.is_live("a")


def test_disconnect_after_leave_resets_viewers_of_departed():
    coord = make_room("a", "b", "c")
    send(coord, "c", CODE_CHANGE, roomId="r1", code="c code")
    send(coord, "c", VIEW_USER_CODE, roomId="r1", targetUserId="b")
    send(coord, "b", LEAVE_ROOM, roomId="r1")
    # still watching the retained buffer after an explicit leave
    assert coord.rooms["r1"].viewing("c") == "b"

    out = coord.disconnect("b")
    room = coord.rooms["r1"]
    assert room.view_state == {"a": "a", "c": "c"}
    assert frames_for(out, "c", CODE_UPDATE)[0]["payload"] == {"ownerId": "c", "code": "c code"}
    assert targets_of(out, CODE_UPDATE) == {"c"}

    out = send(coord, "c", CODE_CHANGE, roomId="r1", code="c again")
    assert room.code_of("c") == "c again"


def test_disconnect_after_room_switch_resets_viewers_in_old_room():
    coord = make_room("a", "b", "c")
    send(coord, "c", VIEW_USER_CODE, roomId="r1", targetUserId="b")
    send(coord, "b", JOIN_ROOM, roomId="r2", language="python", username="B")
    assert coord.registry.buffer_rooms_of("b") == {"r1", "r2"}

    out = coord.disconnect("b")
    assert "r2" not in coord.rooms
    assert coord.rooms["r1"].viewing("c") == "c"
    assert targets_of(out, CODE_UPDATE) == {"c"}


def test_buffer_index_dropped_with_room():
    coord = make_room("a", "b")
    send(coord, "b", LEAVE_ROOM, roomId="r1")
    assert coord.registry.buffer_rooms_of("b") == {"r1"}
    send(coord, "a", END_ROOM, roomId="r1")
    assert coord.registry.buffer_rooms_of("a") == set()
    assert coord.registry.buffer_rooms_of("b") == set()
    assert coord.disconnect("b") == []


# ---------- host-only actions ----------
def test_end_room_by_non_host_is_noop():
    coord = make_room("a", "b")
    assert send(coord, "b", END_ROOM, roomId="r1") == []
    assert list(coord.rooms["r1"].participants) == ["a", "b"]


def test_end_room_by_host_clears_everything():
    coord = make_room("a", "b", "c")
    send(coord, "b", JOIN_VOICE, roomId="r1")
    out = send(coord, "a", END_ROOM, roomId="r1")

    assert coord.rooms == {}
    assert targets_of(out, ROOM_ENDED) == {"a", "b", "c"}
    for conn in ("a", "b", "c"):
        assert coord.registry.room_of(conn) is None
    assert coord.voice.member_ids("r1") == []
    assert coord.registry.voice_rooms_of("b") == set()


def test_end_room_tells_voice_only_members():
    coord = make_room("a", "b", "c")
    send(coord, "c", JOIN_VOICE, roomId="r1")
    send(coord, "c", LEAVE_ROOM, roomId="r1")
    assert coord.voice.contains("r1", "c")

    out = send(coord, "a", END_ROOM, roomId="r1")
    assert targets_of(out, ROOM_ENDED) == {"a", "b", "c"}
    assert coord.registry.voice_rooms_of("c") == set()


def test_change_language_host_only():
    coord = make_room("a", "b")
    assert send(coord, "b", CHANGE_LANGUAGE, roomId="r1", newLanguage="java") == []
    assert coord.rooms["r1"].language == "python"

    out = send(coord, "a", CHANGE_LANGUAGE, roomId="r1", newLanguage="java")
    assert coord.rooms["r1"].language == "java"
    assert targets_of(out, LANGUAGE_CHANGED) == {"a", "b"}
    assert coord.rooms["r1"].code_of("a") == "# Start coding here..."


# ---------- chat ----------
def test_chat_goes_to_others_with_server_side_name():
    coord = make_room("a", "b", "c")
    out = send(coord, "b", CHAT_MESSAGE, roomId="r1", message="hi <all>", username="spoofed")
    assert targets_of(out, RECEIVE_MESSAGE) == {"a", "c"}
    payload = frames_for(out, "a", RECEIVE_MESSAGE)[0]["payload"]
    assert payload["sender"] == "b"
    assert payload["username"] == "B"
    assert payload["message"] == "hi &lt;all&gt;"


def test_chat_rejects_empty_message():
    coord = make_room("a", "b")
    out = send(coord, "b", CHAT_MESSAGE, roomId="r1", message="   ")
    assert targets_of(out, RECEIVE_MESSAGE) == set()
    assert frames_for(out, "b", ERROR)[0]["payload"]["code"] == ERR_BAD_PAYLOAD


def test_chat_rejection_echoes_req_id():
    coord = make_room("a", "b")
    request = parse_request(CHAT_MESSAGE, {"roomId": "r1", "message": ""})
    [err] = coord.handle("b", CHAT_MESSAGE, request, req_id="req-7")
    assert err.targets == ("b",)
    assert err.frame["req_id"] == "req-7"
    assert err.frame["payload"]["code"] == ERR_BAD_PAYLOAD


# ---------- voice ----------
def test_join_voice_triggers_existing_peers():
    coord = make_room("a", "b", "c")
    send(coord, "a", JOIN_VOICE, roomId="r1")
    out = send(coord, "b", JOIN_VOICE, roomId="r1")

    [roster] = frames_for(out, "b", VOICE_PARTICIPANTS)
    assert roster["payload"]["participants"] == [["a", "A"], ["b", "B"]]
    assert targets_of(out, VOICE_PARTICIPANT_JOINED) == {"a", "c"}
    assert targets_of(out, USER_JOINED_VOICE) == {"a"}
    assert frames_for(out, "a", USER_JOINED_VOICE)[0]["payload"] == {"userId": "b", "username": "B"}


def test_join_voice_unknown_room_is_noop():
    coord = make_room("a")
    assert send(coord, "a", JOIN_VOICE, roomId="elsewhere") == []


def test_voice_roster_independent_of_room():
    coord = make_room("a", "b", "c")
    send(coord, "b", JOIN_VOICE, roomId="r1")
    send(coord, "c", JOIN_VOICE, roomId="r1")

    send(coord, "b", LEAVE_ROOM, roomId="r1")
    assert coord.voice.contains("r1", "b")

    out = send(coord, "c", LEAVE_VOICE, roomId="r1")
    assert coord.rooms["r1"].has_participant("c")
    assert not coord.voice.contains("r1", "c")
    assert targets_of(out, VOICE_PARTICIPANT_LEFT) == {"a"}

    coord.disconnect("b")
    assert not coord.voice.contains("r1", "b")
    assert not coord.rooms["r1"].has_participant("b")


def test_leave_voice_when_absent_is_noop():
    coord = make_room("a")
    assert send(coord, "a", LEAVE_VOICE, roomId="r1") == []


def test_signal_relay_is_directed_and_opaque():
    coord = make_room("a", "b", "c")
    blob = {"sdp": {"type": "offer", "sdp": "v=0..."}}
    out = send(coord, "a", VOICE_OFFER, target="b", payload=blob)
    assert len(out) == 1
    assert out[0].targets == ("b",)
    assert out[0].frame == {"type": VOICE_OFFER, "payload": {"payload": blob, "senderId": "a"}}

    out = send(coord, "b", ICE_CANDIDATE, target="a", payload="cand")
    assert out[0].frame["type"] == ICE_CANDIDATE


def test_signal_to_dead_connection_is_noop():
    coord = make_room("a")
    assert send(coord, "a", VOICE_ANSWER, target="gone", payload={}) == []


# ---------- stats / misc ----------
def test_stats_subscription():
    coord = SessionCoordinator()
    coord.connect("watcher")
    out = send(coord, "watcher", GET_STATS)
    assert frames_for(out, "watcher", STATS_UPDATE)[0]["payload"] == {
        "activeUsers": 0, "totalSessions": 0, "totalLinesOfCode": 0,
    }

    coord.connect("a")
    out = send(coord, "a", JOIN_ROOM, roomId="r1", language="c", username="A")
    [update] = frames_for(out, "watcher", STATS_UPDATE)
    assert update["payload"]["activeUsers"] == 1
    assert update["payload"]["totalSessions"] == 1


def test_requests_from_unregistered_connection_are_ignored():
    coord = SessionCoordinator()
    assert send(coord, "ghost", JOIN_ROOM, roomId="r1", language="python") == []
    assert coord.rooms == {}


def test_ping():
    coord = SessionCoordinator()
    coord.connect("a")
    out = send(coord, "a", PING)
    assert out[0].frame["type"] == PONG
