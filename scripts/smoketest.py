# scripts/smoketest.py
# Run against a live server:  python -m codecollab.main  then  python scripts/smoketest.py
from __future__ import annotations

import asyncio
import json
import sys
import uuid

import websockets


def frame(ftype: str, **payload) -> str:
    return json.dumps({"type": ftype, "payload": payload})


async def recv_type(ws, ftype: str, limit: int = 20) -> dict:
    for _ in range(limit):
        msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=3))
        if msg.get("type") == ftype:
            return msg
    raise AssertionError(f"never saw {ftype}")


async def user_connect(uri: str):
    """Open a WS and read the server-assigned connection id."""
    ws = await websockets.connect(uri, open_timeout=3)
    hello = await recv_type(ws, "connection-established")
    return ws, hello["payload"]["userId"]


async def run(uri: str):
    room = uuid.uuid4().hex[:8]

    alice, alice_id = await user_connect(uri)
    bob, bob_id = await user_connect(uri)

    await alice.send(frame("join-room", roomId=room, language="python", username="alice"))
    state = await recv_type(alice, "room-state")
    assert state["payload"]["isHost"], state

    await bob.send(frame("join-room", roomId=room, username="bob"))
    await recv_type(bob, "room-state")

    # Bob watches Alice, then Alice types
    await bob.send(frame("view-user-code", roomId=room, targetUserId=alice_id))
    await recv_type(bob, "code-update")
    await alice.send(frame("code-change", roomId=room, code="print('hi')"))
    update = await recv_type(bob, "code-update")
    assert update["payload"] == {"ownerId": alice_id, "code": "print('hi')"}, update

    print(f"Smoke test OK: room {room}, edit by {alice_id} reached viewer {bob_id}.")

    await alice.close()
    await bob.close()


if __name__ == "__main__":
    asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else "ws://127.0.0.1:3000/ws"))
