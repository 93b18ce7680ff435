# server/main.py - Candy Maze signaling and relay server
import argparse
import asyncio
import json
import os
from urllib.parse import parse_qs, urlparse

import websockets

from candymaze.errors import BadRequest, RoomError
from .relay import relay_hub
from .room_manager import room_manager


def request_path(websocket, path=None):
    """Works with websockets versions that pass (websocket, path) or only (websocket)"""
    if path:
        return path
    legacy = getattr(websocket, "path", None)
    if legacy:
        return legacy
    request = getattr(websocket, "request", None)
    return getattr(request, "path", "") or ""


async def _reply(websocket, request_id, **fields):
    await websocket.send(json.dumps({"type": "response", "id": request_id, "ok": True, **fields}))


async def _reply_error(websocket, request_id, error: RoomError):
    await websocket.send(json.dumps({
        "type": "error",
        "id": request_id,
        "code": error.code,
        "message": error.message,
    }))


async def dispatch(websocket, request):
    """Run one signaling operation and return the response fields"""
    op = request.get("op")
    if op == "createRoom":
        room = await room_manager.create_room(websocket, request.get("name") or "Player 1")
        return {"roomCode": room.code, "playerId": "player1", "room": room.to_dict()}
    if op == "joinRoom":
        code = str(request.get("code") or "").strip()
        if not code:
            raise BadRequest("Room code is required")
        room = await room_manager.join_room(websocket, code, request.get("name") or "Player 2")
        return {"roomCode": room.code, "playerId": "player2", "room": room.to_dict()}
    if op == "setOffer":
        await room_manager.set_offer(websocket, request.get("signal"))
    elif op == "setAnswer":
        await room_manager.set_answer(websocket, request.get("signal"))
    elif op == "addIceCandidate":
        await room_manager.add_ice_candidate(websocket, request.get("candidate"))
    elif op == "setReady":
        await room_manager.set_ready(websocket)
    elif op == "switchRoles":
        await room_manager.switch_roles(websocket)
    elif op == "disconnect":
        await room_manager.disconnect(websocket)
    elif op == "deleteRoom":
        await room_manager.delete_room(websocket)
    else:
        raise BadRequest(f"Unknown op: {op!r}")
    return {}


async def handle_signaling(websocket):
    async for message in websocket:
        try:
            request = json.loads(message)
        except json.JSONDecodeError:
            print("[SVR] Invalid JSON received from client")
            await _reply_error(websocket, None, BadRequest("Invalid JSON"))
            continue
        if not isinstance(request, dict):
            await _reply_error(websocket, None, BadRequest("Request must be an object"))
            continue

        request_id = request.get("id")
        try:
            fields = await dispatch(websocket, request)
            await _reply(websocket, request_id, **fields)
        except RoomError as e:
            print(f"[SVR] {request.get('op')} failed: {e.code} ({e.message})")
            await _reply_error(websocket, request_id, e)
        except websockets.ConnectionClosed:
            raise
        except Exception as e:
            print(f"[SVR] Error handling {request.get('op')}: {e}")
            await _reply_error(websocket, request_id, BadRequest(str(e)))


async def handle_client(websocket, path=None):
    """Route a new connection: ``/relay?token=...`` pairs peers, anything else is signaling"""
    parsed = urlparse(request_path(websocket, path))
    try:
        if parsed.path.rstrip("/").endswith("/relay"):
            token = (parse_qs(parsed.query).get("token", [None])[0] or "").strip()
            if not token:
                await websocket.send(json.dumps({"type": "error", "code": "bad_request",
                                                 "message": "Relay token is required"}))
                return
            await relay_hub.attach(token, websocket)
            return

        print("[SVR] Signaling client connected")
        await handle_signaling(websocket)
    except websockets.ConnectionClosedOK:
        print("[SVR] Client disconnected normally")
    except websockets.ConnectionClosedError as e:
        print(f"[SVR] Client disconnected with error: {e}")
    except Exception as e:
        print(f"[SVR] Unexpected error in handle_client: {e}")
    finally:
        await room_manager.remove_client(websocket)


async def status_reporter(interval=30):
    """Periodically report server status"""
    try:
        while True:
            await asyncio.sleep(interval)
            stats = room_manager.get_room_stats()
            if stats["total_players"] > 0 or relay_hub.active_pairs:
                print("=== SERVER STATUS ===")
                print(f"Active Rooms: {stats['active_rooms']}")
                print(f"Connected Players: {stats['total_players']}")
                print(f"Relay Pairs: {relay_hub.active_pairs}")
                for room in stats["rooms"]:
                    print(f"  Room {room['room_code']}: {room['connected']}/{room['max_players']} "
                          f"connected, {room['status']}, round {room['round']}")
                print("=====================")
    except asyncio.CancelledError:
        pass


async def main(host: str = "0.0.0.0", port: int = 8765):
    print("Candy Maze signaling server")
    await room_manager.start()
    status_task = asyncio.create_task(status_reporter())
    try:
        async with websockets.serve(handle_client, host, port):
            print(f"[SVR] Running on ws://localhost:{port} (relay at /relay?token=...)")
            await asyncio.Event().wait()
    finally:
        status_task.cancel()
        await room_manager.stop()
        print("[SVR] Server stopped")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Candy Maze signaling server")
    parser.add_argument("--host", default=os.getenv("CANDY_SERVER_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CANDY_SERVER_PORT", "8765")),
                        help="Port to bind the signaling server on")
    parser.add_argument("--max-age", type=float, default=None,
                        help="Seconds before an abandoned room code may be reused")
    args = parser.parse_args()
    if args.max_age is not None:
        room_manager.max_age = args.max_age
    try:
        asyncio.run(main(host=args.host, port=args.port))
    except KeyboardInterrupt:
        print("\nServer stopped")
