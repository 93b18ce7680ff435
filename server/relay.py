# server/relay.py - pairs two peer sockets by token and proxies frames between them
import asyncio
import json
from typing import Dict

import websockets

RELAY_READY = json.dumps({"type": "relay_ready"})


async def bidirectional_proxy(a_ws, b_ws):
    async def a2b():
        async for msg in a_ws:
            await b_ws.send(msg)

    async def b2a():
        async for msg in b_ws:
            await a_ws.send(msg)

    done, pending = await asyncio.wait(
        {asyncio.create_task(a2b()), asyncio.create_task(b2a())},
        return_when=asyncio.FIRST_COMPLETED,
    )
    for task in pending:
        task.cancel()
    for task in done:
        exc = task.exception()
        if exc is not None and not isinstance(exc, websockets.ConnectionClosed):
            print(f"[Relay] Proxy error: {exc}")


class RelayHub:
    """First socket for a token waits; the second one completes the pair"""

    def __init__(self):
        self.waiting: Dict[str, object] = {}
        self.active_pairs = 0

    async def attach(self, token, websocket):
        partner = self.waiting.pop(token, None)
        if partner is None:
            self.waiting[token] = websocket
            print(f"[Relay] Waiting for partner on token {token}")
            try:
                await websocket.wait_closed()
            finally:
                if self.waiting.get(token) is websocket:
                    del self.waiting[token]
            return

        print(f"[Relay] Paired sockets on token {token}")
        self.active_pairs += 1
        try:
            await asyncio.gather(websocket.send(RELAY_READY), partner.send(RELAY_READY))
            await bidirectional_proxy(websocket, partner)
        except websockets.ConnectionClosed:
            pass
        finally:
            self.active_pairs -= 1
            # closing one side releases the partner's wait_closed()
            await asyncio.gather(websocket.close(), partner.close(), return_exceptions=True)
            print(f"[Relay] Pair on token {token} closed")


relay_hub = RelayHub()
