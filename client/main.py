# client/main.py - pygame front end for Candy Maze
import argparse
import asyncio
import os

import pygame

from candymaze.errors import RoomError
from candymaze.levels import load_levels
from candymaze.multiplayer import MultiplayerCoordinator
from candymaze.session import LEVEL_WIN, LOBBY, PLAY, GameSession
from candymaze.tiles import DOWN, LEFT, RIGHT, UP
from . import renderer
from .link import MultiplayerLink
from .peer import PeerChannel
from .signaling import SignalingClient

# play-mode keys -> (session method, args)
PLAY_KEYS = {
    pygame.K_LEFT: ("turn_left", ()),
    pygame.K_RIGHT: ("turn_right", ()),
    pygame.K_UP: ("forward", ()),
    pygame.K_DOWN: ("short_forward", ()),
    pygame.K_w: ("move", (UP,)),
    pygame.K_a: ("move", (LEFT,)),
    pygame.K_s: ("move", (DOWN,)),
    pygame.K_d: ("move", (RIGHT,)),
    pygame.K_SPACE: ("interact", ()),
}

LOBBY_KEYS = {
    pygame.K_g: "ghost",
    pygame.K_a: "alien",
}


class CandyClient:
    def __init__(self, session, signaling=None):
        self.session = session
        self.signaling = signaling
        self.coordinator = None
        self.link = None
        self.running = True
        self.screen = None
        self.fonts = None
        self.clock = pygame.time.Clock()

    def init_display(self):
        """Initialize display"""
        try:
            pygame.init()
            pygame.font.init()
            if not pygame.display.get_init():
                raise pygame.error("No display available")
            self.screen, self.fonts = renderer.init(self.session)
            return True
        except pygame.error as e:
            print(f"Display initialization failed: {e}")
            return False

    def is_multiplayer(self):
        return self.coordinator is not None and self.coordinator.state.is_multiplayer

    def handle_key(self, key):
        """Apply one key press; returns the action name that ran, if any"""
        s = self.session
        if key == pygame.K_ESCAPE:
            self.running = False
            return "quit"

        if s.mode == LOBBY:
            character = LOBBY_KEYS.get(key)
            if character and not self.is_multiplayer():
                s.notice = None
                s.select_character(character)
                return "select_character"
            return None

        if s.mode == LEVEL_WIN:
            if key != pygame.K_n:
                return None
            if not self.is_multiplayer():
                s.next_level()
                return "next_level"
            if self.coordinator.is_player():
                self.coordinator.switch_roles_and_continue()
                return "switch_roles"
            return None

        if s.mode == PLAY and key in PLAY_KEYS:
            name, args = PLAY_KEYS[key]
            getattr(s, name)(*args)
            return name
        return None

    async def start_multiplayer(self, server_url, name, create=False, code=None):
        self.coordinator = MultiplayerCoordinator(self.session, signaling=self.signaling)
        self.link = MultiplayerLink(
            self.coordinator, self.signaling,
            lambda initiator: PeerChannel(server_url, initiator),
        )
        await self.signaling.connect()
        try:
            if create:
                response = await self.signaling.create_room(name)
            else:
                response = await self.signaling.join_room(code, name)
        except RoomError as e:
            print(f"[Room] {e.message}")
            self.session.notice = e.message
            self.coordinator.state.reset()
            return False
        self.link.join(response, name)
        print(f"[Room] Room code: {response['roomCode']}")
        return True

    async def game_loop(self):
        while self.running:
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    self.running = False
                elif event.type == pygame.KEYDOWN:
                    self.handle_key(event.key)
            renderer.draw(self.screen, self.session, self.fonts)
            self.clock.tick(60)
            await asyncio.sleep(0)

    async def run(self, args):
        if not self.init_display():
            return
        try:
            if args.create or args.join:
                await self.start_multiplayer(args.server, args.name, args.create, args.join)
            elif args.character:
                self.session.select_character(args.character)
            await self.game_loop()
        except ConnectionRefusedError:
            print(f"Could not connect to server at {args.server}")
        except OSError as e:
            print(f"Network error: {e}")
        finally:
            if self.is_multiplayer():
                self.coordinator.teardown("Game closed")
            if self.signaling is not None and self.signaling.connected:
                await asyncio.sleep(0.1)  # let the disconnect frame go out
                await self.signaling.close()
            pygame.quit()
            print("Game ended.")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Candy Maze client")
    parser.add_argument("--levels", default=os.getenv("CANDY_LEVELS_PATH"),
                        help="Path to a level resource file")
    parser.add_argument("--server", default=os.getenv("CANDY_SERVER_URL", "ws://localhost:8765"),
                        help="Signaling server URL")
    parser.add_argument("--name", default="Player")
    parser.add_argument("--character", choices=("ghost", "alien"),
                        help="Start single-player right away with this character")
    room = parser.add_mutually_exclusive_group()
    room.add_argument("--create", action="store_true", help="Create a two-player room")
    room.add_argument("--join", metavar="CODE", help="Join a two-player room")
    return parser.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)
    print("Candy Maze")
    print("Controls: arrows turn/walk, WASD step, SPACE trick-or-treat, ESC exit")
    session = GameSession(load_levels(args.levels))
    signaling = SignalingClient(args.server) if (args.create or args.join) else None
    await CandyClient(session, signaling).run(args)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGame interrupted.")
