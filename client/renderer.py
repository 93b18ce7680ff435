# client/renderer.py
import pygame

from candymaze.session import FAIL, LEVEL_WIN, LOBBY
from candymaze.tiles import (
    AVATAR_MARKER, DIR_VECS, EXIT, HOUSE, ROAD, classify, from_index,
)

CELL_SIZE = 40
HUD_WIDTH = 260
AVATAR_RADIUS = 14

COLORS = {
    "background": (10, 8, 20),
    "road": (70, 70, 80),
    "exit": (40, 160, 70),
    "house": (200, 110, 30),
    "house_visited": (90, 60, 40),
    "candy": (255, 220, 60),
    "ghost": (230, 230, 255),
    "alien": (90, 230, 90),
    "ui_text": (255, 255, 255),
    "ui_background": (40, 40, 50),
    "success": (30, 140, 60),
    "fail": (170, 30, 30),
    "notice": (255, 180, 80),
}


def init(session):
    width, height = screen_size(session)
    screen = pygame.display.set_mode((width, height))
    pygame.display.set_caption("Candy Maze")
    fonts = {
        "large": pygame.font.Font(None, 40),
        "medium": pygame.font.Font(None, 26),
        "small": pygame.font.Font(None, 20),
    }
    return screen, fonts


def screen_size(session):
    widest = max((len(level.template[1:].split("\n")[0]) for level in session.levels.levels), default=10)
    tallest = max((level.template.count("\n") for level in session.levels.levels), default=10)
    return widest * CELL_SIZE + HUD_WIDTH, max(tallest * CELL_SIZE, 400)


def tile_color(char, road_tiles):
    tile = classify(char, road_tiles)
    if tile.kind == ROAD:
        return COLORS["road"]
    if tile.kind == EXIT:
        return COLORS["exit"]
    if tile.kind == HOUSE:
        return COLORS["house_visited"] if tile.visited else COLORS["house"]
    return None


def show_candy(session):
    """Only the guide knows which house has the candy"""
    mp = session.multiplayer
    return mp is not None and mp.state.is_multiplayer and mp.is_guide()


def draw_map(surface, session):
    game_map = session.map
    road_tiles = session.levels.road_tiles
    rendered = game_map.render()
    for index, char in enumerate(rendered):
        if char == "\n":
            continue
        x, y = from_index(index, game_map.width)
        rect = (x * CELL_SIZE, y * CELL_SIZE, CELL_SIZE, CELL_SIZE)
        if char == AVATAR_MARKER:
            char = game_map.base_char(index)
        color = tile_color(char, road_tiles)
        if color is not None:
            pygame.draw.rect(surface, color, rect)
        if index == session.candy_house_index and show_candy(session):
            pygame.draw.rect(surface, COLORS["candy"], rect, 3)

    pos = game_map.avatar_position()
    if pos is None:
        return
    cx = pos[0] * CELL_SIZE + CELL_SIZE // 2
    cy = pos[1] * CELL_SIZE + CELL_SIZE // 2
    character = active_character(session)
    pygame.draw.circle(surface, COLORS.get(character, COLORS["ghost"]), (cx, cy), AVATAR_RADIUS)
    dx, dy = DIR_VECS[session.facing]
    pygame.draw.line(surface, COLORS["background"], (cx, cy),
                     (cx + dx * AVATAR_RADIUS, cy + dy * AVATAR_RADIUS), 3)


def active_character(session):
    mp = session.multiplayer
    if mp is not None and mp.state.active_player_character:
        return mp.state.active_player_character
    return session.character


def hud_lines(session):
    lines = []
    if session.current_level is not None:
        lines.append(f"Level: {session.current_level + 1}")
    lines.append(f"Score: {session.score}")
    lines.append(f"Moves: {session.moves}")
    mp = session.multiplayer
    if mp is not None and mp.state.is_multiplayer:
        st = mp.state
        lines.append(f"Room: {st.room_code}")
        lines.append(f"Role: {st.role or 'waiting'}")
        if st.other_player_name:
            lines.append(f"Partner: {st.other_player_name}")
        lines.append("Link: up" if st.webrtc_connected else "Link: down")
    if session.can_interact():
        lines.append("SPACE: trick-or-treat!")
    return lines


def draw_hud(surface, session, fonts, x):
    height = surface.get_height()
    pygame.draw.rect(surface, COLORS["ui_background"], (x, 0, HUD_WIDTH, height))
    y = 20
    title = fonts["large"].render("CANDY MAZE", True, COLORS["ui_text"])
    surface.blit(title, (x + 10, y))
    y += 50
    for line in hud_lines(session):
        surface.blit(fonts["medium"].render(line, True, COLORS["ui_text"]), (x + 10, y))
        y += 28

    if session.mode == LEVEL_WIN:
        surface.blit(fonts["large"].render("LEVEL DONE!", True, COLORS["candy"]), (x + 10, y + 10))

    controls = [
        "LEFT/RIGHT: turn",
        "UP: walk to junction",
        "DOWN: walk to house",
        "WASD: single step",
        "N: next level, ESC: quit",
    ]
    y = height - 20 * len(controls) - 10
    for control in controls:
        surface.blit(fonts["small"].render(control, True, COLORS["ui_text"]), (x + 10, y))
        y += 20


def draw_overlay(surface, overlay, fonts, width):
    if not overlay.active:
        return
    color = COLORS["fail"] if overlay.type == FAIL else COLORS["success"]
    banner = pygame.Surface((width, 80))
    banner.set_alpha(200)
    banner.fill(color)
    top = surface.get_height() // 2 - 40
    surface.blit(banner, (0, top))
    text = fonts["large"].render(overlay.message or "", True, COLORS["ui_text"])
    surface.blit(text, (width // 2 - text.get_width() // 2, top + 25))


def draw_lobby(surface, session, fonts):
    lines = ["Press G to play as the ghost", "Press A to play as the alien"]
    mp = session.multiplayer
    if mp is not None and mp.state.is_multiplayer:
        lines = [f"Room {mp.state.room_code}", "Waiting for the other player..."]
    y = 80
    if session.notice:
        surface.blit(fonts["medium"].render(session.notice, True, COLORS["notice"]), (20, y))
        y += 40
    for line in lines:
        surface.blit(fonts["medium"].render(line, True, COLORS["ui_text"]), (20, y))
        y += 30


def draw(screen, session, fonts):
    """Draw one frame of the session"""
    screen.fill(COLORS["background"])
    if session.mode == LOBBY or session.map is None:
        draw_lobby(screen, session, fonts)
    else:
        map_width = session.map.width * CELL_SIZE
        draw_map(screen, session)
        draw_hud(screen, session, fonts, screen.get_width() - HUD_WIDTH)
        draw_overlay(screen, session.overlay, fonts, map_width)
    pygame.display.flip()
