"""
Tag colors.

System tags have fixed colors. Every other tag gets a random pastel color
once, when it is first stored; after that the stored color is reused and
never regenerated.
"""

import colorsys
import random
import re
from typing import Mapping, Optional

from .types import SystemTag

SYSTEM_TAG_COLORS: dict[str, str] = {
    SystemTag.DONE.value: "#4CAF50",         # green
    SystemTag.IN_PROGRESS.value: "#FFC107",  # yellow
    SystemTag.NEW.value: "#2196F3",          # blue
    SystemTag.MISSING.value: "#F44336",      # red
}

_HEX_COLOR_RE = re.compile(r'^#[0-9A-Fa-f]{6}$')

_rng = random.Random()


def is_hex_color(value: Optional[str]) -> bool:
    """True for '#RRGGBB' strings."""
    return bool(value) and bool(_HEX_COLOR_RE.match(value))


def hsv_to_hex(hue: float, saturation: float, value: float) -> str:
    """Convert HSV (hue in degrees) to an uppercase '#RRGGBB' string.

    Channels are truncated, not rounded.
    """
    r, g, b = colorsys.hsv_to_rgb((hue % 360.0) / 360.0, saturation, value)
    return "#{:02X}{:02X}{:02X}".format(int(r * 255), int(g * 255), int(b * 255))


def pastel_color(rng: Optional[random.Random] = None) -> str:
    """Random pastel color.

    Hue is uniform in [0, 360), saturation in [0.5, 0.8), value in [0.7, 0.9).
    Pass a seeded ``random.Random`` for deterministic output.
    """
    rng = rng or _rng
    hue = rng.random() * 360.0
    saturation = 0.5 + rng.random() * 0.3
    value = 0.7 + rng.random() * 0.2
    return hsv_to_hex(hue, saturation, value)


def default_color(name: str, rng: Optional[random.Random] = None) -> str:
    """Canonical color for a system tag, a fresh pastel color otherwise."""
    if SystemTag.contains(name):
        return SYSTEM_TAG_COLORS[str(name)]
    return pastel_color(rng)


def resolve_color(
    name: str,
    existing_colors: Mapping[str, Optional[str]],
    rng: Optional[random.Random] = None,
) -> str:
    """
    Pick the color to store for a tag.

    System tags always get their canonical color. Other tags keep the
    color already stored for them; a new pastel color is generated only
    when none is stored (absent, NULL or empty).

    Args:
        name: Tag name
        existing_colors: Stored colors by tag name
        rng: Random source for new colors

    Returns:
        '#RRGGBB' color string
    """
    if SystemTag.contains(name):
        return SYSTEM_TAG_COLORS[str(name)]
    stored = existing_colors.get(name)
    if stored:
        return stored
    return pastel_color(rng)
