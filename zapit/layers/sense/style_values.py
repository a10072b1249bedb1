"""Helpers for CSS values coming from computed styles."""

import re

_CHANNEL = re.compile(r"\d+")


def rgb_to_hex(rgb: str) -> str:
    """
    Convert ``rgb(255, 0, 0)`` to ``#ff0000``.

    Transparent, empty and unparseable values map to white, the
    colour-input default.
    """
    if not rgb or rgb in ("rgba(0, 0, 0, 0)", "transparent"):
        return "#ffffff"
    channels = _CHANNEL.findall(rgb)
    if len(channels) < 3:
        return "#ffffff"
    return "#" + "".join(f"{min(int(c), 255):02x}" for c in channels[:3])
