from __future__ import annotations

import hashlib
from typing import Dict, Mapping, Optional, Set, Tuple

from .models import LayerStyle
from .utils.logging import get_logger

logger = get_logger(__name__)


def _rgb_to_hex(rgb: Tuple[int, int, int]) -> str:
    r, g, b = rgb
    return f"#{max(0, min(255, r)):02x}{max(0, min(255, g)):02x}{max(0, min(255, b)):02x}"


# Deterministic color from code string; returns (R,G,B) 0-255
def color_from_code(code: Optional[str]) -> Tuple[int, int, int]:
    s = (code or "UNK").encode("utf-8")
    h = hashlib.sha1(s).hexdigest()
    r = 60 + (int(h[0:2], 16) % 156)
    g = 60 + (int(h[2:4], 16) % 156)
    b = 60 + (int(h[4:6], 16) % 156)
    return (r, g, b)


def hashed_style(category: Optional[str]) -> LayerStyle:
    """Stable per-category style for tables without an explicit fallback."""
    color = _rgb_to_hex(color_from_code(category))
    return LayerStyle(color=color, fillColor=color, fillOpacity=0.7, weight=2)


def solid_style(color: str, fill_opacity: float = 0.7, weight: float = 2) -> LayerStyle:
    return LayerStyle(color=color, fillColor=color, fillOpacity=fill_opacity, weight=weight)


class StyleTable:
    """Category to style lookup with an explicit fallback.

    ``lookup`` reports whether the category matched, and the first miss
    for each category is logged so unexpected values in the data show up
    instead of silently borrowing another category's colours.
    """

    def __init__(self, styles: Mapping[str, LayerStyle], fallback: Optional[LayerStyle] = None):
        self.styles: Dict[str, LayerStyle] = dict(styles)
        self.fallback = fallback
        self._reported: Set[Optional[str]] = set()

    def lookup(self, category: Optional[str]) -> Tuple[LayerStyle, bool]:
        style = self.styles.get(category) if category is not None else None
        if style is not None:
            return style, True

        if category not in self._reported:
            self._reported.add(category)
            logger.warning(
                "No style for category; using fallback",
                extra={'category': category, 'fallback': 'explicit' if self.fallback else 'hashed'}
            )

        if self.fallback is not None:
            return self.fallback, False
        return hashed_style(category), False

    def style_for(self, category: Optional[str]) -> LayerStyle:
        return self.lookup(category)[0]

    def unmatched(self) -> Set[Optional[str]]:
        """Categories that have fallen back to the fallback style so far."""
        return set(self._reported)
