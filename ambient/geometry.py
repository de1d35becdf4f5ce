"""Screen-space rectangle arithmetic.

Window bounds reported by the accessibility layer and by the window server
share one coordinate space (top-left origin, y growing downwards), so a
plain axis-aligned rectangle is all the selector needs.

Example:
    >>> focused = Rect(100, 100, 800, 600)
    >>> window = Rect(0, 0, 1920, 1080)
    >>> focused.intersection(window).area
    480000.0
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in global screen coordinates.

    Attributes:
        x (float): Left edge
        y (float): Top edge
        width (float): Horizontal extent
        height (float): Vertical extent
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return float(self.width * self.height)

    @property
    def is_degenerate(self) -> bool:
        """True for rectangles that cover no screen area."""
        return self.width <= 0 or self.height <= 0

    def intersection(self, other: "Rect") -> Optional["Rect"]:
        """Return the overlapping region, or None when the rectangles are disjoint.

        Rectangles that only share an edge have no overlap.
        """
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)

        if left < right and top < bottom:
            return Rect(left, top, right - left, bottom - top)
        return None

    def overlap_area(self, other: "Rect") -> float:
        """Intersection area in square pixels (0 if no overlap)."""
        overlap = self.intersection(other)
        return overlap.area if overlap else 0.0

    def to_region(self) -> dict:
        """Convert to an mss grab region (integer pixels)."""
        return {
            'left': int(self.x),
            'top': int(self.y),
            'width': int(self.width),
            'height': int(self.height),
        }
