"""
Slice-and-dice treemap layout for the market heat map.

Each step gives the first remaining item a share of the current rectangle
proportional to its weight among the remaining items, then continues with
the complement on the other axis. Output is a pure function of the ordered
items and the bounding rectangle.
"""

from __future__ import annotations

import colorsys
from typing import Sequence, TypeVar

import numpy as np

from ..types import HeatMapTile, Rect, WeightedItem

T = TypeVar('T')

OTHERS_SYMBOL = "Others"
COLOR_RANGE_PCT = 10.0  # +-10% maps to the full red..green range


def slice_dice(
    items: Sequence[T],
    weights: Sequence[float],
    bounds: Rect,
    horizontal: bool = True,
) -> list[tuple[T, Rect]]:
    """
    Lay out items inside bounds.

    Args:
        items: Items in layout order (caller decides the order)
        weights: Non-negative weight per item
        bounds: Rectangle to fill
        horizontal: Split axis of the first step; alternates afterwards

    Returns list of (item, rect) in input order.
    """
    if len(items) != len(weights):
        raise ValueError("items and weights must have the same length")
    if any(w < 0 for w in weights):
        raise ValueError("weights must be non-negative")

    result: list[tuple[T, Rect]] = []
    if not items:
        return result

    # Suffix sums so each step is O(1)
    remaining = np.cumsum(np.asarray(weights, dtype=float)[::-1])[::-1]

    x, y, width, height = bounds
    last = len(items) - 1
    for i, item in enumerate(items):
        if i == last:
            result.append((item, Rect(x, y, width, height)))
            break

        total = float(remaining[i])
        fraction = weights[i] / total if total > 0 else 0.0

        if horizontal:
            w = width * fraction
            result.append((item, Rect(x, y, w, height)))
            x, width = x + w, width - w
        else:
            h = height * fraction
            result.append((item, Rect(x, y, width, h)))
            y, height = y + h, height - h
        horizontal = not horizontal

    return result


def layout_items(
    items: Sequence[WeightedItem],
    bounds: Rect,
    horizontal: bool = True,
) -> list[tuple[WeightedItem, Rect]]:
    """slice_dice over WeightedItems, weights taken from the items."""
    return slice_dice(items, [item.weight for item in items], bounds, horizontal)


def collapse_tail(tiles: Sequence[HeatMapTile], top_count: int = 10) -> list[HeatMapTile]:
    """
    Keep the top_count tiles by market cap, fold the rest into "Others".

    Others carries the summed market cap and the cap-weighted average change.
    """
    ordered = sorted(tiles, key=lambda t: t.market_cap, reverse=True)
    head, tail = ordered[:top_count], ordered[top_count:]
    if not tail:
        return head

    caps = np.array([t.market_cap for t in tail], dtype=float)
    changes = np.array([t.pct_change for t in tail], dtype=float)
    total_cap = float(caps.sum())
    avg_change = float((caps * changes).sum() / total_cap) if total_cap > 0 else 0.0

    return head + [HeatMapTile(OTHERS_SYMBOL, avg_change, total_cap)]


def heat_map_layout(
    tiles: Sequence[HeatMapTile],
    bounds: Rect,
    top_count: int = 10,
) -> list[tuple[WeightedItem, Rect]]:
    """Collapse the tail and lay out by market cap, first split vertical."""
    display = collapse_tail(tiles, top_count)
    return layout_items([t.as_item() for t in display], bounds, horizontal=False)


def change_color(pct: float) -> str:
    """Map a percent change to a red..green hex colour (-10% red, +10% green)."""
    if pct != pct:  # NaN
        pct = 0.0
    capped = float(np.clip(pct, -COLOR_RANGE_PCT, COLOR_RANGE_PCT))
    t = (capped + COLOR_RANGE_PCT) / (2 * COLOR_RANGE_PCT)
    r, g, b = colorsys.hsv_to_rgb(0.33 * t, 0.8, 0.9)
    return f"#{round(r * 255):02x}{round(g * 255):02x}{round(b * 255):02x}"
