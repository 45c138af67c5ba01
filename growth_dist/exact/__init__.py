"""Exact dynamic-programming growth distributions."""

from .algebra import convolve, merge, normalize, point_distribution
from .delta import level_delta
from .engine import (
    advance, compute_exact, compute_progression, compute_promoted, extend, iterate_levels, promote
)

__all__ = [
    "convolve",
    "merge",
    "normalize",
    "point_distribution",
    "level_delta",
    "advance",
    "compute_exact",
    "compute_progression",
    "extend",
    "iterate_levels",
    "promote",
    "compute_promoted",
]
