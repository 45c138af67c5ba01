"""
Distribution algebra: convolution with cap truncation and merging.

Mass that would exceed a cap is merged into the capped value, never
discarded. Stat vectors are encoded as one mixed-radix int64 key each
(first stat most significant) so accumulation runs on flat arrays with
np.add.at / np.bincount; duplicate keys sum instead of overwriting.
"""

import math

import numpy as np
from typing import Sequence

from ..types import Distribution

# Boxes up to this many cells are accumulated densely with np.bincount
DENSE_LIMIT = 1 << 24

# Rows x increases processed per chunk when accumulating
PAIR_CHUNK = 1 << 20

# Largest box whose keys still fit in int64
_KEY_LIMIT = 1 << 62


def box_size(widths: np.ndarray) -> int:
    """Number of cells in a box, as an exact Python int."""
    return math.prod(int(w) for w in widths)


def strides(widths: np.ndarray) -> np.ndarray:
    """Row-major strides: sorted keys decode to lexicographic rows."""
    out = np.ones(len(widths), dtype=np.int64)
    for j in range(len(widths) - 2, -1, -1):
        out[j] = out[j + 1] * int(widths[j + 1])
    return out


def encode(vectors: np.ndarray, lo: np.ndarray, widths: np.ndarray) -> np.ndarray:
    """Mixed-radix keys of vectors inside the box starting at lo."""
    return (vectors - lo) @ strides(widths)


def decode(keys: np.ndarray, lo: np.ndarray, widths: np.ndarray) -> np.ndarray:
    """Inverse of encode()."""
    return lo + (keys[:, np.newaxis] // strides(widths)) % widths


def from_dense(acc: np.ndarray, lo: np.ndarray, widths: np.ndarray) -> Distribution:
    """Distribution over the cells of a dense box that carry mass."""
    keys = np.flatnonzero(acc > 0)
    return Distribution(decode(keys, lo, widths), acc[keys])


def accumulate_shifts(
    acc: np.ndarray,
    keys: np.ndarray,
    masses: np.ndarray,
    offsets: np.ndarray,
    probs: np.ndarray
) -> None:
    """
    acc[key + offset] += mass * prob for every (row, increase) pair.

    All targets must lie inside acc; the caller guarantees no capping is
    needed (keys are additive only while no stat is clipped).
    """
    rows_per_chunk = max(1, PAIR_CHUNK // max(1, len(offsets)))
    for start in range(0, len(keys), rows_per_chunk):
        stop = start + rows_per_chunk
        targets = (keys[start:stop, np.newaxis] + offsets[np.newaxis, :]).reshape(-1)
        weights = np.outer(masses[start:stop], probs).reshape(-1)
        acc += np.bincount(targets, weights=weights, minlength=len(acc))


def aggregate(vectors: np.ndarray, masses: np.ndarray) -> Distribution:
    """
    Collapse duplicate rows into a Distribution, summing their masses.

    Args:
        vectors: [n, k] int64 stat vectors, may contain duplicates
        masses: [n] float64 masses

    Returns:
        Distribution with unique rows in lexicographic order
    """
    k = vectors.shape[1]

    if len(vectors) == 0:
        return Distribution(np.zeros((0, k), dtype=np.int64), np.zeros(0))

    if k == 0:
        return Distribution(np.zeros((1, 0), dtype=np.int64), np.array([masses.sum()]))

    lo = vectors.min(axis=0)
    widths = vectors.max(axis=0) - lo + 1

    if box_size(widths) >= _KEY_LIMIT:
        unique_rows, inverse = np.unique(vectors, axis=0, return_inverse=True)
        summed = np.zeros(len(unique_rows), dtype=np.float64)
        np.add.at(summed, inverse.reshape(-1), masses)
        return Distribution(unique_rows, summed)

    unique, inverse = np.unique(encode(vectors, lo, widths), return_inverse=True)

    # ACCUMULATE with np.add.at (not assignment!)
    summed = np.zeros(len(unique), dtype=np.float64)
    np.add.at(summed, inverse.reshape(-1), masses)

    return Distribution(decode(unique, lo, widths), summed)


def convolve(
    d1: Distribution,
    d2: Distribution,
    caps: Sequence[int]
) -> Distribution:
    """
    Combine a stat distribution with an increase distribution.

    For every pair (v1, v2): v3 = min(v1 + v2, cap), mass P(v1) * P(v2)
    accumulated into v3.

    Args:
        d1: Distribution over stat vectors
        d2: Distribution over increase vectors
        caps: Per-stat caps

    Returns:
        New Distribution with total mass = mass(d1) * mass(d2)
    """
    if d1.n_stats != d2.n_stats:
        raise ValueError(
            f"Cannot convolve distributions over {d1.n_stats} and {d2.n_stats} stats"
        )
    caps_arr = np.asarray(caps, dtype=np.int64)
    if len(caps_arr) != d1.n_stats:
        raise ValueError(f"Expected {d1.n_stats} caps, got {len(caps_arr)}")

    k = d1.n_stats
    if d1.support_size == 0 or d2.support_size == 0 or k == 0:
        summed = np.zeros((d1.support_size * d2.support_size, k), dtype=np.int64)
        return aggregate(summed, np.outer(d1.masses, d2.masses).reshape(-1))

    # min(v1 + v2, cap) is monotone, so the output fits this box
    lo = np.minimum(d1.vectors.min(axis=0) + d2.vectors.min(axis=0), caps_arr)
    hi = np.minimum(d1.vectors.max(axis=0) + d2.vectors.max(axis=0), caps_arr)
    widths = hi - lo + 1
    dense = box_size(widths) <= DENSE_LIMIT

    if dense:
        acc = np.zeros(box_size(widths), dtype=np.float64)
        box_strides = strides(widths)
    parts = []

    rows_per_chunk = max(1, PAIR_CHUNK // d2.support_size)
    for start in range(0, d1.support_size, rows_per_chunk):
        stop = start + rows_per_chunk
        # Pairwise sums: [c, m2, k] -> [c * m2, k]
        summed = d1.vectors[start:stop, np.newaxis, :] + d2.vectors[np.newaxis, :, :]
        summed = np.minimum(summed, caps_arr).reshape(-1, k)
        products = np.outer(d1.masses[start:stop], d2.masses).reshape(-1)
        if dense:
            acc += np.bincount(
                (summed - lo) @ box_strides, weights=products, minlength=len(acc)
            )
        else:
            parts.append(aggregate(summed, products))

    if dense:
        return from_dense(acc, lo, widths)
    return merge(parts)


def merge(parts: Sequence[Distribution]) -> Distribution:
    """Sum the masses of partial distributions over the same stats."""
    if not parts:
        raise ValueError("merge() needs at least one distribution")
    k = parts[0].n_stats
    if any(p.n_stats != k for p in parts):
        raise ValueError("Cannot merge distributions over different stat counts")
    if len(parts) == 1:
        return parts[0]

    return aggregate(
        np.concatenate([p.vectors for p in parts], axis=0),
        np.concatenate([p.masses for p in parts])
    )


def normalize(dist: Distribution) -> Distribution:
    """Rescale to total mass 1 (counters floating-point drift)."""
    total = dist.total_mass
    if total <= 0:
        raise ValueError("Cannot normalize a distribution with no mass")
    return Distribution(dist.vectors, dist.masses / total)


def point_distribution(vector: Sequence[int]) -> Distribution:
    """Point mass at vector."""
    return Distribution.point(vector)
