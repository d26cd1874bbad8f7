"""Nearest-neighbor matching of projected model points to detected features."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

NO_MATCH = -1


@dataclass
class SpatialMatches:
    """Per-query nearest-neighbor results.

    Attributes:
        indices: (N,) index into the indexed points, NO_MATCH (-1) if unmatched
        distances: (N,) Euclidean pixel distance, inf if unmatched
    """

    indices: np.ndarray  # (N,) int64
    distances: np.ndarray  # (N,) float64

    def __len__(self) -> int:
        """Return number of queries."""
        return len(self.indices)

    @property
    def matched(self) -> np.ndarray:
        """Return (N,) bool mask of queries that kept a match."""
        return self.indices != NO_MATCH

    @property
    def num_matched(self) -> int:
        return int(np.count_nonzero(self.matched))


def prune_repeated_matches(indices: np.ndarray, distances: np.ndarray) -> np.ndarray:
    """Unmatch queries that claim a target already claimed by a closer query.

    Queries are visited in order of increasing distance (ties broken by
    query index), so the closest claimant keeps each target.

    Returns:
        Copy of ``indices`` with the losing queries set to NO_MATCH
    """
    pruned = indices.copy()
    order = np.lexsort((np.arange(len(indices)), distances))
    claimed: set[int] = set()
    for query_idx in order:
        target = int(pruned[query_idx])
        if target == NO_MATCH:
            continue
        if target in claimed:
            pruned[query_idx] = NO_MATCH
        else:
            claimed.add(target)
    return pruned


class SpatialMatcher:
    """KD-tree over one frame's 2D feature locations.

    The index is rebuilt once per frame with ``build`` and then queried
    with the projections of the model points.
    """

    def __init__(self) -> None:
        self._tree: cKDTree | None = None
        self._num_points = 0
        self._is_built = False

    def build(self, points_2d: np.ndarray) -> None:
        """Build the search index over Nx2 feature points."""
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        self._num_points = len(points_2d)
        self._tree = cKDTree(points_2d) if self._num_points > 0 else None
        self._is_built = True

    def match(
        self,
        query_points: np.ndarray,
        max_distance: float,
        prune_repeats: bool = True,
    ) -> SpatialMatches:
        """Find the nearest indexed point for every query.

        Args:
            query_points: Mx2 query pixel coordinates
            max_distance: Matches farther than this are reported as NO_MATCH
            prune_repeats: If True, a target claimed by several queries is
                kept only by the closest one

        Returns:
            SpatialMatches with one entry per query

        Raises:
            RuntimeError: If called before ``build``
        """
        if not self._is_built:
            raise RuntimeError("SpatialMatcher.match() called before build()")

        query_points = np.asarray(query_points, dtype=np.float64).reshape(-1, 2)
        n_queries = len(query_points)

        if n_queries == 0 or self._tree is None:
            return SpatialMatches(
                indices=np.full(n_queries, NO_MATCH, dtype=np.int64),
                distances=np.full(n_queries, np.inf, dtype=np.float64),
            )

        # cKDTree reports index == n and distance == inf beyond the bound,
        # and its bound is exclusive
        distances, indices = self._tree.query(
            query_points,
            k=1,
            distance_upper_bound=np.nextafter(max_distance, np.inf),
        )
        distances = np.asarray(distances, dtype=np.float64)
        indices = np.asarray(indices, dtype=np.int64)

        unmatched = ~np.isfinite(distances) | (indices >= self._num_points)
        indices[unmatched] = NO_MATCH
        distances[unmatched] = np.inf

        if prune_repeats:
            indices = prune_repeated_matches(indices, distances)
            distances[indices == NO_MATCH] = np.inf

        return SpatialMatches(indices=indices, distances=distances)

    @property
    def num_points(self) -> int:
        """Return number of indexed points."""
        return self._num_points
