"""
query.py - Cross-label nearest neighbor queries

Thin layer over scipy's KDTree: for every point of a "from" set, find the
closest point of a "to" set. Asymmetric: distance(A->B) != distance(B->A).
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nnloji.data.core import Field

from typing import NamedTuple
import numpy as np
from scipy.spatial import KDTree

from ..data.config import EmptyInputError


class NeighborMatch(NamedTuple):
    """Nearest target per source point: distance and target row index."""
    distances: np.ndarray
    indices: np.ndarray


def nearest_neighbors(
    from_points: np.ndarray,
    to_points: np.ndarray,
    exclude_self: bool = False,
) -> NeighborMatch:
    """
    Find the nearest ``to_points`` row for every row of ``from_points``.

    Parameters
    ----------
    from_points : np.ndarray
        (n_from x 2) source coordinates.
    to_points : np.ndarray
        (n_to x 2) target coordinates.
    exclude_self : bool
        Set when both arrays hold the same points (from == to). The
        closest hit is then the point itself, so the second closest is
        used instead.

    Returns
    -------
    NeighborMatch
        ``distances`` and ``indices`` (into ``to_points``), length n_from.

    Raises
    ------
    EmptyInputError
        If either set is empty, or ``exclude_self`` is set and there is
        no other point to match.
    """
    from_points = np.asarray(from_points, dtype=float).reshape(-1, 2)
    to_points = np.asarray(to_points, dtype=float).reshape(-1, 2)

    if len(from_points) == 0:
        raise EmptyInputError("No points in source set")
    if len(to_points) == 0:
        raise EmptyInputError("No points in target set")
    if exclude_self and len(to_points) < 2:
        raise EmptyInputError("Self query needs at least 2 points")

    tree = KDTree(to_points)
    if exclude_self:
        # k=2 because query includes self
        dists, indices = tree.query(from_points, k=2)
        return NeighborMatch(dists[:, 1], indices[:, 1])

    dists, indices = tree.query(from_points, k=1)
    return NeighborMatch(np.atleast_1d(dists), np.atleast_1d(indices))


def nearest_distances(
    from_points: np.ndarray,
    to_points: np.ndarray,
    exclude_self: bool = False,
) -> np.ndarray:
    """Distances only; see nearest_neighbors()."""
    return nearest_neighbors(from_points, to_points, exclude_self=exclude_self).distances


def field_neighbors(field: 'Field', from_label: str, to_label: str) -> NeighborMatch:
    """
    Nearest ``to_label`` point for every ``from_label`` point in one field.

    Indices refer to ``field.points_with_label(to_label)``.
    """
    return nearest_neighbors(
        field.points_with_label(from_label),
        field.points_with_label(to_label),
        exclude_self=(from_label == to_label),
    )


def field_distances(field: 'Field', from_label: str, to_label: str) -> np.ndarray:
    """Distance from every ``from_label`` point to its nearest ``to_label`` point."""
    return field_neighbors(field, from_label, to_label).distances
