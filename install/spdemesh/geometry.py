"""Planar geometry helpers used by the mesh builder.

Polygons are (k, 2) arrays of vertices, implicitly closed (the last vertex
connects back to the first) and stored counter-clockwise. Buffering,
simplification and point predicates go through shapely; the results are
converted back to vertex arrays at the function boundary.
"""

from __future__ import annotations

import logging
import warnings
from typing import List, Optional, Sequence, Tuple

import numpy as np
import shapely
from scipy.spatial import cKDTree
from shapely.geometry import LinearRing, MultiPoint, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())


# =============================================================================
# Conversion
# =============================================================================


def as_polygon(poly: np.ndarray, holes: Optional[Sequence[np.ndarray]] = None) -> Polygon:
    """Shapely polygon from a vertex array (and optional hole arrays)."""
    return Polygon(np.asarray(poly, dtype=float), holes=[np.asarray(h, dtype=float) for h in holes or ()])


def exterior(shape: BaseGeometry) -> np.ndarray:
    """Counter-clockwise exterior ring of a polygon, without the closing vertex."""
    if not isinstance(shape, Polygon) or shape.is_empty:
        raise ValueError(f"Expected a single non-empty polygon, got {shape.geom_type}")
    return np.asarray(orient(shape, 1.0).exterior.coords, dtype=float)[:-1]


def interior_point(poly: np.ndarray, holes: Optional[Sequence[np.ndarray]] = None) -> np.ndarray:
    """A point strictly inside the polygon (and outside its holes)."""
    point = as_polygon(poly, holes).representative_point()
    return np.array([point.x, point.y])


# =============================================================================
# Basic polygon measures
# =============================================================================


def polygon_area(poly: np.ndarray) -> float:
    """Signed area of a closed polygon (positive when counter-clockwise)."""
    ring = LinearRing(np.asarray(poly, dtype=float))
    area = Polygon(ring).area
    return area if ring.is_ccw else -area


def orient_ccw(poly: np.ndarray) -> np.ndarray:
    """Return the polygon with counter-clockwise vertex order."""
    poly = np.asarray(poly, dtype=float)
    if polygon_area(poly) < 0:
        return poly[::-1].copy()
    return poly


def close_polygon(poly: np.ndarray) -> np.ndarray:
    """Drop a trailing vertex that duplicates the first one."""
    poly = np.asarray(poly, dtype=float)
    if poly.shape[0] > 1 and np.allclose(poly[0], poly[-1]):
        return poly[:-1]
    return poly


def diameter(points: np.ndarray) -> float:
    """Largest distance between two points of the set."""
    points = np.asarray(points, dtype=float)
    if points.shape[0] < 2:
        return 0.0
    # the hull degrades to a line or a point for collinear or repeated input
    hull = shapely.get_coordinates(MultiPoint(points).convex_hull)
    diff = hull[:, None, :] - hull[None, :, :]
    return float(np.sqrt((diff ** 2).sum(axis=-1)).max())


def resolve_offset(offset: float, scale: float) -> float:
    """Turn a negative offset (fraction of ``scale``) into an absolute distance."""
    offset = float(offset)
    if offset < 0:
        return -offset * scale
    return offset


# =============================================================================
# Point/polygon relations
# =============================================================================


def boundary_distance(points: np.ndarray, poly: np.ndarray) -> np.ndarray:
    """Distance from each point to the closest edge of a closed polygon."""
    points = np.atleast_2d(np.asarray(points, dtype=float))
    ring = LinearRing(np.asarray(poly, dtype=float))
    return shapely.distance(ring, shapely.points(points))


def polygon_contains(
    poly: np.ndarray, points: np.ndarray, tol: float = 0.0
) -> np.ndarray:
    """Test which points lie strictly inside a closed polygon.

    Points within ``tol`` of the boundary count as inside.
    """
    points = np.atleast_2d(np.asarray(points, dtype=float))
    shape = as_polygon(poly)
    shapely.prepare(shape)
    inside = shapely.contains_xy(shape, points[:, 0], points[:, 1])
    if tol > 0:
        inside |= boundary_distance(points, poly) <= tol
    return inside


# =============================================================================
# Polygon construction and discretisation
# =============================================================================


def convex_extension(points: np.ndarray, distance: float, n: int = 8) -> np.ndarray:
    """Convex hull of ``points`` pushed outwards by ``distance``.

    The hull is buffered with ``n`` segments per quarter turn. The buffer
    radius is enlarged so the arc chords stay at least ``distance`` away,
    hence the result contains every point of the plane within ``distance``
    of the input.
    """
    hull = MultiPoint(np.asarray(points, dtype=float)).convex_hull
    if distance > 0:
        quad = max(2, int(n))
        hull = hull.buffer(distance / np.cos(np.pi / (4 * quad)), quad_segs=quad)
    return exterior(hull)


def simplify_polygon(poly: np.ndarray, tol: float, max_len: float = np.inf) -> np.ndarray:
    """Drop vertices that move the boundary by less than ``tol``.

    Edges longer than ``max_len`` are split again afterwards.
    """
    out = np.asarray(poly, dtype=float)
    if tol > 0 and out.shape[0] > 3:
        out = exterior(as_polygon(out).simplify(tol, preserve_topology=True))
    if np.isfinite(max_len):
        out = subdivide_polygon(out, max_len)
    return out


def subdivide_polygon(poly: np.ndarray, max_len: float) -> np.ndarray:
    """Insert vertices so that no polygon edge is longer than ``max_len``."""
    if not np.isfinite(max_len):
        return np.asarray(poly, dtype=float)
    ring = shapely.segmentize(LinearRing(np.asarray(poly, dtype=float)), max_len)
    return shapely.get_coordinates(ring)[:-1]


def merge_close_points(points: np.ndarray, cutoff: float) -> Tuple[np.ndarray, np.ndarray]:
    """Greedily merge points closer than ``cutoff`` (first occurrence wins).

    Returns
    -------
    kept : np.ndarray
        The surviving points, in input order.
    owner : np.ndarray
        For every input point, the index (into ``kept``) of the point it was
        merged into.
    """
    points = np.asarray(points, dtype=float)
    n = points.shape[0]
    owner = np.full(n, -1, dtype=np.int64)
    if n == 0:
        return points.reshape(0, 2), owner
    if cutoff <= 0:
        _, first, inverse = np.unique(points, axis=0, return_index=True, return_inverse=True)
        order = np.argsort(first)
        rank = np.empty_like(order)
        rank[order] = np.arange(order.size)
        return points[np.sort(first)], rank[np.ravel(inverse)]
    tree = cKDTree(points)
    kept = []
    for i in range(n):
        if owner[i] >= 0:
            continue
        slot = len(kept)
        kept.append(i)
        for j in tree.query_ball_point(points[i], cutoff):
            if owner[j] < 0 and np.linalg.norm(points[j] - points[i]) < cutoff:
                owner[j] = slot
        owner[i] = slot
    return points[kept], owner


def append_separated(
    existing: np.ndarray, candidates: np.ndarray, min_dist: float
) -> np.ndarray:
    """Append candidates lying at least ``min_dist`` from all accepted points."""
    if candidates.shape[0] == 0:
        return existing
    if existing.shape[0] > 0 and min_dist > 0:
        dist, _ = cKDTree(existing).query(candidates)
        candidates = candidates[dist >= min_dist]
    if candidates.shape[0] == 0:
        return existing
    if min_dist > 0:
        candidates, _ = merge_close_points(candidates, min_dist)
    return np.vstack([existing, candidates])


# =============================================================================
# Triangulation topology
# =============================================================================


def boundary_edges(tv: np.ndarray) -> np.ndarray:
    """Directed edges used by exactly one triangle, shape (k, 2).

    For counter-clockwise triangles the interior lies to the left of each
    returned edge.
    """
    if tv.shape[0] == 0:
        return np.empty((0, 2), dtype=np.int64)
    directed = np.vstack([tv[:, [0, 1]], tv[:, [1, 2]], tv[:, [2, 0]]])
    key = np.sort(directed, axis=1)
    _, inverse, counts = np.unique(key, axis=0, return_inverse=True, return_counts=True)
    return directed[counts[np.ravel(inverse)] == 1]


def edge_loops(edges: np.ndarray) -> List[np.ndarray]:
    """Chain directed boundary edges into closed vertex loops."""
    outgoing = {}
    for a, b in edges:
        outgoing.setdefault(int(a), []).append(int(b))
    loops = []
    while outgoing:
        start = min(outgoing)
        loop = [start]
        current = start
        while True:
            targets = outgoing.get(current)
            if not targets:
                break
            nxt = targets.pop()
            if not targets:
                del outgoing[current]
            if nxt == start:
                break
            loop.append(nxt)
            current = nxt
        loops.append(np.asarray(loop, dtype=np.int64))
    return loops


# =============================================================================
# Hulls
# =============================================================================


def closed_hull(
    shape: BaseGeometry,
    convex: float,
    concave: float,
    resolution: int = 8,
) -> np.ndarray:
    """Morphological closing of a geometry, returned as a polygon.

    The geometry is dilated by ``convex + concave`` and eroded by
    ``concave``, so the result keeps at least ``convex`` away from the
    input while concave parts of the boundary have curvature radius at
    least ``concave``. ``resolution`` is the number of buffer segments per
    quarter turn. Falls back to the rounded convex hull, with a warning,
    when the closing splits into several pieces.
    """
    if convex <= 0 or concave <= 0:
        raise ValueError("'convex' and 'concave' must be positive distances.")
    quad = max(2, int(resolution))
    grown = shape.buffer(convex + concave, quad_segs=quad)
    closed = grown.buffer(-concave, quad_segs=quad)
    if isinstance(closed, MultiPolygon):
        warnings.warn(
            f"Non-convex hull splits into {len(closed.geoms)} pieces; "
            "using the convex extension instead."
        )
        return simplify_polygon(
            convex_extension(shapely.get_coordinates(shape), convex, quad), 0.1 * convex
        )
    log.debug("Non-convex hull with %d vertices", len(closed.exterior.coords) - 1)
    return simplify_polygon(exterior(closed), 0.1 * convex)


def nonconvex_hull(
    points: np.ndarray,
    convex: float,
    concave: Optional[float] = None,
    resolution: int = 8,
) -> np.ndarray:
    """Non-convex hull following the shape of a point cloud.

    See ``closed_hull``; ``concave`` defaults to ``convex``.
    """
    points = np.asarray(points, dtype=float)
    if concave is None:
        concave = convex
    return closed_hull(MultiPoint(points), convex, concave, resolution)
