"""Mesh construction.

This module builds the discretisations used by SPDE spatial models:
1D B-spline meshes (``fm_mesh_1d``) and constrained quality triangulations
(Triangle) with an inner region of interest and an outer padding zone
(``fm_mesh_2d``).
``build_mesh`` dispatches on the dimension of the anchor locations.
"""

from __future__ import annotations

import logging
import numbers
import warnings
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse
from scipy.interpolate import BSpline
import triangle

from . import geometry as geom
from .exceptions import DegenerateInputError, InvalidBoundaryError, ResolutionError
from .mesh import Mesh1D, Mesh2D, Segment
from .options import get_option

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

_BOUNDARY_CONDITIONS = ("free", "neumann", "dirichlet")

# Triangle is not guaranteed to terminate above this minimum angle
MAX_MIN_ANGLE = 34.0


# =============================================================================
# Argument normalisation
# =============================================================================


def _pair(value: Union[float, Sequence[float]], name: str) -> Tuple[float, float]:
    """Expand a scalar or 1-2 element sequence into an (inner, outer) pair."""
    if isinstance(value, numbers.Real):
        return float(value), float(value)
    values = [float(x) for x in value]
    if len(values) == 1:
        return values[0], values[0]
    if len(values) != 2:
        raise ValueError(f"'{name}' must hold one or two values, got {len(values)}")
    return values[0], values[1]


def _check_resolution(max_edge: Tuple[float, float], cutoff: float) -> None:
    if cutoff < 0:
        raise ValueError(f"'cutoff' must be non-negative, got {cutoff}")
    if min(max_edge) <= 0:
        raise ValueError(f"'max_edge' must be positive, got {max_edge}")
    for zone, edge in zip(("inner", "outer"), max_edge):
        if edge < cutoff:
            raise ResolutionError(
                f"The {zone} max edge ({edge:g}) is smaller than the cutoff ({cutoff:g}); "
                "no mesh can satisfy both."
            )


def _as_loc2d(loc: Optional[np.ndarray]) -> np.ndarray:
    if loc is None:
        return np.empty((0, 2))
    arr = np.asarray(loc, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected 2D locations of shape (n, 2), got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Locations must be finite.")
    return arr


def _segment_polygon(segment: Segment) -> np.ndarray:
    """Ordered vertex loop of a closed segment."""
    if segment.n_edges == 0:
        return geom.close_polygon(segment.loc)
    if not segment.is_closed:
        raise InvalidBoundaryError("Boundary segment is not a closed polygon.")
    loops = geom.edge_loops(segment.idx)
    if len(loops) != 1:
        raise InvalidBoundaryError(
            f"Boundary segment must form a single polygon, found {len(loops)} loops."
        )
    return segment.loc[loops[0]]


def _boundary_polygon(boundary: Union[Segment, np.ndarray, Sequence]) -> np.ndarray:
    if isinstance(boundary, Segment):
        poly = _segment_polygon(boundary)
    else:
        poly = geom.close_polygon(_as_loc2d(boundary))
    if poly.shape[0] < 3 or abs(geom.polygon_area(poly)) == 0.0:
        raise InvalidBoundaryError("Boundary polygon must have at least 3 vertices and non-zero area.")
    return geom.orient_ccw(poly)


def _check_degenerate_2d(points: np.ndarray) -> None:
    distinct = np.unique(points, axis=0)
    if distinct.shape[0] < 3:
        raise DegenerateInputError(
            f"Need at least 3 distinct locations for a 2D mesh, got {distinct.shape[0]}"
        )
    centred = distinct - distinct.mean(axis=0)
    sv = np.linalg.svd(centred, compute_uv=False)
    if sv[-1] <= 1e-12 * sv[0]:
        raise DegenerateInputError("All locations are collinear; a 2D mesh needs area.")


# =============================================================================
# Public helpers
# =============================================================================


def _make_closed_indices(n: int) -> np.ndarray:
    """Create closed polygon indices from n vertices."""
    if n < 2:
        return np.empty((0, 2), dtype=np.int64)
    indices = np.column_stack(
        [np.arange(n, dtype=np.int64), np.roll(np.arange(n, dtype=np.int64), -1)]
    )
    return indices


def fm_segm(
    loc: np.ndarray,
    idx: Optional[np.ndarray] = None,
    is_bnd: bool = True,
    crs: Optional[str] = None,
) -> Segment:
    """Create a mesh segment.

    Parameters
    ----------
    loc : np.ndarray
        Matrix of point locations.
    idx : np.ndarray, optional
        Two-column matrix of segment indices (0-based). If not provided,
        creates a closed polygon connecting consecutive vertices.
    is_bnd : bool, optional
        Whether this is a boundary segment. Default is True.
    crs : str, optional
        Coordinate reference system.

    Returns
    -------
    Segment
        The created segment.

    Examples
    --------
    >>> corners = np.array([[0, 0], [1, 0], [1, 1], [0, 1]])
    >>> boundary = fm_segm(corners, is_bnd=True)
    >>> mesh = fm_mesh_2d(boundary=boundary, max_edge=0.2)
    """
    loc_arr = np.asarray(loc, dtype=float)
    if loc_arr.ndim == 1:
        loc_arr = loc_arr.reshape(-1, 2)
    if idx is None:
        loc_arr = geom.close_polygon(loc_arr)
        idx_arr = _make_closed_indices(loc_arr.shape[0])
    else:
        idx_arr = np.asarray(idx, dtype=np.int64).reshape(-1, 2)
        if idx_arr.size and (idx_arr.min() < 0 or idx_arr.max() >= loc_arr.shape[0]):
            raise ValueError("Segment indices reference vertices outside 'loc'.")
    return Segment(loc=loc_arr, idx=idx_arr, is_bnd=is_bnd, crs=crs)


def fm_extensions(
    loc: np.ndarray,
    offset: Union[float, Sequence[float]] = -0.1,
    n: Optional[int] = None,
) -> List[Segment]:
    """Rounded convex extensions of a point set.

    Parameters
    ----------
    loc : np.ndarray
        Point locations, shape (k, 2).
    offset : float or sequence of float
        Extension distances. Negative values are fractions of the point-set
        diameter. One segment is returned per value.
    n : int, optional
        Number of arc points per hull corner. Defaults to the ``mesh.n`` option.
    """
    points = _as_loc2d(loc)
    _check_degenerate_2d(points)
    n = get_option("mesh.n") if n is None else int(n)
    offsets = [offset] if isinstance(offset, numbers.Real) else list(offset)
    scale = geom.diameter(points)
    out = []
    for off in offsets:
        dist = geom.resolve_offset(off, scale)
        poly = geom.convex_extension(points, dist, n)
        poly = geom.simplify_polygon(poly, 0.1 * dist)
        out.append(Segment(loc=poly, idx=_make_closed_indices(poly.shape[0])))
    return out


def fm_nonconvex_hull(
    loc: np.ndarray,
    convex: float = -0.15,
    concave: Optional[float] = None,
    resolution: Optional[int] = None,
    crs: Optional[str] = None,
) -> Segment:
    """Create a non-convex hull boundary around a point cloud.

    This creates a boundary that follows the shape of the point cloud more
    closely than a convex hull.

    Parameters
    ----------
    loc : np.ndarray
        Matrix of point locations. Shape (n, 2).
    convex : float, optional
        Extension distance. Negative values are relative to the data diameter.
        Default is -0.15 (15% of the diameter).
    concave : float, optional
        Minimal radius of curvature of concave parts of the boundary. If None,
        uses the convex value. Negative values are relative to the diameter.
    resolution : int, optional
        Number of arc points per quarter turn when dilating points. Defaults
        to the ``mesh.n`` option.
    crs : str, optional
        Coordinate reference system.

    Returns
    -------
    Segment
        A closed boundary segment representing the non-convex hull.

    Examples
    --------
    >>> locs = np.random.randn(100, 2)
    >>> boundary = fm_nonconvex_hull(locs, convex=-0.1)
    >>> mesh = fm_mesh_2d(loc=locs, boundary=boundary, max_edge=0.5)
    """
    points = _as_loc2d(loc)
    _check_degenerate_2d(points)
    resolution = get_option("mesh.n") if resolution is None else int(resolution)
    scale = geom.diameter(points)
    convex_dist = geom.resolve_offset(convex, scale)
    concave_dist = convex_dist if concave is None else geom.resolve_offset(concave, scale)
    poly = geom.nonconvex_hull(points, convex_dist, concave_dist, resolution)
    return Segment(loc=poly, idx=_make_closed_indices(poly.shape[0]), is_bnd=True, crs=crs)


# =============================================================================
# 1D meshes
# =============================================================================


def _merge_knots(x: np.ndarray, cutoff: float) -> np.ndarray:
    """Merge sorted knots closer than cutoff, always keeping both end points."""
    x = np.unique(x)
    if cutoff <= 0 or x.size <= 2:
        return x
    kept = [x[0]]
    for value in x[1:-1]:
        if value - kept[-1] >= cutoff:
            kept.append(value)
    if x[-1] - kept[-1] < cutoff and len(kept) > 1:
        kept[-1] = x[-1]
    else:
        kept.append(x[-1])
    return np.asarray(kept)


def _refine_knots(knots: np.ndarray, inner: Tuple[float, float], max_edge: Tuple[float, float]) -> np.ndarray:
    out = [knots[:1]]
    for x0, x1 in zip(knots[:-1], knots[1:]):
        mid = 0.5 * (x0 + x1)
        limit = max_edge[0] if inner[0] <= mid <= inner[1] else max_edge[1]
        pieces = max(1, int(np.ceil((x1 - x0) / limit - 1e-9)))
        out.append(np.linspace(x0, x1, pieces + 1)[1:])
    return np.concatenate(out)


def _spline_knots(loc: np.ndarray, degree: int) -> np.ndarray:
    if degree == 1:
        return loc.copy()
    left = 2.0 * loc[0] - loc[1]
    right = 2.0 * loc[-1] - loc[-2]
    return np.concatenate([[left], loc, [right]])


def _boundary_transform(
    t: np.ndarray, degree: int, loc: np.ndarray, boundary: Tuple[str, str]
) -> sparse.csr_matrix:
    """Columns of the boundary-constrained basis in terms of the full B-spline basis."""
    nf = t.size - degree - 1
    end_values = BSpline.design_matrix(np.array([loc[0], loc[-1]]), t, degree).toarray()
    columns: List[Dict[int, float]] = [{i: 1.0} for i in range(nf)]

    def constrain(first: int, second: int, value_first: float, value_second: float, cond: str):
        if cond == "free" or (cond == "neumann" and degree == 1):
            return
        if degree == 1:
            # dirichlet: the end hat is the only function active at the end
            columns[first] = {}
            return
        if cond == "neumann":
            # derivatives of the two end functions cancel
            columns[second] = {first: 1.0, second: 1.0}
        else:
            columns[second] = {first: -value_second / value_first, second: 1.0}
        columns[first] = {}

    constrain(0, 1, end_values[0, 0], end_values[0, 1], boundary[0])
    constrain(nf - 1, nf - 2, end_values[1, nf - 1], end_values[1, nf - 2], boundary[1])

    rows, cols, data = [], [], []
    j = 0
    for column in columns:
        if not column:
            continue
        for i, w in column.items():
            rows.append(i)
            cols.append(j)
            data.append(w)
        j += 1
    return sparse.csr_matrix((data, (rows, cols)), shape=(nf, j))


def fm_mesh_1d(
    loc: np.ndarray,
    interval: Optional[Tuple[float, float]] = None,
    boundary: Union[str, Sequence[str]] = ("free", "free"),
    degree: int = 1,
    max_edge: Optional[Union[float, Sequence[float]]] = None,
    cutoff: float = 0.0,
    offset: float = 0.0,
    crs: Optional[str] = None,
) -> Mesh1D:
    """Create a 1D B-spline mesh.

    Parameters
    ----------
    loc : array-like
        Knot (anchor) locations, shape (m,) or (m, 1).
    interval : tuple of (float, float), optional
        Explicit domain of interest. Must contain every anchor. Defaults to
        the range of ``loc``.
    boundary : str or pair of str, optional
        Boundary condition at the left and right end: "free", "neumann" or
        "dirichlet". A single string applies to both ends.
    degree : int, optional
        1 for piecewise linear, 2 for quadratic B-spline basis functions.
    max_edge : float or sequence of float, optional
        Maximum interval length inside the domain of interest and in the
        padding. Longer intervals are split uniformly.
    cutoff : float, optional
        Knots closer than this are merged.
    offset : float, optional
        Padding added beyond each end of the domain of interest. Negative
        values are fractions of its length. Default is 0 (no padding).
    crs : str, optional
        Coordinate reference system.

    Returns
    -------
    Mesh1D

    Raises
    ------
    DegenerateInputError
        If fewer than 2 distinct locations are given.
    InvalidBoundaryError
        If an anchor lies outside ``interval``.
    ResolutionError
        If ``max_edge`` is smaller than ``cutoff``.

    Examples
    --------
    >>> mesh = fm_mesh_1d([1, 2, 3, 4, 6], boundary=["neumann", "free"], degree=2)
    >>> mesh.n
    5
    """
    x = np.asarray(loc, dtype=float)
    if x.ndim == 2 and x.shape[1] == 1:
        x = x[:, 0]
    if x.ndim != 1:
        raise ValueError(f"Expected 1D locations of shape (m,) or (m, 1), got {x.shape}")
    if not np.all(np.isfinite(x)):
        raise ValueError("Locations must be finite.")
    if degree not in (1, 2):
        raise ValueError(f"'degree' must be 1 or 2, got {degree}")
    if isinstance(boundary, str):
        boundary = (boundary, boundary)
    boundary = tuple(str(b).lower() for b in boundary)
    if len(boundary) != 2 or any(b not in _BOUNDARY_CONDITIONS for b in boundary):
        raise ValueError(f"'boundary' entries must be among {_BOUNDARY_CONDITIONS}, got {boundary}")
    cutoff = float(cutoff)
    edges = _pair(np.inf if max_edge is None else max_edge, "max_edge")
    _check_resolution(edges, cutoff)

    points = x if interval is None else np.concatenate([x, np.asarray(interval, dtype=float)])
    if np.unique(points).size < 2:
        raise DegenerateInputError(
            f"Need at least 2 distinct locations for a 1D mesh, got {np.unique(points).size}"
        )

    if interval is not None:
        a, b = (float(v) for v in interval)
        if not a < b:
            raise ValueError(f"'interval' must be increasing, got {interval}")
        outside = (x < a) | (x > b)
        if np.any(outside):
            raise InvalidBoundaryError(
                f"{int(outside.sum())} location(s) lie outside the interval [{a:g}, {b:g}]"
            )
        x = np.concatenate([x, [a, b]])
    else:
        a, b = float(x.min()), float(x.max())

    pad = geom.resolve_offset(offset, b - a)
    knots = _merge_knots(x, cutoff)
    merged = np.unique(x).size - knots.size
    if merged > 0:
        warnings.warn(f"Merged {merged} knot(s) closer than the cutoff {cutoff:g}.")
    if pad > 0:
        knots = np.concatenate([[a - pad], knots, [b + pad]])
    knots = _refine_knots(knots, (a, b), edges)
    if degree == 2 and knots.size == 2:
        knots = np.array([knots[0], 0.5 * (knots[0] + knots[1]), knots[1]])

    ext = _spline_knots(knots, degree)
    t = np.concatenate([ext[:1], ext, ext[-1:]])
    transform = _boundary_transform(t, degree, knots, boundary)
    if transform.shape[1] == 0:
        raise DegenerateInputError(
            "The boundary conditions leave no free basis function; add knots."
        )

    greville = np.array([t[i + 1:i + degree + 1].mean() for i in range(t.size - degree - 1)])
    greville = np.clip(greville, knots[0], knots[-1])
    weight = abs(transform)
    node_loc = np.asarray(weight.T @ greville).ravel() / np.asarray(weight.sum(axis=0)).ravel()

    end_rows = BSpline.design_matrix(np.array([knots[0], knots[-1]]), t, degree) @ transform
    is_boundary = np.asarray(abs(end_rows).sum(axis=0)).ravel() > 1e-12

    log.debug(
        "1D mesh: %d knots, degree %d, boundary %s, %d basis functions",
        knots.size, degree, boundary, transform.shape[1],
    )
    return Mesh1D(
        loc=knots,
        degree=degree,
        boundary=boundary,
        knots=ext,
        node_loc=node_loc,
        is_boundary=is_boundary,
        transform=transform,
        crs=crs,
        meta={"interval": (a, b), "offset": pad, "cutoff": cutoff, "max_edge": edges},
    )


# =============================================================================
# 2D meshes
# =============================================================================


def _triangle_topology(tv: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Unique edges and triangle adjacency (neighbour opposite each vertex)."""
    n_tri = tv.shape[0]
    opposite = np.vstack([tv[:, [1, 2]], tv[:, [2, 0]], tv[:, [0, 1]]])
    owner = np.tile(np.arange(n_tri), 3)
    corner = np.repeat(np.arange(3), n_tri)
    key = np.sort(opposite, axis=1)
    vv, inverse = np.unique(key, axis=0, return_inverse=True)
    inverse = np.ravel(inverse)

    tt = np.full((n_tri, 3), -1, dtype=np.int64)
    order = np.argsort(inverse, kind="stable")
    sorted_edge = inverse[order]
    shared = np.nonzero(sorted_edge[1:] == sorted_edge[:-1])[0]
    first = order[shared]
    second = order[shared + 1]
    tt[owner[first], corner[first]] = owner[second]
    tt[owner[second], corner[second]] = owner[first]
    return vv.astype(np.int64), tt


def _longest_edge(loc: np.ndarray, tv: np.ndarray) -> np.ndarray:
    p = loc[tv]
    return np.max(
        np.linalg.norm(p[:, [1, 2, 0]] - p, axis=2),
        axis=1,
    )


def _triangulate(
    outer: np.ndarray,
    inner: np.ndarray,
    points: np.ndarray,
    max_edge: Tuple[float, float],
    min_angle: float,
    max_refine: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, int]:
    """Constrained quality triangulation of the two-zone domain.

    Both boundaries enter Triangle as segments, so no triangle crosses the
    inner boundary. Each zone carries a region seed with its attribute and
    maximum triangle area; the area bounds start at the equilateral area of
    the zone's max edge and are halved, per zone, until every triangle
    meets its max edge.
    """
    n_outer = outer.shape[0]
    vertices = np.vstack([outer, inner, points])
    segments = np.vstack([
        _make_closed_indices(n_outer),
        _make_closed_indices(inner.shape[0]) + n_outer,
    ])
    seeds = np.vstack([geom.interior_point(inner), geom.interior_point(outer, holes=[inner])])
    max_area = 0.25 * np.sqrt(3.0) * np.square(max_edge)
    # a non-positive regional area means unconstrained
    max_area[~np.isfinite(max_area)] = -1.0
    limit = np.asarray(max_edge, dtype=float)
    opts = f"pq{min_angle:g}aA"

    for rounds in range(max_refine + 1):
        regions = np.column_stack([seeds, [0.0, 1.0], max_area])
        out = triangle.triangulate(
            {"vertices": vertices, "segments": segments.astype(np.int32), "regions": regions}, opts
        )
        loc = np.asarray(out["vertices"], dtype=float)
        tv = np.asarray(out["triangles"], dtype=np.int64)
        zone = np.rint(out["triangle_attributes"][:, 0]).astype(np.int8)
        bad = _longest_edge(loc, tv) > limit[zone] * (1.0 + 1e-9)
        log.debug(
            "Triangulation round %d: %d triangles, %d above the max edge",
            rounds, tv.shape[0], int(bad.sum()),
        )
        if not np.any(bad):
            break
        if rounds == max_refine:
            raise ResolutionError(
                f"{int(bad.sum())} triangle(s) still exceed the max edge after "
                f"{max_refine} refinement round(s); raise the 'mesh.max_refine' option."
            )
        for z in np.unique(zone[bad]):
            max_area[z] *= 0.5

    used = np.unique(tv)
    remap = np.full(loc.shape[0], -1, dtype=np.int64)
    remap[used] = np.arange(used.size)
    return loc[used], remap[tv], zone, rounds


def fm_mesh_2d(
    loc: Optional[np.ndarray] = None,
    boundary: Optional[Union[Segment, np.ndarray]] = None,
    max_edge: Optional[Union[float, Sequence[float]]] = None,
    cutoff: float = 0.0,
    offset: Optional[Union[float, Sequence[float]]] = None,
    n: Optional[int] = None,
    concave: Optional[float] = None,
    min_angle: Optional[float] = None,
    crs: Optional[str] = None,
) -> Mesh2D:
    """Create a 2D triangular mesh with an inner and an outer resolution zone.

    Parameters
    ----------
    loc : np.ndarray, optional
        Anchor locations to include in the mesh. Shape (n, 2).
    boundary : Segment or np.ndarray, optional
        Explicit polygon for the inner region. Must enclose every anchor.
        Defaults to the convex hull of the anchors extended by ``offset[0]``.
    max_edge : float or sequence of float
        Maximum allowed triangle edge length. Can be a 2-element sequence for
        inner and outer regions.
    cutoff : float, optional
        Minimum distance allowed between anchors; closer anchors are merged.
    offset : float or sequence of float, optional
        Inner and outer extension distances. Negative values are fractions of
        the approximate data diameter. Defaults to the ``mesh.offset`` option.
        The outer extension must be positive.
    n : int, optional
        Number of arc points per quarter turn of the rounded hull corners.
        Defaults to the ``mesh.n`` option.
    concave : float, optional
        If given, the outer boundary is a non-convex hull with this minimal
        concave curvature radius (negative = fraction of the diameter)
        instead of a rounded convex hull.
    min_angle : float, optional
        Minimum triangle angle in degrees. Defaults to the ``mesh.min_angle``
        option.
    crs : str, optional
        Coordinate reference system.

    Returns
    -------
    Mesh2D
        A mesh object containing vertices, triangles, and adjacency information.

    Raises
    ------
    DegenerateInputError
        Fewer than 3 distinct locations, or all collinear.
    InvalidBoundaryError
        The explicit boundary does not enclose every anchor.
    ResolutionError
        A max edge is smaller than the cutoff, or refinement did not meet
        the max edge within ``mesh.max_refine`` rounds.

    Examples
    --------
    >>> locs = np.random.randn(100, 2)
    >>> mesh = fm_mesh_2d(loc=locs, max_edge=[0.5, 1.0], cutoff=0.1)
    >>> print(f"Mesh has {mesh.n} vertices and {mesh.n_triangle} triangles")

    >>> # Create mesh with automatic boundary extension
    >>> mesh = fm_mesh_2d(loc=locs, offset=[-0.1, -0.2], max_edge=[0.3, 0.6])
    """
    if max_edge is None:
        raise ValueError("'max_edge' is required for 2D meshes.")
    edges = _pair(max_edge, "max_edge")
    cutoff = float(cutoff)
    _check_resolution(edges, cutoff)
    offsets = _pair(get_option("mesh.offset") if offset is None else offset, "offset")
    n = get_option("mesh.n") if n is None else int(n)
    min_angle = float(get_option("mesh.min_angle") if min_angle is None else min_angle)
    if not 0.0 <= min_angle <= MAX_MIN_ANGLE:
        raise ValueError(f"'min_angle' must lie in [0, {MAX_MIN_ANGLE:g}] degrees, got {min_angle:g}")

    anchors = _as_loc2d(loc)
    bnd_poly = None if boundary is None else _boundary_polygon(boundary)
    domain_pts = anchors if bnd_poly is None else np.vstack([anchors, bnd_poly])
    _check_degenerate_2d(domain_pts)
    scale = geom.diameter(domain_pts)
    tol = 1e-9 * scale

    if bnd_poly is not None and anchors.shape[0]:
        enclosed = geom.polygon_contains(bnd_poly, anchors, tol=tol)
        if not np.all(enclosed):
            raise InvalidBoundaryError(
                f"{int((~enclosed).sum())} location(s) lie outside the boundary polygon"
            )

    off_inner = geom.resolve_offset(offsets[0], scale)
    off_outer = geom.resolve_offset(offsets[1], scale)
    if off_outer <= 0:
        raise ValueError("The outer offset must be positive so the padding contains the domain.")

    if bnd_poly is None:
        inner = geom.convex_extension(anchors, off_inner, n)
        inner = geom.simplify_polygon(inner, 0.1 * off_inner)
    else:
        inner = bnd_poly
    if concave is None:
        outer = geom.convex_extension(np.vstack([inner, anchors]), off_outer, n)
        outer = geom.simplify_polygon(outer, 0.1 * off_outer)
    else:
        outer = geom.closed_hull(
            geom.as_polygon(inner), off_outer, geom.resolve_offset(concave, scale), n
        )
    # inner segments border both zones
    inner = geom.subdivide_polygon(inner, min(edges))
    outer = geom.subdivide_polygon(outer, edges[1])

    merged, _ = geom.merge_close_points(anchors, cutoff)
    if merged.shape[0] < anchors.shape[0]:
        n_merged = anchors.shape[0] - merged.shape[0]
        if cutoff > 0:
            warnings.warn(f"Merged {n_merged} location(s) closer than the cutoff {cutoff:g}.")
        log.debug("Merged %d duplicate or close location(s)", n_merged)

    # anchors on top of a boundary vertex are represented by that vertex
    frame = np.vstack([outer, inner])
    points = geom.append_separated(frame, merged, max(cutoff, tol))[frame.shape[0]:]
    log.debug(
        "2D mesh input: %d outer, %d inner boundary vertices, %d anchors",
        outer.shape[0], inner.shape[0], points.shape[0],
    )

    loc_out, tv, zone, rounds = _triangulate(
        outer, inner, points, edges, min_angle, get_option("mesh.max_refine")
    )
    vv, tt = _triangle_topology(tv)
    bnd_edges = geom.boundary_edges(tv)
    is_boundary = np.zeros(loc_out.shape[0], dtype=bool)
    is_boundary[bnd_edges.ravel()] = True

    bnd_nodes, bnd_idx = np.unique(bnd_edges, return_inverse=True)
    segm_bnd = Segment(loc=loc_out[bnd_nodes], idx=np.ravel(bnd_idx).reshape(-1, 2), is_bnd=True, crs=crs)
    segm_int = Segment(loc=inner, idx=_make_closed_indices(inner.shape[0]), is_bnd=False, crs=crs)

    mesh = Mesh2D(
        loc=loc_out,
        tv=tv,
        vv=vv,
        tt=tt,
        is_boundary=is_boundary,
        zone=zone,
        max_edge=edges,
        segm_bnd=(segm_bnd,),
        segm_int=(segm_int,),
        crs=crs,
        meta={
            "cutoff": cutoff,
            "offset": (off_inner, off_outer),
            "n_anchor": int(anchors.shape[0]),
            "n_merged": int(anchors.shape[0] - merged.shape[0]),
            "concave": concave,
            "min_angle": min_angle,
            "refine_rounds": rounds,
        },
    )
    log.debug("Built %r", mesh)
    return mesh


def build_mesh(
    loc: Optional[np.ndarray] = None,
    boundary: Optional[Any] = None,
    max_edge: Optional[Union[float, Sequence[float]]] = None,
    cutoff: float = 0.0,
    offset: Optional[Union[float, Sequence[float]]] = None,
    degree: int = 1,
    interval: Optional[Tuple[float, float]] = None,
    concave: Optional[float] = None,
    n: Optional[int] = None,
    min_angle: Optional[float] = None,
    crs: Optional[str] = None,
) -> Union[Mesh1D, Mesh2D]:
    """Build a 1D or 2D mesh, depending on the shape of the locations.

    1D locations (shape (m,) or (m, 1)) go to ``fm_mesh_1d`` with
    ``boundary`` as the pair of boundary conditions. 2D locations (shape
    (n, 2)), or no locations at all, go to ``fm_mesh_2d`` with ``boundary``
    as the inner polygon.

    Raises
    ------
    ValueError
        If a 1D-only argument (``interval``, ``degree`` other than 1) is
        combined with 2D locations, or a 2D-only one (``concave``, ``n``,
        ``min_angle``) with 1D locations.
    """
    arr = None if loc is None else np.asarray(loc, dtype=float)
    is_1d = arr is not None and (arr.ndim == 1 or (arr.ndim == 2 and arr.shape[1] == 1))
    if is_1d:
        if concave is not None or n is not None or min_angle is not None:
            raise ValueError("'concave', 'n' and 'min_angle' only apply to 2D meshes.")
        return fm_mesh_1d(
            arr,
            interval=interval,
            boundary=("free", "free") if boundary is None else boundary,
            degree=degree,
            max_edge=max_edge,
            cutoff=cutoff,
            offset=0.0 if offset is None else offset,
            crs=crs,
        )
    if degree != 1 or interval is not None:
        raise ValueError("'degree' and 'interval' only apply to 1D meshes.")
    return fm_mesh_2d(
        loc=arr,
        boundary=boundary,
        max_edge=max_edge,
        cutoff=cutoff,
        offset=offset,
        n=n,
        concave=concave,
        min_angle=min_angle,
        crs=crs,
    )
