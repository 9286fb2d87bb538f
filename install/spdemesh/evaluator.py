"""Sparse evaluators mapping mesh-node coefficients to locations.

``build_evaluator`` locates every query point in the mesh and stores the
basis weights of its element as one row of a sparse projection matrix.
``GridProjector`` does the same for a regular lattice and reshapes the
result for image-style display.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

import numpy as np
from scipy import sparse
from scipy.interpolate import BSpline

from .exceptions import CRSMismatchError, OutOfDomainError
from .mesh import Evaluator, Mesh, Mesh1D, Mesh2D
from .options import get_option

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

_CHUNK = 50_000


class _TriangleLocator:
    """Point location in a triangulation through a uniform bucket grid.

    Every triangle is registered in each grid cell its bounding box touches.
    A query point is tested against the triangles of its cell only, in
    increasing triangle index, so the lowest-index containing triangle wins.
    """

    def __init__(self, loc: np.ndarray, tv: np.ndarray, tol: float) -> None:
        self.tol = tol
        p = loc[tv]
        self.tv = tv
        self.origin = p[:, 0]
        e1 = p[:, 1] - p[:, 0]
        e2 = p[:, 2] - p[:, 0]
        det = e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0]
        # inverse of the 2x2 matrix with columns e1, e2
        inv = np.stack([
            np.column_stack([e2[:, 1], -e2[:, 0]]),
            np.column_stack([-e1[:, 1], e1[:, 0]]),
        ], axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            self.inv = inv / det[:, None, None]

        lo = p.min(axis=1)
        hi = p.max(axis=1)
        self.lo = loc.min(axis=0)
        extent = np.maximum(loc.max(axis=0) - self.lo, np.finfo(float).tiny)
        self.nc = max(1, int(np.sqrt(tv.shape[0])))
        self.cell_size = extent / self.nc

        i0 = self._cell_coord(lo)
        i1 = self._cell_coord(hi)
        span = i1 - i0 + 1
        count = span[:, 0] * span[:, 1]
        tri = np.repeat(np.arange(tv.shape[0]), count)
        offset = np.arange(count.sum()) - np.repeat(np.cumsum(count) - count, count)
        cx = i0[tri, 0] + offset % span[tri, 0]
        cy = i0[tri, 1] + offset // span[tri, 0]
        cell = cy * self.nc + cx
        order = np.lexsort((tri, cell))
        self.cell = cell[order]
        self.tri = tri[order]

    def _cell_coord(self, points: np.ndarray) -> np.ndarray:
        idx = np.floor((points - self.lo) / self.cell_size).astype(np.int64)
        return np.clip(idx, 0, self.nc - 1)

    def locate(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Containing triangle (-1 if none) and barycentric weights per point."""
        element = np.full(points.shape[0], -1, dtype=np.int64)
        weights = np.zeros((points.shape[0], 3))
        for start in range(0, points.shape[0], _CHUNK):
            chunk = slice(start, start + _CHUNK)
            element[chunk], weights[chunk] = self._locate_chunk(points[chunk])
        return element, weights

    def _locate_chunk(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n = points.shape[0]
        element = np.full(n, -1, dtype=np.int64)
        weights = np.zeros((n, 3))

        margin = self.cell_size * self.nc * 1e-9
        hi = self.lo + self.cell_size * self.nc
        in_grid = np.all((points >= self.lo - margin) & (points <= hi + margin), axis=1)
        cell = np.full(n, -1, dtype=np.int64)
        coord = self._cell_coord(points[in_grid])
        cell[in_grid] = coord[:, 1] * self.nc + coord[:, 0]

        first = np.searchsorted(self.cell, cell, side="left")
        last = np.searchsorted(self.cell, cell, side="right")
        n_cand = np.where(in_grid, last - first, 0)
        if n_cand.sum() == 0:
            return element, weights
        pt = np.repeat(np.arange(n), n_cand)
        pos = np.arange(n_cand.sum()) - np.repeat(np.cumsum(n_cand) - n_cand, n_cand)
        cand = self.tri[np.repeat(first, n_cand) + pos]

        d = points[pt] - self.origin[cand]
        l12 = np.einsum("kij,kj->ki", self.inv[cand], d)
        bary = np.column_stack([1.0 - l12.sum(axis=1), l12])
        ok = np.all(bary >= -self.tol, axis=1)
        hit = np.flatnonzero(ok)
        # candidates of one point are in increasing triangle order
        found, take = np.unique(pt[hit], return_index=True)
        chosen = hit[take]
        element[found] = cand[chosen]
        w = np.clip(bary[chosen], 0.0, None)
        weights[found] = w / w.sum(axis=1, keepdims=True)
        return element, weights


def _query_points(mesh: Mesh, loc: np.ndarray) -> np.ndarray:
    arr = np.asarray(loc, dtype=float)
    if isinstance(mesh, Mesh1D):
        if arr.ndim == 0:
            arr = arr.reshape(1)
        if arr.ndim == 2 and arr.shape[1] == 1:
            arr = arr[:, 0]
        if arr.ndim != 1:
            raise ValueError(f"Expected 1D locations of shape (n,) or (n, 1), got {arr.shape}")
        return arr
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected 2D locations of shape (n, 2), got {arr.shape}")
    return arr


def _weights_1d(mesh: Mesh1D, x: np.ndarray, tol: float) -> Tuple[sparse.csr_matrix, np.ndarray, np.ndarray]:
    a, b = mesh.interval
    slack = tol * (b - a)
    inside = np.isfinite(x) & (x >= a - slack) & (x <= b + slack)
    xi = np.clip(x[inside], a, b)
    element = np.full(x.shape[0], -1, dtype=np.int64)
    element[inside] = np.clip(np.searchsorted(mesh.loc, xi, side="left") - 1, 0, mesh.m - 2)
    if xi.size == 0:
        return sparse.csr_matrix((x.shape[0], mesh.n)), inside, element

    basis = BSpline.design_matrix(xi, mesh.spline_knots, mesh.degree) @ mesh.transform
    basis = sparse.coo_matrix(basis)
    rows = np.flatnonzero(inside)[basis.row]
    A = sparse.csr_matrix((basis.data, (rows, basis.col)), shape=(x.shape[0], mesh.n))
    A.eliminate_zeros()
    return A, inside, element


def _weights_2d(mesh: Mesh2D, points: np.ndarray, tol: float) -> Tuple[sparse.csr_matrix, np.ndarray, np.ndarray]:
    locator = _TriangleLocator(mesh.loc, mesh.tv, tol)
    finite = np.all(np.isfinite(points), axis=1)
    element = np.full(points.shape[0], -1, dtype=np.int64)
    weights = np.zeros((points.shape[0], 3))
    element[finite], weights[finite] = locator.locate(points[finite])
    inside = element >= 0

    rows = np.repeat(np.flatnonzero(inside), 3)
    cols = mesh.tv[element[inside]].ravel()
    data = weights[inside].ravel()
    A = sparse.csr_matrix((data, (rows, cols)), shape=(points.shape[0], mesh.n))
    A.eliminate_zeros()
    return A, inside, element


def build_evaluator(
    mesh: Mesh,
    loc: np.ndarray,
    outside: Optional[str] = None,
    crs: Optional[str] = None,
) -> Evaluator:
    """Create the sparse projector from mesh nodes to query locations.

    Parameters
    ----------
    mesh : Mesh1D or Mesh2D
        Mesh built by ``fm_mesh_1d`` or ``fm_mesh_2d``.
    loc : np.ndarray
        Query locations, shape (n,) or (n, 1) for 1D meshes and (n, 2) for
        2D meshes.
    outside : {"error", "mask"}, optional
        What to do with locations outside the mesh. "error" raises
        ``OutOfDomainError``; "mask" keeps an all-zero row so ``apply``
        returns NaN there. Defaults to the ``eval.outside`` option.
    crs : str, optional
        Coordinate reference system of ``loc``. Must equal the mesh CRS when
        both are given.

    Returns
    -------
    Evaluator
        Projection matrix of shape (n_query, mesh.n) with the basis weights
        of the containing element in each row.

    Raises
    ------
    OutOfDomainError
        If a location lies outside the mesh and ``outside="error"``.
    CRSMismatchError
        If ``crs`` and the mesh CRS are both set and differ.

    Notes
    -----
    A location on an edge or vertex shared by several elements is assigned
    to the element with the lowest index. The weights agree on shared edges,
    so the choice only shows in ``Evaluator.element``.

    Examples
    --------
    >>> mesh = fm_mesh_2d(loc=np.random.rand(50, 2), max_edge=[0.1, 0.3])
    >>> ev = build_evaluator(mesh, np.array([[0.5, 0.5]]))
    >>> ev.apply(np.ones(mesh.n))
    array([1.])
    """
    policy = get_option("eval.outside") if outside is None else outside
    if policy not in ("error", "mask"):
        raise ValueError(f"'outside' must be 'error' or 'mask', got {policy!r}")
    if crs is not None and mesh.crs is not None and crs != mesh.crs:
        raise CRSMismatchError(f"Location CRS {crs!r} does not match mesh CRS {mesh.crs!r}")

    tol = get_option("eval.tol")
    points = _query_points(mesh, loc)
    if isinstance(mesh, Mesh1D):
        A, inside, element = _weights_1d(mesh, points, tol)
    elif isinstance(mesh, Mesh2D):
        A, inside, element = _weights_2d(mesh, points, tol)
    else:
        raise TypeError(f"Expected Mesh1D or Mesh2D, got {type(mesh).__name__}")

    n_out = int((~inside).sum())
    log.debug("Evaluator: %d locations, %d outside, nnz=%d", points.shape[0], n_out, A.nnz)
    if n_out and policy == "error":
        indices = np.flatnonzero(~inside)
        raise OutOfDomainError(
            f"{n_out} location(s) lie outside the mesh (first: {indices[:5].tolist()})",
            indices=indices,
        )
    return Evaluator(
        A=A,
        loc=points,
        inside=inside,
        element=element,
        outside=policy,
        crs=crs if crs is not None else mesh.crs,
    )


fm_evaluator = build_evaluator


def fm_evaluate(
    evaluator: Union[Evaluator, "GridProjector"],
    field: np.ndarray,
) -> np.ndarray:
    """Evaluate mesh-node values with an evaluator or grid projector.

    For an ``Evaluator`` this is ``evaluator.apply(field)``; for a
    ``GridProjector`` the result is the (ny, nx) masked grid.
    """
    if isinstance(evaluator, GridProjector):
        return evaluator.project(field)
    return evaluator.apply(field)


@dataclass
class GridProjector:
    """Regular-grid evaluator for projecting mesh fields to images.

    Attributes
    ----------
    mesh : Mesh2D
        The mesh to project from.
    xlim : tuple of (float, float)
        X axis limits (min, max).
    ylim : tuple of (float, float)
        Y axis limits (min, max).
    dims : tuple of (int, int)
        Number of grid points in each dimension (nx, ny).
    x : np.ndarray
        X coordinates of grid points.
    y : np.ndarray
        Y coordinates of grid points.
    lattice : np.ndarray
        All grid point coordinates, shape (nx*ny, 2), x varying fastest.
    evaluator : Evaluator
        Masked evaluator at the lattice points.

    Examples
    --------
    >>> projector = grid_projector(mesh, dims=(100, 100))
    >>> image = projector.project(field)
    >>> plt.imshow(image, origin='lower', extent=[*projector.xlim, *projector.ylim])
    """

    mesh: Mesh2D
    xlim: Tuple[float, float]
    ylim: Tuple[float, float]
    dims: Tuple[int, int]
    x: np.ndarray = field(init=False)
    y: np.ndarray = field(init=False)
    lattice: np.ndarray = field(init=False)
    evaluator: Evaluator = field(init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.mesh, Mesh2D):
            raise TypeError("GridProjector needs a 2D mesh.")
        self.x = np.linspace(self.xlim[0], self.xlim[1], self.dims[0])
        self.y = np.linspace(self.ylim[0], self.ylim[1], self.dims[1])
        xx, yy = np.meshgrid(self.x, self.y)
        self.lattice = np.column_stack([xx.ravel(), yy.ravel()])
        self.evaluator = build_evaluator(self.mesh, self.lattice, outside="mask")

    @property
    def shape(self) -> Tuple[int, int]:
        """Image shape (ny, nx)."""
        return self.dims[1], self.dims[0]

    @property
    def A(self) -> sparse.csr_matrix:
        """Projection matrix from mesh vertices to lattice points."""
        return self.evaluator.A

    @property
    def inside(self) -> np.ndarray:
        """Image mask, True where the lattice point is covered by the mesh."""
        return self.evaluator.inside.reshape(self.shape)

    @property
    def zone(self) -> np.ndarray:
        """Image of the zone of the covering triangle (0 inner, 1 padding, -1 outside)."""
        element = self.evaluator.element
        zone = np.where(element >= 0, self.mesh.zone[np.maximum(element, 0)], -1)
        return zone.reshape(self.shape)

    @property
    def coverage(self) -> float:
        """Fraction of the lattice covered by the mesh."""
        return float(self.evaluator.inside.mean())

    def project(
        self,
        field: np.ndarray,
        mask_outside: bool = True
    ) -> Union[np.ndarray, np.ma.MaskedArray]:
        """Project a field from mesh vertices to the grid.

        Parameters
        ----------
        field : np.ndarray
            Field values at mesh vertices, shape (n_vertices,).
        mask_outside : bool
            If True, return a masked array with points outside mesh masked;
            otherwise those points are NaN.

        Returns
        -------
        np.ndarray or np.ma.MaskedArray
            Field projected to grid, shape (ny, nx).
        """
        values = self.evaluator.apply(np.ravel(field))
        grid = values.reshape(self.shape)
        if mask_outside:
            return np.ma.masked_invalid(grid)
        return grid

    def summary(self) -> str:
        """Return a summary string of the projector."""
        covered = int(self.evaluator.inside.sum())
        zone = self.zone
        lines = [
            f"GridProjector {self.dims[0]} x {self.dims[1]} over "
            f"x [{self.xlim[0]:.4g}, {self.xlim[1]:.4g}], y [{self.ylim[0]:.4g}, {self.ylim[1]:.4g}]",
            f"  Covered: {covered} of {zone.size} points ({100 * self.coverage:.1f}%), "
            f"{int((zone == 0).sum())} in the inner zone",
            f"  Mesh nodes: {self.mesh.n}, projector nnz: {self.A.nnz}",
        ]
        return "\n".join(lines)


def grid_projector(
    mesh: Mesh2D,
    xlim: Optional[Tuple[float, float]] = None,
    ylim: Optional[Tuple[float, float]] = None,
    dims: Union[int, Tuple[int, int]] = (100, 100),
    padding: float = 0.0,
) -> GridProjector:
    """Create a grid projector for visualising mesh fields.

    Parameters
    ----------
    mesh : Mesh2D
        The mesh to project from.
    xlim, ylim : tuple of (float, float), optional
        Axis limits. Default to the mesh bounding box.
    dims : int or tuple of (int, int)
        Number of grid points (nx, ny). A single int is used for both.
    padding : float
        Fraction of the range added to each side of default limits.
        Negative values shrink them.
    """
    if isinstance(dims, int):
        dims = (dims, dims)
    dims = (int(dims[0]), int(dims[1]))
    bbox = mesh.bbox
    if xlim is None:
        x_min, x_max = bbox["x"]
        x_range = x_max - x_min
        xlim = (x_min - padding * x_range, x_max + padding * x_range)
    if ylim is None:
        y_min, y_max = bbox["y"]
        y_range = y_max - y_min
        ylim = (y_min - padding * y_range, y_max + padding * y_range)
    return GridProjector(mesh=mesh, xlim=xlim, ylim=ylim, dims=dims)
