"""Mesh, evaluator and FEM value classes."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy import sparse


def _frozen_array(arr: Any, dtype: Any) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out.flags.writeable = False
    return out


def _canonical_sparse(mat: Any) -> sparse.csr_matrix:
    mat = sparse.csr_matrix(mat, dtype=float, copy=True)
    mat.sum_duplicates()
    for arr in (mat.data, mat.indices, mat.indptr):
        arr.flags.writeable = False
    return mat


def _frozen_meta(meta: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(meta))


@dataclass(frozen=True, eq=False)
class Segment:
    """A polygon or polyline used as a boundary or interior constraint.

    Attributes
    ----------
    loc : np.ndarray
        Vertex locations, shape (n_vertices, 2).
    idx : np.ndarray
        Segment edge indices (0-based), shape (n_edges, 2).
    is_bnd : bool
        True if this is a boundary segment, False for interior constraint.
    grp : np.ndarray, optional
        Group labels for each edge.
    crs : str, optional
        Coordinate reference system.
    """

    loc: np.ndarray
    idx: np.ndarray
    is_bnd: bool = True
    grp: Optional[np.ndarray] = None
    crs: Optional[str] = None

    def __post_init__(self) -> None:
        loc = np.asarray(self.loc, dtype=float)
        if loc.ndim == 1:
            loc = loc.reshape(-1, 2)
        object.__setattr__(self, "loc", _frozen_array(loc, float))
        idx = np.asarray(self.idx, dtype=np.int64).reshape(-1, 2)
        object.__setattr__(self, "idx", _frozen_array(idx, np.int64))
        if self.grp is not None:
            object.__setattr__(self, "grp", _frozen_array(self.grp, np.int64))

    @property
    def n_vertices(self) -> int:
        """Number of vertices in the segment."""
        return self.loc.shape[0]

    @property
    def n_edges(self) -> int:
        """Number of edges in the segment."""
        return self.idx.shape[0]

    @property
    def is_closed(self) -> bool:
        """True if every vertex starts exactly one edge and ends exactly one edge."""
        if self.n_edges < 3:
            return False
        starts = np.bincount(self.idx[:, 0], minlength=self.n_vertices)
        ends = np.bincount(self.idx[:, 1], minlength=self.n_vertices)
        used = (starts + ends) > 0
        return bool(np.all(starts[used] == 1) and np.all(ends[used] == 1))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "loc": self.loc,
            "idx": self.idx,
            "is_bnd": self.is_bnd,
        }
        if self.grp is not None:
            result["grp"] = self.grp
        if self.crs is not None:
            result["crs"] = self.crs
        return result


@dataclass(frozen=True, eq=False)
class Mesh2D:
    """A 2D triangular mesh.

    Attributes
    ----------
    loc : np.ndarray
        Vertex locations, shape (n, 2).
    tv : np.ndarray
        Triangle vertex indices (0-based), shape (n_triangles, 3), counter-clockwise.
    vv : np.ndarray
        Unique vertex-to-vertex edges, shape (n_edges, 2), sorted pairs.
    tt : np.ndarray
        Triangle-to-triangle adjacency, shape (n_triangles, 3). Column k holds
        the neighbour opposite vertex k (-1 if no neighbor).
    is_boundary : np.ndarray
        Boolean flag per vertex, True for vertices on the mesh boundary.
    zone : np.ndarray
        Zone label per triangle: 0 for the inner region, 1 for the outer padding.
    max_edge : tuple of (float, float)
        Maximum edge length applied in the inner and outer zones.
    segm_bnd : tuple of Segment
        Outer boundary of the triangulation.
    segm_int : tuple of Segment
        Inner (region of interest) boundary.
    manifold : str
        Manifold type, always "R2".
    crs : str, optional
        Coordinate reference system.
    meta : Mapping
        Construction parameters and diagnostics (read-only).
    """

    loc: np.ndarray
    tv: np.ndarray
    vv: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.int64))
    tt: np.ndarray = field(default_factory=lambda: np.empty((0, 3), dtype=np.int64))
    is_boundary: Optional[np.ndarray] = None
    zone: Optional[np.ndarray] = None
    max_edge: Tuple[float, float] = (np.inf, np.inf)
    segm_bnd: Tuple[Segment, ...] = ()
    segm_int: Tuple[Segment, ...] = ()
    manifold: str = "R2"
    crs: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        loc = np.asarray(self.loc, dtype=float)
        tv = np.asarray(self.tv, dtype=np.int64).reshape(-1, 3)
        if tv.size and (tv.min() < 0 or tv.max() >= loc.shape[0]):
            raise ValueError("Triangle indices reference vertices outside 'loc'.")
        object.__setattr__(self, "loc", _frozen_array(loc, float))
        object.__setattr__(self, "tv", _frozen_array(tv, np.int64))
        object.__setattr__(self, "vv", _frozen_array(np.asarray(self.vv).reshape(-1, 2), np.int64))
        object.__setattr__(self, "tt", _frozen_array(np.asarray(self.tt).reshape(-1, 3), np.int64))
        is_boundary = self.is_boundary
        if is_boundary is None:
            is_boundary = np.zeros(loc.shape[0], dtype=bool)
        object.__setattr__(self, "is_boundary", _frozen_array(is_boundary, bool))
        zone = self.zone
        if zone is None:
            zone = np.zeros(tv.shape[0], dtype=np.int8)
        object.__setattr__(self, "zone", _frozen_array(zone, np.int8))
        object.__setattr__(self, "max_edge", tuple(float(x) for x in self.max_edge))
        object.__setattr__(self, "segm_bnd", tuple(self.segm_bnd))
        object.__setattr__(self, "segm_int", tuple(self.segm_int))
        object.__setattr__(self, "meta", _frozen_meta(self.meta))

    @property
    def n(self) -> int:
        """Number of vertices in the mesh."""
        return self.loc.shape[0]

    node_count = n

    @property
    def n_triangle(self) -> int:
        """Number of triangles in the mesh."""
        return self.tv.shape[0]

    @property
    def n_edge(self) -> int:
        """Number of edges in the mesh."""
        return self.vv.shape[0]

    @property
    def elements(self) -> np.ndarray:
        """Element connectivity (the triangles)."""
        return self.tv

    @property
    def dim(self) -> int:
        """Coordinate dimension."""
        return self.loc.shape[1]

    @property
    def bbox(self) -> Dict[str, Tuple[float, float]]:
        """Bounding box of the mesh."""
        return {
            "x": (float(self.loc[:, 0].min()), float(self.loc[:, 0].max())),
            "y": (float(self.loc[:, 1].min()), float(self.loc[:, 1].max())),
        }

    @property
    def triangle_area(self) -> np.ndarray:
        """Area of each triangle."""
        p0, p1, p2 = (self.loc[self.tv[:, k]] for k in range(3))
        e1 = p1 - p0
        e2 = p2 - p0
        return 0.5 * np.abs(e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0])

    @property
    def edge_length(self) -> np.ndarray:
        """Edge lengths per triangle, shape (n_triangles, 3); column k is opposite vertex k."""
        p = self.loc[self.tv]
        return np.column_stack([
            np.linalg.norm(p[:, 2] - p[:, 1], axis=1),
            np.linalg.norm(p[:, 0] - p[:, 2], axis=1),
            np.linalg.norm(p[:, 1] - p[:, 0], axis=1),
        ])

    @property
    def triangle_angles(self) -> np.ndarray:
        """Interior angles in radians, shape (n_triangles, 3); column k is at vertex k."""
        a, b, c = self.edge_length.T
        # law of cosines, clipped against rounding just outside [-1, 1]
        cos = np.column_stack([
            (b ** 2 + c ** 2 - a ** 2) / (2.0 * b * c),
            (a ** 2 + c ** 2 - b ** 2) / (2.0 * a * c),
            (a ** 2 + b ** 2 - c ** 2) / (2.0 * a * b),
        ])
        return np.arccos(np.clip(cos, -1.0, 1.0))

    @property
    def area(self) -> float:
        """Total area covered by the triangulation."""
        return float(self.triangle_area.sum())

    def to_dict(self) -> Dict[str, Any]:
        """Convert mesh to dictionary representation."""
        return {
            "loc": self.loc,
            "tv": self.tv,
            "vv": self.vv,
            "tt": self.tt,
            "is_boundary": self.is_boundary,
            "zone": self.zone,
            "max_edge": self.max_edge,
            "n": self.n,
            "n_triangle": self.n_triangle,
            "n_edge": self.n_edge,
            "manifold": self.manifold,
            "crs": self.crs,
            "segm_bnd": [s.to_dict() for s in self.segm_bnd],
            "segm_int": [s.to_dict() for s in self.segm_int],
            "meta": dict(self.meta),
        }

    def summary(self) -> str:
        """Return a summary string of the mesh."""
        lines = [
            "Mesh2D:",
            f"  Manifold: {self.manifold}",
            f"  Vertices: {self.n} ({int(self.is_boundary.sum())} on boundary)",
            f"  Triangles: {self.n_triangle} "
            f"({int((self.zone == 0).sum())} inner, {int((self.zone == 1).sum())} outer)",
            f"  Edges: {self.n_edge}",
            f"  Max edge: inner {self.max_edge[0]:.4g}, outer {self.max_edge[1]:.4g}",
        ]
        if self.n_triangle:
            lines.append(f"  Smallest angle: {np.degrees(self.triangle_angles.min()):.2f} deg")
        bbox = self.bbox
        lines.append(f"  x range: [{bbox['x'][0]:.4f}, {bbox['x'][1]:.4f}]")
        lines.append(f"  y range: [{bbox['y'][0]:.4f}, {bbox['y'][1]:.4f}]")
        if self.crs:
            lines.append(f"  CRS: {self.crs}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Mesh2D(n={self.n}, n_triangle={self.n_triangle}, manifold='{self.manifold}')"


@dataclass(frozen=True, eq=False)
class Mesh1D:
    """A 1D B-spline mesh over an interval.

    Attributes
    ----------
    loc : np.ndarray
        Sorted, unique knot locations, shape (m,).
    degree : int
        Basis degree, 1 (piecewise linear) or 2 (quadratic B-splines).
    boundary : tuple of (str, str)
        Boundary condition at the left and right end.
    knots : np.ndarray
        Knot vector extended for the basis: equal to ``loc`` for degree 1,
        ``loc`` plus one mirrored knot beyond each end for degree 2.
    node_loc : np.ndarray
        Representative location of each basis function, shape (n,).
    is_boundary : np.ndarray
        Boolean flag per basis function, True if it is active at an end point.
    transform : sparse.csr_matrix
        Map from the unconstrained B-spline basis (columns of the raw design
        matrix) to the boundary-constrained basis, shape (n_full, n).
    crs : str, optional
        Coordinate reference system.
    meta : Mapping
        Construction parameters (read-only).
    """

    loc: np.ndarray
    degree: int
    boundary: Tuple[str, str]
    knots: np.ndarray
    node_loc: np.ndarray
    is_boundary: np.ndarray
    transform: sparse.csr_matrix
    crs: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    manifold = "R1"

    def __post_init__(self) -> None:
        object.__setattr__(self, "loc", _frozen_array(np.ravel(self.loc), float))
        object.__setattr__(self, "knots", _frozen_array(np.ravel(self.knots), float))
        object.__setattr__(self, "node_loc", _frozen_array(np.ravel(self.node_loc), float))
        object.__setattr__(self, "is_boundary", _frozen_array(self.is_boundary, bool))
        object.__setattr__(self, "transform", _canonical_sparse(self.transform))
        object.__setattr__(self, "boundary", tuple(self.boundary))
        object.__setattr__(self, "meta", _frozen_meta(self.meta))

    @property
    def n(self) -> int:
        """Number of basis functions (mesh nodes)."""
        return self.transform.shape[1]

    node_count = n

    @property
    def m(self) -> int:
        """Number of knots."""
        return self.loc.shape[0]

    @property
    def dim(self) -> int:
        return 1

    @property
    def interval(self) -> Tuple[float, float]:
        """Domain of the mesh."""
        return float(self.loc[0]), float(self.loc[-1])

    @property
    def elements(self) -> np.ndarray:
        """Knot index pairs of the intervals, shape (m - 1, 2)."""
        idx = np.arange(self.m - 1, dtype=np.int64)
        return np.column_stack([idx, idx + 1])

    @property
    def n_element(self) -> int:
        return self.m - 1

    @property
    def spline_knots(self) -> np.ndarray:
        """Full knot vector handed to the B-spline evaluator (ends repeated)."""
        return np.concatenate([self.knots[:1], self.knots, self.knots[-1:]])

    def to_dict(self) -> Dict[str, Any]:
        """Convert mesh to dictionary representation."""
        return {
            "loc": self.loc,
            "degree": self.degree,
            "boundary": self.boundary,
            "knots": self.knots,
            "node_loc": self.node_loc,
            "is_boundary": self.is_boundary,
            "n": self.n,
            "m": self.m,
            "interval": self.interval,
            "manifold": self.manifold,
            "crs": self.crs,
            "meta": dict(self.meta),
        }

    def summary(self) -> str:
        """Return a summary string of the mesh."""
        lines = [
            "Mesh1D:",
            f"  Interval: [{self.interval[0]:.4f}, {self.interval[1]:.4f}]",
            f"  Knots: {self.m}",
            f"  Degree: {self.degree}",
            f"  Boundary: {self.boundary[0]}, {self.boundary[1]}",
            f"  Basis functions: {self.n}",
        ]
        if self.crs:
            lines.append(f"  CRS: {self.crs}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Mesh1D(m={self.m}, n={self.n}, degree={self.degree}, boundary={self.boundary})"


Mesh = Union[Mesh1D, Mesh2D]


@dataclass(frozen=True, eq=False)
class Evaluator:
    """Sparse projector from mesh-node coefficients to query locations.

    Attributes
    ----------
    A : sparse.csr_matrix
        Projection matrix of shape (n_query, n_nodes). Each row holds the
        basis weights of one query location; rows of locations outside the
        mesh are empty.
    loc : np.ndarray
        Query locations, shape (n_query, dim).
    inside : np.ndarray
        Boolean mask, True where the query location is inside the mesh.
    element : np.ndarray
        Index of the element (interval or triangle) containing each query
        location, -1 outside.
    outside : str
        Out-of-domain policy used when building ("error" or "mask").
    crs : str, optional
        Coordinate reference system of the query locations.
    """

    A: sparse.csr_matrix
    loc: np.ndarray
    inside: np.ndarray
    element: np.ndarray
    outside: str = "error"
    crs: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "A", _canonical_sparse(self.A))
        object.__setattr__(self, "loc", _frozen_array(self.loc, float))
        object.__setattr__(self, "inside", _frozen_array(self.inside, bool))
        object.__setattr__(self, "element", _frozen_array(self.element, np.int64))

    @property
    def n_query(self) -> int:
        """Number of query locations."""
        return self.A.shape[0]

    @property
    def n_nodes(self) -> int:
        """Number of mesh nodes."""
        return self.A.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.A.shape

    @property
    def T(self) -> sparse.csc_matrix:
        """Transposed projector, mapping location data onto mesh nodes."""
        return self.A.T

    def apply(self, coefficients: np.ndarray) -> np.ndarray:
        """Evaluate mesh-node coefficients at the query locations.

        Parameters
        ----------
        coefficients : np.ndarray
            Node values, shape (n_nodes,), or one column per draw,
            shape (n_nodes, k).

        Returns
        -------
        np.ndarray
            Values at the query locations, shape (n_query,) or (n_query, k).
            Locations outside the mesh are NaN.
        """
        values = np.asarray(coefficients, dtype=float)
        if values.ndim not in (1, 2) or values.shape[0] != self.n_nodes:
            raise ValueError(
                f"Coefficient length ({values.shape[0] if values.ndim else 0}) does not "
                f"match the number of mesh nodes ({self.n_nodes})"
            )
        out = np.asarray(self.A @ values, dtype=float)
        if not self.inside.all():
            out[~self.inside] = np.nan
        return out

    __call__ = apply

    def triples(self, as_frame: bool = True) -> Union[pd.DataFrame, Tuple[np.ndarray, ...]]:
        """Return the (location, node, weight) triples of the projector.

        Parameters
        ----------
        as_frame : bool
            If True (default), return a DataFrame with columns
            ``location``, ``node`` and ``weight``; otherwise a tuple of arrays.
        """
        coo = self.A.tocoo()
        order = np.lexsort((coo.col, coo.row))
        location = coo.row[order].astype(np.int64)
        node = coo.col[order].astype(np.int64)
        weight = coo.data[order]
        if not as_frame:
            return location, node, weight
        return pd.DataFrame({"location": location, "node": node, "weight": weight})

    def summary(self) -> str:
        """Return a summary string of the evaluator."""
        lines = [
            "Evaluator:",
            f"  Query locations: {self.n_query} ({int(self.inside.sum())} inside)",
            f"  Mesh nodes: {self.n_nodes}",
            f"  Projection matrix: {self.A.shape}, nnz={self.A.nnz}",
            f"  Outside policy: {self.outside}",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Evaluator(n_query={self.n_query}, n_nodes={self.n_nodes}, outside='{self.outside}')"


@dataclass(frozen=True, eq=False)
class FEM:
    """Finite Element Method matrices computed from a mesh.

    These matrices are used for SPDE-based spatial modeling.

    Attributes
    ----------
    c0 : np.ndarray
        Lumped mass matrix diagonal (dual area or length per node), shape (n,).
    c1 : sparse.csr_matrix
        Full mass matrix, sparse (n, n).
    g1 : sparse.csr_matrix
        First-order stiffness matrix, sparse (n, n).
    g2 : sparse.csr_matrix, optional
        Second-order stiffness matrix g1 c0^-1 g1. Only computed if order >= 2.
    va : np.ndarray
        Dual area (2D) or length (1D) for each node, shape (n,).
    ta : np.ndarray
        Element areas (2D) or lengths (1D).
    order : int
        FEM order used for computation.
    dim : int
        Dimension of the mesh the matrices were assembled on.
    zone : np.ndarray, optional
        Zone of each triangle (0 inner, 1 padding); None for 1D meshes.
    """

    c0: np.ndarray
    c1: sparse.csr_matrix
    g1: sparse.csr_matrix
    va: np.ndarray
    ta: np.ndarray
    order: int = 2
    g2: Optional[sparse.csr_matrix] = None
    dim: int = 2
    zone: Optional[np.ndarray] = None

    @property
    def n(self) -> int:
        """Number of mesh nodes."""
        return len(self.c0)

    @property
    def n_element(self) -> int:
        """Number of elements."""
        return len(self.ta)

    @property
    def measure(self) -> float:
        """Total area (2D) or length (1D) of the mesh domain."""
        return float(self.ta.sum())

    def precision(self, kappa: float) -> sparse.csr_matrix:
        """Matérn SPDE precision for alpha = 2, without the tau^2 scaling.

        ``Q = kappa^4 C + 2 kappa^2 G + G C^-1 G`` with the lumped mass ``C``.
        """
        if self.g2 is None:
            raise ValueError("The alpha = 2 precision needs g2; assemble with order >= 2.")
        k2 = float(kappa) ** 2
        return sparse.csr_matrix(k2 * k2 * sparse.diags(self.c0) + 2.0 * k2 * self.g1 + self.g2)

    def to_dict(self) -> Dict[str, Any]:
        """Fields by name, leaving out the ones that were not computed."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    def summary(self) -> str:
        """Return a summary string of the FEM matrices."""
        element, measure = ("triangles", "area") if self.dim == 2 else ("intervals", "length")
        lines = [
            f"FEM order {self.order}: {self.n} nodes on {self.n_element} {element}",
            f"  Domain {measure}: {self.measure:.4g}",
        ]
        if self.zone is not None:
            inner = float(self.ta[self.zone == 0].sum())
            lines.append(f"  Inner {measure}: {inner:.4g}, padding {measure}: {self.measure - inner:.4g}")
        lines.append(f"  Lumped mass range: [{self.c0.min():.4g}, {self.c0.max():.4g}]")
        nnz = [f"{name}={mat.nnz}" for name, mat in (("c1", self.c1), ("g1", self.g1), ("g2", self.g2))
               if mat is not None]
        lines.append(f"  Non-zeros: {', '.join(nnz)}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"FEM(order={self.order}, dim={self.dim}, n={self.n}, n_element={self.n_element})"
