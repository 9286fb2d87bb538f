"""Finite element matrices and integration points for SPDE models."""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from scipy import sparse
from scipy.interpolate import BSpline

from .mesh import FEM, Mesh, Mesh1D, Mesh2D

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

# 3-point Gauss-Legendre rule on [0, 1], exact for the degree-4 products
# of quadratic B-splines
_GAUSS_X = 0.5 + 0.5 * np.array([-np.sqrt(3.0 / 5.0), 0.0, np.sqrt(3.0 / 5.0)])
_GAUSS_W = np.array([5.0, 8.0, 5.0]) / 18.0

_Matrices = Tuple[sparse.csr_matrix, sparse.csr_matrix, np.ndarray, np.ndarray]


def _assemble(tv: np.ndarray, local: np.ndarray, n: int) -> sparse.csr_matrix:
    """Sum per-element (t, 3, 3) blocks into a global (n, n) matrix."""
    rows = np.repeat(tv, 3, axis=1).ravel()
    cols = np.tile(tv, (1, 3)).ravel()
    mat = sparse.csr_matrix((local.ravel(), (rows, cols)), shape=(n, n))
    mat.sum_duplicates()
    return mat


def _fem_2d(mesh: Mesh2D, triangles: np.ndarray) -> _Matrices:
    tv = mesh.tv[triangles]
    p = mesh.loc[tv]
    # b_i = y_j - y_k, c_i = x_k - x_j for cyclic (i, j, k)
    nxt = p[:, [1, 2, 0]]
    prv = p[:, [2, 0, 1]]
    b = nxt[:, :, 1] - prv[:, :, 1]
    c = prv[:, :, 0] - nxt[:, :, 0]
    area = mesh.triangle_area[triangles]

    stiff = (b[:, :, None] * b[:, None, :] + c[:, :, None] * c[:, None, :]) / (4.0 * area[:, None, None])
    mass = area[:, None, None] / 12.0 * (np.ones((3, 3)) + np.eye(3))[None, :, :]
    c1 = _assemble(tv, mass, mesh.n)
    g1 = _assemble(tv, stiff, mesh.n)
    c0 = np.asarray(c1.sum(axis=1)).ravel()
    return c1, g1, c0, area


def _spline_slope(x: np.ndarray, t: np.ndarray, k: int) -> sparse.csr_matrix:
    """Sparse first derivatives of the degree-k B-splines on knots ``t`` at ``x``.

    Uses B'_i = k (B_{i,k-1} / (t_{i+k} - t_i) - B_{i+1,k-1} / (t_{i+k+1} - t_{i+1})).
    The lower-degree splines are taken on ``t[1:-1]``, which drops the two
    that vanish inside the base interval.
    """
    n_full = t.size - k - 1
    lower = BSpline.design_matrix(x, np.ascontiguousarray(t[1:-1]), k - 1)
    span = t[1 + k:n_full + k] - t[1:n_full]
    scale = np.divide(k, span, out=np.zeros_like(span), where=span > 0)
    # column j of ``lower`` adds to spline j + 1 and subtracts from spline j
    diff = sparse.eye(n_full - 1, n_full, k=1) - sparse.eye(n_full - 1, n_full)
    return sparse.csr_matrix(lower @ sparse.diags(scale) @ diff)


def _fem_1d(mesh: Mesh1D) -> _Matrices:
    t = mesh.spline_knots
    k = mesh.degree
    length = np.diff(mesh.loc)
    xq = (mesh.loc[:-1, None] + length[:, None] * _GAUSS_X[None, :]).ravel()
    wq = (length[:, None] * _GAUSS_W[None, :]).ravel()

    basis = sparse.csr_matrix(BSpline.design_matrix(xq, t, k))
    slope = _spline_slope(xq, t, k)
    W = sparse.diags(wq)
    T = mesh.transform
    c1 = sparse.csr_matrix(T.T @ (basis.T @ W @ basis) @ T)
    g1 = sparse.csr_matrix(T.T @ (slope.T @ W @ slope) @ T)
    # integral of each basis function over the interval
    c0 = np.asarray(T.T @ (basis.T @ wq)).ravel()
    return c1, g1, c0, length


def fm_fem(mesh: Mesh, order: int = 2) -> FEM:
    """Compute Finite Element Method matrices from a mesh.

    Parameters
    ----------
    mesh : Mesh1D or Mesh2D
        A mesh object created by ``fm_mesh_1d`` or ``fm_mesh_2d``.
    order : int, optional
        The FEM order. Default is 2, which adds ``g2``.

    Returns
    -------
    FEM
        Object containing FEM matrices:
        - c0: Lumped mass matrix diagonal (n,)
        - c1: Full mass matrix, sparse (n, n)
        - g1: First-order stiffness matrix, sparse (n, n)
        - g2: Second-order stiffness matrix, sparse (n, n) if order >= 2
        - va: Dual area (2D) or length (1D) of each node (n,)
        - ta: Triangle areas or interval lengths

    Notes
    -----
    The FEM matrices are used to construct the SPDE precision matrix Q.
    For the Matern SPDE with alpha=2:
        Q = kappa^4 * C + 2 * kappa^2 * G + G * C^{-1} * G

    where C is the mass matrix and G is the stiffness matrix.

    1D matrices are integrated exactly with a 3-point Gauss rule per interval
    and expressed in the boundary-constrained basis of the mesh.

    Examples
    --------
    >>> locs = np.random.randn(100, 2)
    >>> mesh = fm_mesh_2d(loc=locs, max_edge=[0.5, 1.0], cutoff=0.1)
    >>> fem = fm_fem(mesh, order=2)
    >>> print(fem.summary())
    """
    if int(order) < 1:
        raise ValueError(f"'order' must be at least 1, got {order}")
    if isinstance(mesh, Mesh2D):
        c1, g1, c0, ta = _fem_2d(mesh, np.arange(mesh.n_triangle))
    elif isinstance(mesh, Mesh1D):
        c1, g1, c0, ta = _fem_1d(mesh)
    else:
        raise TypeError(f"Expected Mesh1D or Mesh2D, got {type(mesh).__name__}")

    g2 = None
    if order >= 2:
        with np.errstate(divide="ignore"):
            inv_c0 = np.where(c0 > 0, 1.0 / c0, 0.0)
        g2 = sparse.csr_matrix(g1 @ sparse.diags(inv_c0) @ g1)

    log.debug("FEM: %d nodes, %d elements, nnz(c1)=%d", c0.size, ta.size, c1.nnz)
    zone = mesh.zone if isinstance(mesh, Mesh2D) else None
    return FEM(
        c0=c0, c1=c1, g1=g1, va=c0.copy(), ta=ta, order=int(order), g2=g2,
        dim=mesh.dim, zone=zone,
    )


def fm_int(mesh: Mesh, inner_only: bool = False) -> Tuple[np.ndarray, np.ndarray]:
    """Integration points and weights for domain integrals.

    The points are the mesh nodes and the weights the integrals of their
    basis functions, so ``weights @ f(points)`` approximates the integral
    of ``f`` over the mesh domain, as needed for the LGCP intensity
    integral.

    Parameters
    ----------
    mesh : Mesh1D or Mesh2D
    inner_only : bool, optional
        For 2D meshes, integrate over the inner zone (region of interest)
        only, dropping the padding triangles.

    Returns
    -------
    points : np.ndarray
        Node locations, shape (n, 2) for 2D and (n,) for 1D.
    weights : np.ndarray
        Non-negative weights, shape (n,). They sum to the domain area or
        length, except under Dirichlet conditions where the pinned end
        carries no weight.
    """
    if isinstance(mesh, Mesh2D):
        triangles = np.flatnonzero(mesh.zone == 0) if inner_only else np.arange(mesh.n_triangle)
        _, _, weights, _ = _fem_2d(mesh, triangles)
        return mesh.loc.copy(), weights
    if isinstance(mesh, Mesh1D):
        if inner_only:
            raise ValueError("'inner_only' only applies to 2D meshes.")
        _, _, weights, _ = _fem_1d(mesh)
        return mesh.node_loc.copy(), weights
    raise TypeError(f"Expected Mesh1D or Mesh2D, got {type(mesh).__name__}")
