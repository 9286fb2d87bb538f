#!/usr/bin/env python
"""Example usage of spdemesh.

Run this script to try the mesh builders and the evaluator:
    python -m spdemesh.example
"""

import numpy as np


def main(seed=42):
    print("=" * 60)
    print("spdemesh - Example")
    print("=" * 60)

    from spdemesh import (
        build_evaluator,
        fm_fem,
        fm_mesh_1d,
        fm_mesh_2d,
        fm_nonconvex_hull,
        fm_segm,
    )

    rng = np.random.default_rng(seed)
    locs = rng.uniform(0.0, 10.0, size=(60, 2))

    # Example 1: mesh with automatic convex padding
    print("\n" + "-" * 40)
    print("Example 1: Mesh from random points")
    print("-" * 40)

    mesh = fm_mesh_2d(
        loc=locs,
        max_edge=[1.0, 3.0],  # inner and outer max edge lengths
        cutoff=0.2,  # minimum point separation
    )
    print(mesh.summary())

    # Example 2: non-convex hull as the inner boundary
    print("\n" + "-" * 40)
    print("Example 2: Mesh with non-convex hull")
    print("-" * 40)

    boundary = fm_nonconvex_hull(locs, convex=-0.1)
    print(f"Non-convex hull: {boundary.n_vertices} vertices, {boundary.n_edges} edges")
    mesh_hull = fm_mesh_2d(loc=locs, boundary=boundary, max_edge=[1.5, 3.0], cutoff=0.2)
    print(mesh_hull.summary())

    # Example 3: explicit square boundary
    print("\n" + "-" * 40)
    print("Example 3: Mesh with custom boundary")
    print("-" * 40)

    corners = np.array([[-1, -1], [11, -1], [11, 11], [-1, 11]])
    mesh_custom = fm_mesh_2d(
        loc=locs,
        boundary=fm_segm(corners, is_bnd=True),
        max_edge=[1.5, 3.0],
        cutoff=0.2,
    )
    print(mesh_custom.summary())

    # Example 4: evaluator and FEM matrices
    print("\n" + "-" * 40)
    print("Example 4: Evaluator and FEM matrices")
    print("-" * 40)

    ev = build_evaluator(mesh, locs)
    print(ev.summary())
    print(f"Row sums in [{ev.A.sum(axis=1).min():.6f}, {ev.A.sum(axis=1).max():.6f}]")
    print(fm_fem(mesh).summary())

    # Example 5: 1D quadratic B-spline mesh
    print("\n" + "-" * 40)
    print("Example 5: 1D mesh")
    print("-" * 40)

    mesh_1d = fm_mesh_1d([1, 2, 3, 4, 6], boundary=["neumann", "free"], degree=2)
    print(mesh_1d.summary())
    print(f"Weights at x=2.5:\n{build_evaluator(mesh_1d, [2.5]).triples()}")

    print("\n" + "=" * 60)
    print("All examples completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    main()
