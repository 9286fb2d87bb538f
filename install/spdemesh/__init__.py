"""Meshes and sparse evaluators for SPDE spatial models.

This package builds the spatial discretisation used by SPDE/Matern latent
fields (1D B-spline meshes and refined 2D triangulations) together with the
sparse projector that maps mesh-node coefficients to arbitrary locations.

Example:
    >>> from spdemesh import fm_mesh_2d, build_evaluator
    >>> import numpy as np
    >>>
    >>> locs = np.random.rand(100, 2)
    >>> mesh = fm_mesh_2d(loc=locs, max_edge=[0.1, 0.3], cutoff=0.01)
    >>> print(f"Mesh: {mesh.n} vertices, {mesh.n_triangle} triangles")
    >>> A = build_evaluator(mesh, locs).A
"""

import importlib

__version__ = "0.1.0"

# public name -> defining submodule; submodules load on first access
_EXPORTS = {
    "build_mesh": "core",
    "fm_mesh_1d": "core",
    "fm_mesh_2d": "core",
    "fm_segm": "core",
    "fm_extensions": "core",
    "fm_nonconvex_hull": "core",
    "build_evaluator": "evaluator",
    "fm_evaluator": "evaluator",
    "fm_evaluate": "evaluator",
    "grid_projector": "evaluator",
    "GridProjector": "evaluator",
    "fm_fem": "fem",
    "fm_int": "fem",
    "Component": "components",
    "ComponentList": "components",
    "Design": "components",
    "renderer_for": "render",
    "register_renderer": "render",
    "Mesh1DRenderer": "render",
    "Mesh2DRenderer": "render",
    "Mesh1D": "mesh",
    "Mesh2D": "mesh",
    "Segment": "mesh",
    "Evaluator": "mesh",
    "FEM": "mesh",
    "get_option": "options",
    "set_option": "options",
    "reset_options": "options",
    "MeshError": "exceptions",
    "DegenerateInputError": "exceptions",
    "InvalidBoundaryError": "exceptions",
    "ResolutionError": "exceptions",
    "OutOfDomainError": "exceptions",
    "CRSMismatchError": "exceptions",
}


def __getattr__(name):
    """Import public names from their submodule when first accessed."""
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(f"module 'spdemesh' has no attribute '{name}'")
    value = getattr(importlib.import_module(f".{module}", __name__), name)
    globals()[name] = value
    return value


def __dir__():
    return sorted(set(globals()) | set(_EXPORTS))


__all__ = list(_EXPORTS)
