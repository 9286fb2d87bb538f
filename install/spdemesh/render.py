"""Drawing-library independent geometry export for meshes.

Each mesh type has a renderer that turns it into plain coordinate arrays
(edge segments, outline, bounding box). Renderers are looked up in an
explicit registry keyed by mesh type; ``register_renderer`` adds new ones.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Protocol, Tuple, Type

import numpy as np

from . import geometry as geom
from .mesh import Mesh1D, Mesh2D


class MeshRenderer(Protocol):
    def segments(self) -> np.ndarray:
        ...

    def outline(self) -> List[np.ndarray]:
        ...

    def bbox(self) -> Dict[str, Tuple[float, float]]:
        ...


class Mesh1DRenderer:
    """Intervals of a 1D mesh as horizontal segments."""

    def __init__(self, mesh: Mesh1D) -> None:
        self.mesh = mesh

    def segments(self) -> np.ndarray:
        """Interval end points, shape (m - 1, 2, 1)."""
        return self.mesh.loc[self.mesh.elements][:, :, None]

    def outline(self) -> List[np.ndarray]:
        """The two ends of the interval, as a single (2, 1) array."""
        return [np.array(self.mesh.interval)[:, None]]

    def bbox(self) -> Dict[str, Tuple[float, float]]:
        return {"x": self.mesh.interval}

    def nodes(self) -> np.ndarray:
        """Representative locations of the basis functions."""
        return self.mesh.node_loc


class Mesh2DRenderer:
    """Edges, triangles and boundary loops of a 2D mesh."""

    def __init__(self, mesh: Mesh2D) -> None:
        self.mesh = mesh

    def segments(self) -> np.ndarray:
        """Unique edges, shape (n_edge, 2, 2)."""
        return self.mesh.loc[self.mesh.vv]

    def outline(self) -> List[np.ndarray]:
        """Closed boundary loops (first vertex repeated at the end)."""
        loops = geom.edge_loops(geom.boundary_edges(self.mesh.tv))
        return [self.mesh.loc[np.append(loop, loop[0])] for loop in loops]

    def bbox(self) -> Dict[str, Tuple[float, float]]:
        return self.mesh.bbox

    def triangulation(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """``(x, y, triangles)``, the arguments of ``matplotlib.tri.Triangulation``."""
        return self.mesh.loc[:, 0], self.mesh.loc[:, 1], self.mesh.tv


_RENDERERS: Dict[type, Callable[..., MeshRenderer]] = {
    Mesh1D: Mesh1DRenderer,
    Mesh2D: Mesh2DRenderer,
}


def register_renderer(mesh_type: Type, renderer: Callable[..., MeshRenderer]) -> None:
    """Register (or replace) the renderer used for ``mesh_type``."""
    if not isinstance(mesh_type, type):
        raise TypeError(f"'mesh_type' must be a class, got {mesh_type!r}")
    _RENDERERS[mesh_type] = renderer


def renderer_for(mesh: object) -> MeshRenderer:
    """Renderer for ``mesh``, chosen by its exact type.

    Raises
    ------
    TypeError
        If no renderer is registered for the mesh type.
    """
    factory = _RENDERERS.get(type(mesh))
    if factory is None:
        raise TypeError(f"No renderer registered for {type(mesh).__name__}")
    return factory(mesh)
