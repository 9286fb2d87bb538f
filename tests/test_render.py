import numpy as np
import pytest
from numpy.testing import assert_allclose

from spdemesh.mesh import Mesh2D
from spdemesh.render import (
    Mesh1DRenderer,
    Mesh2DRenderer,
    _RENDERERS,
    register_renderer,
    renderer_for,
)


@pytest.fixture
def restore_registry():
    saved = dict(_RENDERERS)
    yield
    _RENDERERS.clear()
    _RENDERERS.update(saved)


class TestRenderers:
    def test_lookup_by_type(self, mesh1d, mesh2d):
        assert isinstance(renderer_for(mesh1d), Mesh1DRenderer)
        assert isinstance(renderer_for(mesh2d), Mesh2DRenderer)

    def test_unknown_type(self):
        with pytest.raises(TypeError, match="No renderer"):
            renderer_for(np.zeros(3))

    def test_1d_geometry(self, mesh1d):
        r = renderer_for(mesh1d)
        segments = r.segments()
        assert segments.shape == (4, 2, 1)
        assert_allclose(segments[:, 0, 0], [1, 2, 3, 4])
        assert_allclose(r.outline()[0].ravel(), [1.0, 6.0])
        assert r.bbox() == {"x": (1.0, 6.0)}
        assert r.nodes().shape == (mesh1d.n,)

    def test_2d_segments(self, mesh2d):
        segments = renderer_for(mesh2d).segments()
        assert segments.shape == (mesh2d.n_edge, 2, 2)

    def test_2d_outline_is_closed(self, mesh2d):
        loops = renderer_for(mesh2d).outline()
        assert len(loops) == 1
        loop = loops[0]
        assert_allclose(loop[0], loop[-1])
        # the outline encloses the whole triangulation
        x = loop[:, 0]
        y = loop[:, 1]
        area = 0.5 * np.sum(x[:-1] * y[1:] - x[1:] * y[:-1])
        assert area == pytest.approx(mesh2d.area)

    def test_2d_triangulation(self, mesh2d):
        x, y, triangles = renderer_for(mesh2d).triangulation()
        assert x.shape == y.shape == (mesh2d.n,)
        assert triangles.shape == (mesh2d.n_triangle, 3)
        assert renderer_for(mesh2d).bbox() == mesh2d.bbox

    def test_register_renderer(self, restore_registry):
        class SquareMesh(Mesh2D):
            pass

        mesh = SquareMesh(loc=np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]), tv=[[0, 1, 2]])
        with pytest.raises(TypeError):
            renderer_for(mesh)
        register_renderer(SquareMesh, Mesh2DRenderer)
        assert isinstance(renderer_for(mesh), Mesh2DRenderer)

    def test_register_needs_class(self, restore_registry):
        with pytest.raises(TypeError, match="class"):
            register_renderer("Mesh2D", Mesh2DRenderer)
