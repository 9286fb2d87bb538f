import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from spdemesh import build_evaluator, fm_evaluate, fm_evaluator, grid_projector
from spdemesh import geometry as geom
from spdemesh.evaluator import GridProjector
from spdemesh.exceptions import CRSMismatchError, OutOfDomainError
from spdemesh.mesh import Mesh2D
from spdemesh.options import set_option


@pytest.fixture
def unit_square():
    """Two triangles sharing the diagonal (0, 0)-(1, 1)."""
    loc = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    tv = np.array([[0, 1, 2], [0, 2, 3]])
    return Mesh2D(loc=loc, tv=tv, crs="EPSG:32633")


class TestLocation:
    """Containing triangle and barycentric weights"""

    def test_weights_inside_triangle(self, unit_square):
        ev = build_evaluator(unit_square, [[0.75, 0.25]])
        assert ev.element[0] == 0
        assert_allclose(ev.A.toarray(), [[0.25, 0.5, 0.25, 0.0]], atol=1e-12)

    def test_shared_edge_goes_to_lowest_triangle(self, unit_square):
        ev = build_evaluator(unit_square, [[0.5, 0.5], [0.25, 0.25]])
        assert_array_equal(ev.element, [0, 0])
        assert_allclose(ev.A.toarray()[0], [0.5, 0.0, 0.5, 0.0], atol=1e-12)

    def test_shared_vertex_goes_to_lowest_triangle(self, unit_square):
        ev = build_evaluator(unit_square, [[0.0, 0.0], [0.0, 1.0]])
        assert_array_equal(ev.element, [0, 1])

    def test_rows_sum_to_one(self, mesh2d, anchors):
        ev = build_evaluator(mesh2d, anchors)
        assert_allclose(np.asarray(ev.A.sum(axis=1)).ravel(), 1.0, atol=1e-12)
        assert ev.A.min() >= 0.0
        assert np.diff(ev.A.indptr).max() <= 3

    def test_vertices_interpolate(self, mesh2d):
        ev = build_evaluator(mesh2d, mesh2d.loc)
        dense = ev.A.toarray()
        assert_allclose(dense, np.eye(mesh2d.n), atol=1e-9)

    def test_linear_reproduction(self, mesh2d):
        rng = np.random.default_rng(7)
        pts = rng.uniform(1.0, 9.0, size=(200, 2))
        field = 2.0 - 0.5 * mesh2d.loc[:, 0] + 1.5 * mesh2d.loc[:, 1]
        expected = 2.0 - 0.5 * pts[:, 0] + 1.5 * pts[:, 1]
        assert_allclose(build_evaluator(mesh2d, pts).apply(field), expected, atol=1e-9)

    def test_element_contains_point(self, mesh2d):
        rng = np.random.default_rng(11)
        pts = rng.uniform(0.0, 10.0, size=(50, 2))
        ev = build_evaluator(mesh2d, pts)
        corners = mesh2d.loc[mesh2d.tv[ev.element]]
        assert np.all(pts[:, 0] >= corners[:, :, 0].min(axis=1) - 1e-9)
        assert np.all(pts[:, 0] <= corners[:, :, 0].max(axis=1) + 1e-9)

    def test_single_location_1d_array(self, unit_square):
        ev = build_evaluator(unit_square, np.array([0.2, 0.1]))
        assert ev.shape == (1, 4)

    def test_many_locations(self, mesh2d):
        rng = np.random.default_rng(3)
        pts = rng.uniform(0.0, 10.0, size=(60_000, 2))
        ev = build_evaluator(mesh2d, pts)
        assert ev.inside.all()
        assert_allclose(ev.apply(np.ones(mesh2d.n)), 1.0, atol=1e-12)


class TestOutside:
    def test_error_lists_offending_indices(self, mesh2d):
        pts = np.array([[5.0, 5.0], [100.0, 100.0], [2.0, 3.0], [-50.0, 0.0]])
        with pytest.raises(OutOfDomainError, match="2 location"):
            build_evaluator(mesh2d, pts)
        try:
            build_evaluator(mesh2d, pts)
        except OutOfDomainError as err:
            assert_array_equal(err.indices, [1, 3])

    def test_mask_policy(self, mesh2d):
        pts = np.array([[5.0, 5.0], [100.0, 100.0]])
        ev = build_evaluator(mesh2d, pts, outside="mask")
        assert_array_equal(ev.inside, [True, False])
        assert ev.element[1] == -1
        assert ev.A[1].nnz == 0
        values = ev.apply(np.ones(mesh2d.n))
        assert values[0] == pytest.approx(1.0)
        assert np.isnan(values[1])

    def test_non_finite_location_is_outside(self, unit_square):
        ev = build_evaluator(unit_square, [[np.nan, 0.5], [0.5, 0.2]], outside="mask")
        assert_array_equal(ev.inside, [False, True])

    def test_default_policy_from_options(self, unit_square):
        set_option("eval.outside", "mask")
        ev = build_evaluator(unit_square, [[2.0, 2.0]])
        assert ev.outside == "mask"
        assert not ev.inside[0]

    def test_tolerance_admits_points_on_the_edge(self, unit_square):
        ev = build_evaluator(unit_square, [[1.0 + 1e-13, 0.5]])
        assert ev.inside[0]
        assert_allclose(ev.A.sum(), 1.0)

    def test_unknown_policy(self, unit_square):
        with pytest.raises(ValueError, match="'outside'"):
            build_evaluator(unit_square, [[0.5, 0.5]], outside="ignore")


class TestEvaluatorAPI:
    def test_multiple_draws(self, mesh2d, anchors):
        ev = build_evaluator(mesh2d, anchors[:5])
        draws = np.column_stack([np.ones(mesh2d.n), 2.0 * np.ones(mesh2d.n), mesh2d.loc[:, 0]])
        out = ev.apply(draws)
        assert out.shape == (5, 3)
        assert_allclose(out[:, 1], 2.0)
        assert_allclose(out[:, 2], anchors[:5, 0], atol=1e-9)

    def test_call_is_apply(self, unit_square):
        ev = build_evaluator(unit_square, [[0.3, 0.6]])
        field = np.array([1.0, 2.0, 3.0, 4.0])
        assert_allclose(ev(field), ev.apply(field))

    def test_length_mismatch(self, unit_square):
        ev = build_evaluator(unit_square, [[0.5, 0.5]])
        with pytest.raises(ValueError, match="does not match"):
            ev.apply(np.ones(3))

    def test_transpose_aggregates_to_nodes(self, unit_square):
        ev = build_evaluator(unit_square, [[0.75, 0.25], [0.25, 0.75]])
        assert_allclose(ev.T @ np.ones(2), np.asarray(ev.A.sum(axis=0)).ravel())

    def test_triples(self, unit_square):
        ev = build_evaluator(unit_square, [[0.75, 0.25], [0.25, 0.75]])
        triples = ev.triples()
        assert isinstance(triples, pd.DataFrame)
        assert list(triples.columns) == ["location", "node", "weight"]
        assert triples["location"].is_monotonic_increasing
        assert_allclose(triples.groupby("location")["weight"].sum(), 1.0)
        location, node, weight = ev.triples(as_frame=False)
        assert location.size == node.size == weight.size == len(triples)

    def test_crs_mismatch(self, unit_square):
        with pytest.raises(CRSMismatchError):
            build_evaluator(unit_square, [[0.5, 0.5]], crs="EPSG:4326")

    def test_crs_inherited_from_mesh(self, unit_square):
        ev = build_evaluator(unit_square, [[0.5, 0.5]], crs="EPSG:32633")
        assert ev.crs == "EPSG:32633"
        assert build_evaluator(unit_square, [[0.5, 0.5]]).crs == "EPSG:32633"

    def test_wrong_location_shape(self, unit_square):
        with pytest.raises(ValueError, match=r"\(n, 2\)"):
            build_evaluator(unit_square, np.zeros((4, 3)))

    def test_not_a_mesh(self):
        with pytest.raises(TypeError):
            build_evaluator(object(), [[0.0, 0.0]])

    def test_alias_and_fm_evaluate(self, unit_square):
        ev = fm_evaluator(unit_square, [[0.5, 0.5]])
        assert_allclose(fm_evaluate(ev, np.array([0.0, 1.0, 2.0, 3.0])), [1.0])

    def test_summary(self, unit_square):
        ev = build_evaluator(unit_square, [[0.5, 0.5], [3.0, 3.0]], outside="mask")
        assert "(1 inside)" in ev.summary()
        assert repr(ev) == "Evaluator(n_query=2, n_nodes=4, outside='mask')"

    def test_immutable(self, unit_square):
        ev = build_evaluator(unit_square, [[0.5, 0.5]])
        with pytest.raises(ValueError):
            ev.inside[0] = False
        for arr in (ev.A.data, ev.A.indices, ev.A.indptr):
            with pytest.raises(ValueError):
                arr[:] = 0
        assert ev.apply(np.ones(4))[0] == pytest.approx(1.0)

    def test_products_on_frozen_projector(self, unit_square):
        ev = build_evaluator(unit_square, [[0.5, 0.5], [0.25, 0.5]])
        assert_allclose((ev.A @ ev.T).toarray(), (ev.A @ ev.A.T).toarray())


class TestGridProjector:
    def test_shape_and_mask(self, mesh2d):
        proj = grid_projector(mesh2d, dims=(20, 15))
        assert isinstance(proj, GridProjector)
        assert proj.shape == (15, 20)
        image = proj.project(mesh2d.loc[:, 1])
        assert isinstance(image, np.ma.MaskedArray)
        assert image.shape == (15, 20)
        assert int(image.mask.sum()) == 300 - int(proj.inside.sum())
        assert_array_equal(~np.ma.getmaskarray(image), proj.inside)
        assert_array_equal(proj.zone >= 0, proj.inside)

    def test_zone_image(self, mesh2d):
        proj = grid_projector(mesh2d, dims=(30, 30))
        assert set(np.unique(proj.zone)) <= {-1, 0, 1}
        assert np.any(proj.zone == 0)
        assert np.any(proj.zone == 1)
        # lattice points in the inner zone lie inside the inner boundary
        inner = proj.lattice[proj.zone.ravel() == 0]
        inner_poly = mesh2d.segm_int[0].loc
        assert np.all(geom.polygon_contains(inner_poly, inner, tol=1e-9))
        assert 0.0 < proj.coverage <= 1.0

    def test_rows_follow_y(self, mesh2d):
        proj = grid_projector(mesh2d, xlim=(1.0, 9.0), ylim=(2.0, 8.0), dims=(5, 4))
        image = proj.project(mesh2d.loc[:, 1])
        assert_allclose(image[:, 0], proj.y, atol=1e-9)
        assert_allclose(image[0, :], np.full(5, 2.0), atol=1e-9)

    def test_unmasked_output_has_nan(self, unit_square):
        proj = grid_projector(unit_square, xlim=(-1.0, 2.0), ylim=(0.0, 1.0), dims=(4, 2))
        grid = proj.project(np.ones(4), mask_outside=False)
        assert not isinstance(grid, np.ma.MaskedArray)
        assert np.isnan(grid[0, 0])
        assert grid[0, 1] == pytest.approx(1.0)

    def test_single_int_dims(self, unit_square):
        proj = grid_projector(unit_square, dims=6)
        assert proj.dims == (6, 6)
        assert proj.coverage == 1.0
        assert_array_equal(proj.zone, 0)

    def test_padding(self, unit_square):
        proj = grid_projector(unit_square, dims=3, padding=0.5)
        assert proj.xlim == (-0.5, 1.5)
        assert int(proj.inside.sum()) == 1
        assert proj.inside[1, 1]

    def test_fm_evaluate_with_projector(self, unit_square):
        proj = grid_projector(unit_square, dims=(3, 3))
        assert fm_evaluate(proj, np.ones(4)).shape == (3, 3)

    def test_summary(self, unit_square):
        text = grid_projector(unit_square, dims=(4, 5)).summary()
        assert "GridProjector 4 x 5" in text
        assert "Covered: 20 of 20 points (100.0%), 20 in the inner zone" in text

    def test_requires_2d_mesh(self, mesh1d):
        with pytest.raises(TypeError):
            GridProjector(mesh=mesh1d, xlim=(0.0, 1.0), ylim=(0.0, 1.0), dims=(2, 2))
