import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from spdemesh import build_evaluator, fm_mesh_1d
from spdemesh.exceptions import (
    DegenerateInputError,
    InvalidBoundaryError,
    OutOfDomainError,
    ResolutionError,
)


class TestQuadraticScenario:
    """Knots {1, 2, 3, 4, 6}, Neumann/free, degree 2"""

    def test_two_extra_knots(self, mesh1d):
        assert mesh1d.m == 5
        assert mesh1d.knots.size == 7
        assert_array_equal(mesh1d.knots[1:-1], [1, 2, 3, 4, 6])
        assert mesh1d.knots[0] < 1 and mesh1d.knots[-1] > 6

    def test_node_count(self, mesh1d):
        # m + 1 quadratic B-splines, the two left ones merged by the Neumann condition
        assert mesh1d.n == 5
        assert mesh1d.transform.shape == (6, 5)

    def test_local_support_at_2_5(self, mesh1d):
        ev = build_evaluator(mesh1d, [2.5])
        triples = ev.triples()
        assert set(triples["node"]) == {0, 1, 2}
        assert np.all(triples["weight"] > 0)
        assert triples["weight"].sum() == pytest.approx(1.0)
        assert ev.element[0] == 1

    def test_boundary_flags(self, mesh1d):
        assert mesh1d.is_boundary[0]
        assert mesh1d.is_boundary[-1]
        assert not mesh1d.is_boundary[2]

    def test_node_locations_inside_interval(self, mesh1d):
        assert np.all(mesh1d.node_loc >= 1.0)
        assert np.all(mesh1d.node_loc <= 6.0)
        assert np.all(np.diff(mesh1d.node_loc) > 0)

    def test_zero_slope_at_neumann_end(self, mesh1d):
        coef = np.array([0.3, -1.2, 2.0, 0.7, -0.4])
        h = 1e-6
        values = build_evaluator(mesh1d, [1.0, 1.0 + h]).apply(coef)
        assert abs(values[1] - values[0]) / h < 1e-3

    def test_summary(self, mesh1d):
        text = mesh1d.summary()
        assert "Degree: 2" in text
        assert "neumann, free" in text
        assert repr(mesh1d).startswith("Mesh1D(m=5, n=5")


class TestBasisProperties:
    """Partition of unity and interpolation"""

    @pytest.mark.parametrize("degree", [1, 2])
    @pytest.mark.parametrize("boundary", ["free", "neumann"])
    def test_partition_of_unity(self, degree, boundary):
        mesh = fm_mesh_1d([0.0, 0.7, 1.5, 3.0, 3.2, 5.0], boundary=boundary, degree=degree)
        x = np.linspace(0.0, 5.0, 97)
        A = build_evaluator(mesh, x).A
        assert_allclose(np.asarray(A.sum(axis=1)).ravel(), 1.0, atol=1e-12)
        assert A.min() >= 0.0

    def test_hat_functions_interpolate_knots(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.5, 4.0])
        A = build_evaluator(mesh, mesh.loc).A.toarray()
        assert_allclose(A, np.eye(4), atol=1e-12)

    def test_linear_reproduction_degree_one(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.5, 4.0])
        x = np.linspace(0.0, 4.0, 31)
        assert_allclose(build_evaluator(mesh, x).apply(mesh.node_loc), x, atol=1e-12)

    def test_at_most_degree_plus_one_weights(self):
        mesh = fm_mesh_1d(np.arange(8.0), degree=2)
        A = build_evaluator(mesh, np.linspace(0.0, 7.0, 50)).A
        assert np.diff(A.indptr).max() <= 3

    def test_knot_on_shared_boundary_uses_lower_interval(self, mesh1d):
        ev = build_evaluator(mesh1d, [1.0, 3.0, 6.0])
        assert_array_equal(ev.element, [0, 1, 3])


class TestBoundaryConditions:
    def test_dirichlet_degree_one_drops_end_hat(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.0, 3.0], boundary=("dirichlet", "free"))
        assert mesh.n == 3
        row = build_evaluator(mesh, [0.0]).A
        assert row.nnz == 0 or abs(row.sum()) < 1e-12
        assert not mesh.is_boundary[0]
        assert mesh.is_boundary[-1]

    def test_dirichlet_degree_two_pins_value(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.0, 3.0], boundary="dirichlet", degree=2)
        assert mesh.n == 3
        ev = build_evaluator(mesh, [0.0, 3.0])
        assert_allclose(ev.apply(np.array([1.0, -2.0, 0.5])), 0.0, atol=1e-12)

    def test_neumann_degree_one_same_as_free(self):
        free = fm_mesh_1d([0.0, 1.0, 2.0], boundary="free")
        neumann = fm_mesh_1d([0.0, 1.0, 2.0], boundary="neumann")
        assert free.n == neumann.n == 3
        assert_allclose(free.transform.toarray(), neumann.transform.toarray())

    def test_single_string_applies_to_both_ends(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.0, 3.0], boundary="neumann", degree=2)
        assert mesh.boundary == ("neumann", "neumann")
        assert mesh.n == 3

    def test_boundary_case_insensitive(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.0], boundary=("Free", "NEUMANN"))
        assert mesh.boundary == ("free", "neumann")


class TestDomain:
    def test_interval_extends_domain(self):
        mesh = fm_mesh_1d([1.0, 2.0, 3.0], interval=(0.0, 5.0))
        assert mesh.interval == (0.0, 5.0)
        assert_array_equal(mesh.loc, [0.0, 1.0, 2.0, 3.0, 5.0])

    def test_anchor_outside_interval(self):
        with pytest.raises(InvalidBoundaryError, match="outside the interval"):
            fm_mesh_1d([1.0, 2.0, 6.0], interval=(0.0, 5.0))

    def test_offset_pads_both_ends(self):
        mesh = fm_mesh_1d([0.0, 1.0, 2.0], offset=1.0)
        assert mesh.interval == (-1.0, 3.0)

    def test_relative_offset(self):
        mesh = fm_mesh_1d([0.0, 4.0, 10.0], offset=-0.1)
        assert_allclose(mesh.interval, (-1.0, 11.0))

    def test_max_edge_splits_intervals(self):
        mesh = fm_mesh_1d([0.0, 1.0, 4.0], max_edge=0.5)
        assert np.diff(mesh.loc).max() <= 0.5 + 1e-12
        assert 4.0 in mesh.loc and 1.0 in mesh.loc

    def test_max_edge_per_zone(self):
        mesh = fm_mesh_1d([0.0, 4.0], max_edge=[1.0, 3.0], offset=6.0)
        gaps = np.diff(mesh.loc)
        mid = 0.5 * (mesh.loc[:-1] + mesh.loc[1:])
        inner = (mid > 0.0) & (mid < 4.0)
        assert gaps[inner].max() <= 1.0 + 1e-12
        assert gaps[~inner].max() <= 3.0 + 1e-12
        assert gaps[~inner].max() > 1.0

    def test_cutoff_merges_close_knots(self):
        with pytest.warns(UserWarning, match="Merged 1"):
            mesh = fm_mesh_1d([0.0, 0.05, 1.0, 2.0], cutoff=0.1)
        assert_array_equal(mesh.loc, [0.0, 1.0, 2.0])

    def test_cutoff_keeps_extremes(self):
        with pytest.warns(UserWarning):
            mesh = fm_mesh_1d([0.0, 1.0, 1.95, 2.0], cutoff=0.1)
        assert mesh.interval == (0.0, 2.0)

    def test_two_knots_degree_two(self):
        mesh = fm_mesh_1d([0.0, 1.0], degree=2)
        assert mesh.m == 3
        assert_allclose(mesh.loc, [0.0, 0.5, 1.0])

    def test_column_vector_input(self):
        mesh = fm_mesh_1d(np.array([[3.0], [1.0], [2.0]]))
        assert_array_equal(mesh.loc, [1.0, 2.0, 3.0])


class TestMesh1DErrors:
    def test_single_point(self):
        with pytest.raises(DegenerateInputError, match="at least 2"):
            fm_mesh_1d([1.0])

    def test_repeated_point(self):
        with pytest.raises(DegenerateInputError):
            fm_mesh_1d([2.0, 2.0, 2.0])

    def test_single_point_with_interval_is_fine(self):
        mesh = fm_mesh_1d([2.0], interval=(0.0, 4.0))
        assert mesh.m == 3

    def test_bad_degree(self):
        with pytest.raises(ValueError, match="degree"):
            fm_mesh_1d([0.0, 1.0], degree=3)

    def test_bad_boundary(self):
        with pytest.raises(ValueError, match="boundary"):
            fm_mesh_1d([0.0, 1.0], boundary=("periodic", "free"))

    def test_max_edge_below_cutoff(self):
        with pytest.raises(ResolutionError):
            fm_mesh_1d([0.0, 1.0, 2.0], max_edge=0.1, cutoff=0.2)

    def test_no_free_function_left(self):
        with pytest.raises(DegenerateInputError):
            fm_mesh_1d([0.0, 1.0], boundary="dirichlet")

    def test_out_of_domain_scenario(self, mesh1d):
        with pytest.raises(OutOfDomainError) as excinfo:
            build_evaluator(mesh1d, [0.0, 2.0, 7.0])
        assert_array_equal(excinfo.value.indices, [0, 2])

    def test_out_of_domain_masked(self, mesh1d):
        ev = build_evaluator(mesh1d, [0.0, 2.0, 7.0], outside="mask")
        values = ev.apply(np.ones(mesh1d.n))
        assert np.isnan(values[0]) and np.isnan(values[2])
        assert values[1] == pytest.approx(1.0)
        assert ev.A[0].nnz == 0
