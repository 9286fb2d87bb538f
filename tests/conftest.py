"""
Pytest configuration and shared fixtures for spdemesh tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add the package source directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "install"))

from spdemesh import fm_mesh_1d, fm_mesh_2d  # noqa: E402
from spdemesh.options import reset_options  # noqa: E402


@pytest.fixture(autouse=True)
def clean_options():
    """Every test starts from the default options."""
    reset_options()
    yield
    reset_options()


@pytest.fixture
def tolerance():
    """Default tolerance for floating point comparisons."""
    return 1e-10


@pytest.fixture(scope="session")
def anchors():
    """Scattered 2D anchor locations in [0, 10]^2."""
    rng = np.random.default_rng(20240611)
    return rng.uniform(0.0, 10.0, size=(40, 2))


@pytest.fixture(scope="session")
def mesh2d(anchors):
    """A 2D mesh with default padding, shared across tests (it is immutable)."""
    reset_options()
    return fm_mesh_2d(loc=anchors, max_edge=[1.5, 3.0], cutoff=0.05)


@pytest.fixture(scope="session")
def mesh1d():
    """Quadratic 1D mesh from the knots {1, 2, 3, 4, 6}."""
    return fm_mesh_1d([1, 2, 3, 4, 6], boundary=["neumann", "free"], degree=2)
