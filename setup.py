"""
Build setup for spdemesh.

Pure Python package; the sources live under ``install/spdemesh``.

Usage:
    # Editable install with test dependencies
    pip install -e ".[test]"

    # Build wheel
    pip install build
    python -m build --wheel
"""

from pathlib import Path

from setuptools import setup, find_packages

# Package source directory
SOURCE_DIR = Path(__file__).parent / "install"


def read_version():
    """Read __version__ from the package without importing it."""
    init = SOURCE_DIR / "spdemesh" / "__init__.py"
    for line in init.read_text().splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    raise RuntimeError("Unable to find __version__ in spdemesh/__init__.py")


setup(
    name="spdemesh",
    version=read_version(),
    description="1D/2D meshes, FEM matrices and sparse evaluators for SPDE spatial models",
    package_dir={"": "install"},
    packages=find_packages("install"),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.22",
        "scipy>=1.8",
        "pandas>=1.4",
        "shapely>=2.0",
        "triangle>=20230923",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
)
