"""Exception classes for the spdemesh package."""


class MeshError(Exception):
    """Base exception for mesh and evaluator errors."""
    pass


class DegenerateInputError(MeshError):
    """Raised when too few distinct (or only collinear) locations are given."""
    pass


class InvalidBoundaryError(MeshError):
    """Raised when an explicit boundary does not enclose all anchor locations."""
    pass


class ResolutionError(MeshError):
    """Raised when the resolution constraints cannot be satisfied."""
    pass


class CRSMismatchError(MeshError):
    """Raised when query locations and mesh use different coordinate systems."""
    pass


class OutOfDomainError(MeshError):
    """Raised when query locations fall outside the mesh domain.

    Attributes
    ----------
    indices : np.ndarray
        Indices (into the query locations) of the offending points.
    """

    def __init__(self, message: str, indices=None):
        super().__init__(message)
        self.indices = indices
