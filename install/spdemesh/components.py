"""Model components and the stacked design matrix.

A component maps a data set to a block of columns of the linear predictor's
design matrix: an intercept, a linear covariate, an iid factor, or an SPDE
field evaluated through its mesh. ``ComponentList`` collects named
components and stacks their blocks horizontally.
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import sparse

from .evaluator import build_evaluator
from .mesh import Mesh, Mesh1D, Mesh2D

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

_MODELS = ("intercept", "linear", "iid", "spde")

Data = Union[pd.DataFrame, Mapping[str, Any]]


def _n_rows(data: Optional[Data], loc: Optional[np.ndarray]) -> int:
    if data is not None:
        if isinstance(data, pd.DataFrame):
            return len(data)
        lengths = {len(np.atleast_1d(v)) for v in data.values()}
        if len(lengths) > 1:
            raise ValueError(f"Data columns have different lengths: {sorted(lengths)}")
        if lengths:
            return lengths.pop()
    if loc is not None:
        return np.asarray(loc).shape[0]
    raise ValueError("Cannot determine the number of rows: give 'data' or 'loc'.")


def _column(data: Optional[Data], key: str, label: str) -> np.ndarray:
    if data is None or key not in data:
        raise KeyError(f"Component '{label}': column '{key}' not found in data.")
    return np.asarray(data[key])


@dataclass(frozen=True, eq=False)
class Component:
    """One named term of the linear predictor.

    Attributes
    ----------
    name : str
        Unique label; also the default data column for ``linear`` and
        ``iid`` components.
    model : str
        One of "intercept", "linear", "iid" or "spde".
    input : str, list of str, callable or array-like, optional
        Where the component reads its values: a column name, a list of
        column names (SPDE coordinates), a function of the data, or the
        values themselves.
    mesh : Mesh1D or Mesh2D, optional
        Mesh of an SPDE component.
    weights : str, callable, array-like or float, optional
        Row multipliers applied to the component's block.
    levels : sequence, optional
        Fixed factor levels of an iid component. Defaults to the sorted
        levels present in the data.
    """

    name: str
    model: str
    input: Any = None
    mesh: Optional[Mesh] = None
    weights: Any = None
    levels: Optional[Sequence[Any]] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Component 'name' must be a non-empty string.")
        model = str(self.model).lower()
        if model not in _MODELS:
            raise ValueError(f"Component '{self.name}': unknown model {self.model!r}, expected one of {_MODELS}")
        object.__setattr__(self, "model", model)
        if model == "spde":
            if not isinstance(self.mesh, (Mesh1D, Mesh2D)):
                raise ValueError(f"Component '{self.name}' with model='spde' requires a mesh.")
        elif self.mesh is not None:
            raise ValueError(f"Component '{self.name}' with model='{model}' does not accept a mesh.")
        if self.levels is not None:
            object.__setattr__(self, "levels", tuple(self.levels))
            if not pd.Index(self.levels).is_unique:
                raise ValueError(f"Component '{self.name}': 'levels' must be unique.")

    def _resolve(self, source: Any, data: Optional[Data]) -> np.ndarray:
        if callable(source):
            return np.asarray(source(data))
        if isinstance(source, str):
            return _column(data, source, self.name)
        if isinstance(source, (list, tuple)) and source and all(isinstance(s, str) for s in source):
            return np.column_stack([_column(data, s, self.name) for s in source])
        return np.asarray(source)

    def _values(self, data: Optional[Data]) -> np.ndarray:
        return self._resolve(self.name if self.input is None else self.input, data)

    def _locations(self, data: Optional[Data], loc: Optional[np.ndarray]) -> np.ndarray:
        if self.input is not None:
            return self._resolve(self.input, data)
        if loc is None:
            raise ValueError(f"Component '{self.name}': SPDE components need 'loc' or an 'input'.")
        return np.asarray(loc)

    def design(
        self,
        data: Optional[Data] = None,
        loc: Optional[np.ndarray] = None,
    ) -> sparse.csr_matrix:
        """Design block of this component, shape (n_rows, n_columns).

        SPDE rows of locations outside the mesh are zero.
        """
        n = _n_rows(data, loc)
        if self.model == "intercept":
            block = sparse.csr_matrix(np.ones((n, 1)))
        elif self.model == "linear":
            values = np.asarray(self._values(data), dtype=float).reshape(-1, 1)
            block = sparse.csr_matrix(values)
        elif self.model == "iid":
            values = np.ravel(self._values(data))
            if self.levels is None:
                levels = pd.Categorical(values).categories
            else:
                levels = pd.Index(self.levels)
            # -1 for missing values and values outside the fixed levels
            codes = np.asarray(levels.get_indexer(values))
            rows = np.flatnonzero(codes >= 0)
            block = sparse.csr_matrix(
                (np.ones(rows.size), (rows, codes[rows])),
                shape=(codes.size, len(levels)),
            )
        else:
            ev = build_evaluator(self.mesh, self._locations(data, loc), outside="mask")
            block = ev.A
        if block.shape[0] != n:
            raise ValueError(
                f"Component '{self.name}' produced {block.shape[0]} rows, expected {n}"
            )
        if self.weights is not None:
            w = self.weights
            if not isinstance(w, numbers.Real):
                w = self._resolve(w, data)
            w = np.broadcast_to(np.asarray(w, dtype=float), (n,))
            block = sparse.diags(w) @ block
        return sparse.csr_matrix(block)


@dataclass(frozen=True)
class Design:
    """Stacked design matrix and the column range of each component."""

    matrix: sparse.csr_matrix
    columns: Dict[str, slice] = field(default_factory=dict)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.matrix.shape

    def block(self, name: str) -> sparse.csr_matrix:
        """Columns belonging to component ``name``."""
        return self.matrix[:, self.columns[name]]


class ComponentList:
    """Immutable, ordered collection of uniquely named components.

    ``add`` returns a new list and leaves the original untouched.

    Examples
    --------
    >>> comps = ComponentList().add("Intercept", "intercept")
    >>> comps = comps.add("field", "spde", mesh=mesh)
    >>> design = comps.design(df, loc=df[["x", "y"]].to_numpy())
    """

    def __init__(self, components: Sequence[Component] = ()) -> None:
        components = tuple(components)
        names = [c.name for c in components]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate component names: {dupes}")
        self._components = components

    def add(self, component: Union[Component, str], model: Optional[str] = None, **kwargs: Any) -> "ComponentList":
        """Return a new list with ``component`` appended.

        Accepts a ``Component`` or the arguments to build one.
        """
        if not isinstance(component, Component):
            if model is None:
                raise TypeError("add() needs a Component or a name and a model.")
            component = Component(component, model, **kwargs)
        elif model is not None or kwargs:
            raise TypeError("Extra arguments are not allowed when adding a Component instance.")
        if component.name in self.names:
            raise ValueError(f"Duplicate component name '{component.name}'")
        return ComponentList(self._components + (component,))

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self._components)

    def __len__(self) -> int:
        return len(self._components)

    def __iter__(self) -> Iterator[Component]:
        return iter(self._components)

    def __getitem__(self, name: str) -> Component:
        for comp in self._components:
            if comp.name == name:
                return comp
        raise KeyError(name)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def design(self, data: Optional[Data] = None, loc: Optional[np.ndarray] = None) -> Design:
        """Horizontally stacked design matrix of all components.

        Parameters
        ----------
        data : pandas.DataFrame or mapping, optional
            Covariates and factor columns.
        loc : np.ndarray, optional
            Locations for SPDE components without their own ``input``.
        """
        if not self._components:
            raise ValueError("The component list is empty.")
        blocks = []
        columns: Dict[str, slice] = {}
        start = 0
        for comp in self._components:
            block = comp.design(data, loc)
            columns[comp.name] = slice(start, start + block.shape[1])
            start += block.shape[1]
            blocks.append(block)
        matrix = sparse.hstack(blocks, format="csr")
        log.debug("Design matrix %s from %d components", matrix.shape, len(blocks))
        return Design(matrix=matrix, columns=columns)

    def __repr__(self) -> str:
        parts = ", ".join(f"{c.name}:{c.model}" for c in self._components)
        return f"ComponentList([{parts}])"
