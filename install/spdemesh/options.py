# options.py
"""
Global options for mesh construction and evaluation.

Key functions:
- get_option_default()
- get_option(option=None)
- set_option(**kwargs)   # also supports set_option("key", value)
- reset_options()
"""

from __future__ import annotations

import numbers
import warnings
from typing import Any, Dict, Optional, Union


# Internal storage
_MESH_OPTIONS: Dict[str, Any] = {}

_OUTSIDE_POLICIES = ("error", "mask")


def get_option_default() -> Dict[str, Any]:
    """
    Default options (no recursion to get current options).
    """
    return {
        "mesh.offset": (-0.1, -0.2),
        "mesh.n": 8,
        "mesh.max_refine": 60,
        "mesh.min_angle": 21.0,
        "eval.outside": "error",
        "eval.tol": 1e-10,
    }


def get_option(option: Optional[Union[str, list]] = None):
    """
    Get current option(s). If option is None, return a dict of current values.
    """
    defaults = get_option_default()

    if option is None:
        return {**defaults, **_MESH_OPTIONS}

    # Normalize to list of keys
    if isinstance(option, str):
        keys = [option]
    else:
        keys = list(option)

    out_list = []
    for key in keys:
        key = _normalize_key(key)
        if key in _MESH_OPTIONS:
            val = _MESH_OPTIONS[key]
        elif key in defaults:
            val = defaults[key]
        else:
            raise KeyError(f"Unknown option '{key}'")
        out_list.append(val)

    return out_list[0] if isinstance(option, str) else out_list


def set_option(*args, **kwargs) -> None:
    """
    Set global options.

    Supports:
      set_option("eval.outside", "mask")
      set_option(eval_outside="mask", mesh_max_refine=100)
    """
    # Positional signature ("key", value)
    if len(args) == 2 and not kwargs:
        k, v = args
        if not isinstance(k, str):
            raise TypeError("First positional argument must be a string key")
        updates = {_normalize_key(k): v}
    elif len(args) == 0 and kwargs:
        updates = {_normalize_key(k): v for k, v in kwargs.items()}
    else:
        raise TypeError("Use either set_option('key', value) or set_option(key=value, ...).")

    previous = dict(_MESH_OPTIONS)
    # Roll back on failure so a bad value never sticks
    try:
        for k, v in updates.items():
            _set_one(k, v)
        _post_set_checks()
    except (KeyError, ValueError):
        _MESH_OPTIONS.clear()
        _MESH_OPTIONS.update(previous)
        raise


def reset_options() -> None:
    """Drop every override and return to the defaults."""
    _MESH_OPTIONS.clear()


def _normalize_key(option: str) -> str:
    # mesh_max_refine -> mesh.max_refine
    if "." not in option and "_" in option:
        head, _, tail = option.partition("_")
        return f"{head}.{tail}"
    return option


def _set_one(option: str, value: Any) -> None:
    if option not in get_option_default():
        raise KeyError(f"Unknown option '{option}'")

    _MESH_OPTIONS[option] = value


def _post_set_checks() -> None:
    outside = get_option("eval.outside")
    if outside not in _OUTSIDE_POLICIES:
        raise ValueError(f"Invalid 'eval.outside'. Must be one of {_OUTSIDE_POLICIES}.")

    tol = get_option("eval.tol")
    if not isinstance(tol, numbers.Real) or tol < 0:
        raise ValueError("'eval.tol' must be a non-negative number.")
    if tol > 1e-3:
        warnings.warn(
            f"'eval.tol' = {tol} is large; locations slightly outside the mesh will be "
            "treated as inside."
        )

    n = get_option("mesh.n")
    if not isinstance(n, numbers.Integral) or n < 1:
        raise ValueError("'mesh.n' must be a positive integer.")

    angle = get_option("mesh.min_angle")
    if not isinstance(angle, numbers.Real) or not 0 <= angle <= 34:
        raise ValueError("'mesh.min_angle' must be a number of degrees in [0, 34].")

    rounds = get_option("mesh.max_refine")
    if not isinstance(rounds, numbers.Integral) or rounds < 0:
        raise ValueError("'mesh.max_refine' must be a non-negative integer.")

    offset = get_option("mesh.offset")
    if isinstance(offset, numbers.Real):
        offset = (offset,)
    if len(tuple(offset)) not in (1, 2):
        raise ValueError("'mesh.offset' must hold one or two values.")
