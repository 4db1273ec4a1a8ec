"""
Solver controls and lambda sequences for elastic-net paths.
"""

from dataclasses import dataclass, fields, replace

import numpy as np


@dataclass(frozen=True)
class ElasticNetControl:
    """
    Control parameters passed through to the scikit-learn solvers.

    Parameters
    ----------
    max_iter : int
        Maximum solver iterations for each lambda value.
    tol : float
        Solver convergence tolerance.
    fdev : float
        The path stops early once the deviance ratio improves by less than
        ``fdev`` times its current value.
    devmax : float
        The path stops early once the deviance ratio exceeds this value.
    mnlam : int
        Minimum number of lambda values fitted before early stopping.
    """
    max_iter: int = 10000
    tol: float = 1e-4
    fdev: float = 1e-5
    devmax: float = 0.999
    mnlam: int = 5


_FACTORY_CONTROL = ElasticNetControl()
_default_control = _FACTORY_CONTROL


def get_default_control():
    """Return the process-wide default ElasticNetControl."""
    return _default_control


def set_default_control(**changes):
    """
    Change the process-wide default controls.

    Returns the new default. Unknown names raise ``TypeError``.
    """
    global _default_control
    known = {f.name for f in fields(ElasticNetControl)}
    unknown = set(changes) - known
    if unknown:
        raise TypeError(f"Unknown control parameter(s): {sorted(unknown)}")
    _default_control = replace(_default_control, **changes)
    return _default_control


def reset_default_control():
    """Restore the factory defaults."""
    global _default_control
    _default_control = _FACTORY_CONTROL
    return _default_control


def resolve_control(control):
    if control is None:
        return get_default_control()
    if isinstance(control, dict):
        return replace(get_default_control(), **control)
    return control


def lambda_sequence(lambda_max, nlambda, lambda_min_ratio):
    """Log-spaced decreasing lambda values from ``lambda_max``."""
    if nlambda < 1:
        raise ValueError("nlambda must be at least 1")
    if not 0 < lambda_min_ratio < 1:
        raise ValueError("lambda_min_ratio must be in (0, 1)")
    if nlambda == 1:
        return np.array([lambda_max], dtype=float)
    return np.exp(np.linspace(np.log(lambda_max),
                              np.log(lambda_max * lambda_min_ratio),
                              nlambda))
