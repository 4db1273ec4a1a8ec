"""
Model components: everything the fitting routine needs from a formula and a
data frame.

``make_model_components`` evaluates the formula against the data, applies
the row subset and the missing-value policy, and hands back the model
matrix together with the response, weights, offset and the recorded
terms/levels needed to rebuild an identical matrix from new data.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..exceptions import (
    DesignMismatchError,
    FormulaParseError,
    MissingValueError,
    MissingVariableError,
)
from .design import (
    assemble,
    evaluate_factors,
    infer_factor_info,
    missing_rows,
    model_frame_matrix,
    resolve_eval_env,
    subset_values,
)
from .terms import Terms, parse_formula

logger = logging.getLogger(__name__)

NA_ACTIONS = ('omit', 'exclude', 'pass', 'fail')


@dataclass
class ModelComponents:
    """
    Attributes
    ----------
    x : ndarray or scipy.sparse.csr_matrix
        Model matrix for the kept rows.
    y : Series, ndarray or None
        Response for the kept rows (2-D for several responses).
    weights, offset : ndarray or None
    terms : Terms
    factor_info : dict of FactorInfo
    xlev : dict
        Levels of every categorical factor.
    column_names : list of str
    kept : ndarray of bool
        Which of the ``n_rows`` rows (after ``subset``) are in ``x``.
    n_rows : int
    """
    x: object
    y: object
    weights: Optional[np.ndarray]
    offset: Optional[np.ndarray]
    terms: Terms
    factor_info: Dict
    xlev: Dict
    column_names: List[str]
    kept: np.ndarray
    n_rows: int

    @property
    def n_dropped(self):
        return int(self.n_rows - self.kept.sum())


def _as_frame(data):
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, np.ndarray) and data.ndim == 2:
        return pd.DataFrame(data, columns=[f'V{i + 1}' for i in range(data.shape[1])])
    return pd.DataFrame(data)


def _subset_rows(data, subset):
    if subset is None:
        return np.arange(len(data))
    if isinstance(subset, str):
        selected = data.query(subset)
        return np.flatnonzero(data.index.isin(selected.index))
    subset = np.asarray(subset)
    if subset.dtype == bool:
        if subset.shape[0] != len(data):
            raise ValueError(f"subset mask has {subset.shape[0]} entries, data has {len(data)} rows")
        return np.flatnonzero(subset)
    return subset.astype(int)


def _row_vector(value, data, name):
    """A weights/offset argument: a column name or an array-like over the data rows."""
    if value is None:
        return None
    if isinstance(value, str):
        if value not in data.columns:
            raise MissingVariableError(value, list(data.columns))
        value = data[value]
    arr = np.asarray(value, dtype=float)
    if arr.shape[0] != len(data):
        raise ValueError(f"{name} has {arr.shape[0]} entries, data has {len(data)} rows")
    return arr


def _response(values, codes):
    if len(codes) == 1:
        y = values[codes[0]]
        if isinstance(y, pd.Series):
            return y.reset_index(drop=True)
        return y
    return np.column_stack([np.asarray(values[c], dtype=float) for c in codes])


def check_layout(column_names, expected):
    """Raise DesignMismatchError unless the layouts agree column for column."""
    if expected is None:
        return
    if list(column_names) != list(expected):
        missing = [c for c in expected if c not in column_names]
        extra = [c for c in column_names if c not in expected]
        detail = []
        if missing:
            detail.append(f"missing {missing[:5]}")
        if extra:
            detail.append(f"unexpected {extra[:5]}")
        if not detail:
            detail.append("columns in a different order")
        raise DesignMismatchError(
            f"Model matrix has {len(column_names)} columns, fitted model has {len(expected)} "
            f"({'; '.join(detail)})"
        )


def make_model_components(
    formula,
    data,
    *,
    weights=None,
    offset=None,
    subset=None,
    na_action='omit',
    drop_unused_levels=False,
    xlev=None,
    sparse=False,
    use_model_frame=False,
    factor_info=None,
    column_names=None,
    unseen_levels='error',
    require_response=True,
    eval_env=0,
):
    """
    Build the model matrix and its companions from a formula and data.

    Parameters
    ----------
    formula : str or Terms
        A formula string (parsed here) or the ``Terms`` recorded at fit.
    data : DataFrame or mapping
    weights, offset : array-like or str, optional
        Per-row values, or the name of a data column.
    subset : bool mask, integer positions or query string, optional
    na_action : {'omit', 'exclude', 'pass', 'fail'}
    drop_unused_levels : bool
        Drop declared but unobserved categorical levels (fit only).
    xlev : dict, optional
        Levels to assume for categorical factors.
    sparse : bool
        Return a ``scipy.sparse.csr_matrix``.
    use_model_frame : bool
        Build the matrix in one pass with ``patsy.dmatrix``.
    factor_info : dict, optional
        Recorded factor layout; given at prediction time.
    column_names : list, optional
        Recorded column layout; checked at prediction time.
    unseen_levels : {'error', 'zero'}
    require_response : bool
    eval_env : int or patsy.EvalEnvironment
        Where to look up names that are not data columns.

    Returns
    -------
    ModelComponents
    """
    if na_action not in NA_ACTIONS:
        raise ValueError(f"na_action must be one of {NA_ACTIONS}, got '{na_action}'")
    if use_model_frame and unseen_levels != 'error':
        raise ValueError("unseen_levels='zero' is not available with use_model_frame=True")
    eval_env = resolve_eval_env(eval_env, depth=1)

    data = _as_frame(data)
    terms = formula if isinstance(formula, Terms) else parse_formula(formula, data.columns)
    if require_response and not terms.has_response:
        raise FormulaParseError(terms.formula, None, "the formula has no response")

    rows = _subset_rows(data, subset)
    weights = _row_vector(weights, data, 'weights')
    offset = _row_vector(offset, data, 'offset')
    data = data.iloc[rows]
    n_rows = len(data)
    if weights is not None:
        weights = weights[rows]
    if offset is not None:
        offset = offset[rows]

    predictors = evaluate_factors(terms.factors, data, eval_env)
    responses = evaluate_factors(terms.response, data, eval_env)
    offsets = evaluate_factors(terms.offsets, data, eval_env)

    incomplete = np.zeros(n_rows, dtype=bool)
    for value in list(predictors.values()) + list(responses.values()) + list(offsets.values()):
        incomplete |= missing_rows(value)
    for extra in (weights, offset):
        if extra is not None:
            incomplete |= missing_rows(extra)

    if incomplete.any():
        if na_action == 'fail':
            raise MissingValueError(f"{int(incomplete.sum())} rows contain missing values")
        if na_action == 'pass':
            kept = np.ones(n_rows, dtype=bool)
        else:
            kept = ~incomplete
            logger.debug("Dropped %d incomplete rows (na_action='%s')", int(incomplete.sum()), na_action)
    else:
        kept = np.ones(n_rows, dtype=bool)

    keep_idx = np.flatnonzero(kept)
    predictors = subset_values(predictors, keep_idx)
    responses = subset_values(responses, keep_idx)
    offsets = subset_values(offsets, keep_idx)

    if factor_info is None:
        factor_info = {
            code: infer_factor_info(code, value, xlev, drop_unused_levels)
            for code, value in predictors.items()
        }

    if use_model_frame:
        x, names = model_frame_matrix(terms, factor_info, predictors, sparse)
    else:
        x, names = assemble(terms, factor_info, predictors, len(keep_idx), sparse, unseen_levels)
    check_layout(names, column_names)

    total_offset = None
    if offset is not None or offsets:
        total_offset = np.zeros(len(keep_idx))
        if offset is not None:
            total_offset = total_offset + offset[keep_idx]
        for value in offsets.values():
            total_offset = total_offset + np.asarray(value, dtype=float).ravel()

    y = _response(responses, terms.response) if terms.has_response else None

    return ModelComponents(
        x=x,
        y=y,
        weights=None if weights is None else weights[keep_idx],
        offset=total_offset,
        terms=terms,
        factor_info=factor_info,
        xlev={c: list(i.levels) for c, i in factor_info.items() if i.kind == 'categorical'},
        column_names=names,
        kept=kept,
        n_rows=n_rows,
    )
