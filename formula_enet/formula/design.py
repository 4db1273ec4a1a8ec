"""
Term-by-term model matrix construction.

Each additive term is turned into its own column block and the blocks are
concatenated; no full model frame is materialised. Numeric factors pass
through unchanged, categorical factors are expanded into one indicator
column per level (no reference level is dropped, the penalty takes care of
the collinearity) and interactions are row-wise products of their factor
blocks.

The levels of every categorical factor are recorded at fit time in a
``FactorInfo`` and replayed verbatim at prediction time, so that new data
produce exactly the fitted column layout.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import patsy
import patsy.builtins
from patsy import EvalEnvironment, PatsyError
from scipy import sparse as sp

from ..exceptions import (
    DesignMismatchError,
    FormulaParseError,
    LevelMismatchError,
    MissingValueError,
    MissingVariableError,
)

logger = logging.getLogger(__name__)

UNSEEN_LEVELS = ('error', 'zero')

_PATSY_BUILTINS = {name: getattr(patsy.builtins, name) for name in patsy.builtins.__all__}


@dataclass(frozen=True)
class FactorInfo:
    """
    What a factor looked like at fit time.

    Attributes
    ----------
    code : str
        Factor expression as written in the formula.
    kind : {'numeric', 'categorical'}
    levels : tuple or None
        Ordered levels of a categorical factor.
    n_columns : int
        Width of the factor block.
    """
    code: str
    kind: str
    levels: Optional[Tuple] = None
    n_columns: int = 1

    def column_names(self) -> List[str]:
        if self.kind == 'categorical':
            return [f'{self.code}[{level}]' for level in self.levels]
        if self.n_columns == 1:
            return [self.code]
        return [f'{self.code}[{i}]' for i in range(self.n_columns)]


# Factor evaluation

def resolve_eval_env(eval_env, depth=0):
    """An EvalEnvironment, or one captured ``eval_env`` frames above the caller."""
    if isinstance(eval_env, EvalEnvironment):
        return eval_env
    return EvalEnvironment.capture(int(eval_env) + depth + 1)


def evaluate_factor(code, data, eval_env):
    """
    Evaluate one factor expression against ``data``.

    A bare column name is looked up directly; anything else is evaluated
    with the data columns and patsy's builtins (``C``, ``I``, ``Q``,
    ``center``, ...) in scope, falling back to ``eval_env``.
    """
    if code in data.columns:
        return data[code]
    namespace = {str(c): data[c] for c in data.columns}
    env = eval_env.with_outer_namespace(_PATSY_BUILTINS)
    try:
        value = env.eval(code, inner_namespace=namespace)
    except NameError as exc:
        name = getattr(exc, 'name', None) or code
        raise MissingVariableError(name, list(data.columns)) from None
    except PatsyError as exc:
        raise FormulaParseError(code, code, exc.message) from exc
    if np.ndim(value) == 0:
        value = np.repeat(value, len(data))
    if len(value) != len(data):
        raise DesignMismatchError(
            f"Factor '{code}' evaluated to {len(value)} rows, data has {len(data)}"
        )
    return value


def _unbox(value):
    """Split a patsy ``C(...)`` result into its data and declared levels."""
    if hasattr(value, 'contrast') and hasattr(value, 'levels') and hasattr(value, 'data'):
        return value.data, value.levels, True
    return value, None, False


def _is_categorical(value):
    dtype = getattr(value, 'dtype', None)
    if dtype is None:
        dtype = np.asarray(value).dtype
    if isinstance(dtype, pd.CategoricalDtype):
        return True
    if pd.api.types.is_bool_dtype(dtype):
        return True
    return pd.api.types.is_object_dtype(dtype) or pd.api.types.is_string_dtype(dtype)


def missing_rows(value):
    """Boolean mask of rows with a missing value in an evaluated factor."""
    value, _, _ = _unbox(value)
    if isinstance(value, (pd.Series, pd.Categorical, pd.Index)):
        return np.asarray(pd.isna(value))
    arr = np.asarray(value)
    if arr.ndim > 1:
        return np.asarray(pd.isna(pd.DataFrame(arr)).any(axis=1))
    return np.asarray(pd.isna(arr))


def _take(value, rows):
    value, levels, boxed = _unbox(value)
    if isinstance(value, (pd.Series, pd.DataFrame)):
        out = value.iloc[rows]
    elif isinstance(value, pd.Categorical):
        out = value[rows]
    else:
        out = np.asarray(value)[rows]
    if boxed:
        return patsy.builtins.C(out, levels=levels)
    return out


def _sorted_levels(values):
    unique = pd.unique(pd.Series(values).dropna())
    try:
        return tuple(sorted(unique.tolist()))
    except TypeError:
        return tuple(unique.tolist())


def infer_factor_info(code, value, xlev=None, drop_unused_levels=False):
    """Record the kind, levels and width of an evaluated factor."""
    data, declared, boxed = _unbox(value)
    if boxed or _is_categorical(data):
        observed = _sorted_levels(np.asarray(data, dtype=object))
        if xlev is not None and code in xlev:
            levels = tuple(xlev[code])
            extra = [v for v in observed if v not in set(levels)]
            if extra:
                raise LevelMismatchError(
                    code, extra,
                    f"Factor '{code}' has values {extra} outside the supplied levels {list(levels)}",
                )
        elif declared is not None:
            levels = tuple(declared)
        elif isinstance(getattr(data, 'dtype', None), pd.CategoricalDtype):
            levels = tuple(data.dtype.categories.tolist())
        else:
            levels = observed
        if drop_unused_levels:
            keep = set(observed)
            levels = tuple(lv for lv in levels if lv in keep)
        if not levels:
            raise LevelMismatchError(code, [], f"Factor '{code}' has no levels")
        return FactorInfo(code, 'categorical', levels, len(levels))

    arr = np.asarray(data, dtype=float)
    if arr.ndim > 2:
        raise DesignMismatchError(f"Factor '{code}' evaluated to a {arr.ndim}-d array")
    n_columns = 1 if arr.ndim == 1 else arr.shape[1]
    return FactorInfo(code, 'numeric', None, n_columns)


# Column blocks

def _categorical_block(info, value, sparse, unseen_levels):
    data, _, _ = _unbox(value)
    values = pd.Series(np.asarray(data, dtype=object))
    missing = values.isna().to_numpy()
    codes = pd.Categorical(values, categories=list(info.levels)).codes
    unseen = (codes < 0) & ~missing
    if unseen.any():
        bad = _sorted_levels(values[unseen])
        if unseen_levels == 'error':
            raise LevelMismatchError(info.code, bad)
        logger.debug("Factor '%s': %d rows with unseen levels %s set to zero",
                     info.code, int(unseen.sum()), list(bad))

    n, k = len(codes), len(info.levels)
    hit = codes >= 0
    rows = np.concatenate([np.flatnonzero(hit), np.repeat(np.flatnonzero(missing), k)])
    cols = np.concatenate([codes[hit], np.tile(np.arange(k), int(missing.sum()))])
    vals = np.concatenate([np.ones(int(hit.sum())), np.full(int(missing.sum()) * k, np.nan)])
    block = sp.csr_matrix((vals, (rows, cols)), shape=(n, k))
    return block if sparse else block.toarray()


def _numeric_block(info, value, sparse):
    data, _, _ = _unbox(value)
    arr = np.asarray(data, dtype=float)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.shape[1] != info.n_columns:
        raise DesignMismatchError(
            f"Factor '{info.code}' has {arr.shape[1]} columns, expected {info.n_columns}"
        )
    return sp.csr_matrix(arr) if sparse else arr


def factor_block(info, value, sparse=False, unseen_levels='error'):
    """Column block for one factor, replaying the recorded ``info``."""
    data, _, boxed = _unbox(value)
    if info.kind == 'numeric' and (boxed or _is_categorical(data)):
        raise DesignMismatchError(
            f"Factor '{info.code}' was numeric when the model was fitted but is categorical now"
        )
    if info.kind == 'categorical':
        return _categorical_block(info, value, sparse, unseen_levels)
    return _numeric_block(info, value, sparse)


def row_kron(a, b):
    """Row-wise Kronecker product; columns of ``a`` vary fastest."""
    if sp.issparse(a) or sp.issparse(b):
        a = sp.csr_matrix(a)
        b = sp.csc_matrix(b)
        cols = [sp.diags(b[:, j].toarray().ravel()) @ a for j in range(b.shape[1])]
        return sp.hstack(cols, format='csr')
    n = a.shape[0]
    return (b[:, :, None] * a[:, None, :]).reshape(n, a.shape[1] * b.shape[1])


def term_block(term, infos, values, sparse=False, unseen_levels='error'):
    """Column block and column names for one additive term."""
    block, names = None, None
    for code in term.factors:
        info = infos[code]
        fb = factor_block(info, values[code], sparse, unseen_levels)
        fn = info.column_names()
        if block is None:
            block, names = fb, fn
        else:
            block = row_kron(block, fb)
            names = [f'{a}:{b}' for b in fn for a in names]
    return block, names


def assemble(terms, infos, values, n_rows, sparse=False, unseen_levels='error'):
    """
    Concatenate the term blocks of ``terms`` into one model matrix.

    The intercept is never materialised.

    Returns
    -------
    x : ndarray or scipy.sparse.csr_matrix
    column_names : list of str
    """
    if unseen_levels not in UNSEEN_LEVELS:
        raise ValueError(f"unseen_levels must be one of {UNSEEN_LEVELS}, got '{unseen_levels}'")
    if not terms.terms:
        raise FormulaParseError(terms.formula, None, "the formula has no predictor terms")

    blocks, names = [], []
    for term in terms.terms:
        block, block_names = term_block(term, infos, values, sparse, unseen_levels)
        blocks.append(block)
        names.extend(block_names)

    if sparse:
        x = sp.hstack(blocks, format='csr') if blocks else sp.csr_matrix((n_rows, 0))
    else:
        x = np.hstack(blocks) if blocks else np.empty((n_rows, 0))
    logger.debug("Built %s model matrix %s from %d terms",
                 'sparse' if sparse else 'dense', x.shape, len(terms.terms))
    return x, names


# Model-frame mode

# bracketed level labels are matched first and left alone
_ALIAS_RE = re.compile(r"\[[^\]]*\]|\b_f(\d+)\b")


def _restore_alias(codes):
    """Substitution callback mapping ``_f<i>`` back to the i-th factor code."""
    def restore(match):
        if match.group(1) is None:
            return match.group(0)
        return codes[int(match.group(1))]
    return restore


def model_frame_matrix(terms, infos, values, sparse=False):
    """
    Build the matrix from a full model frame with ``patsy.dmatrix``.

    Factors are placed in a frame under plain aliases, categoricals as
    pandas Categoricals with the recorded levels, and patsy builds the
    matrix with its standard treatment coding. The intercept column is
    dropped and the factor codes are restored in the column names.
    """
    if not terms.terms:
        raise FormulaParseError(terms.formula, None, "the formula has no predictor terms")
    codes = list(terms.factors)
    alias = {code: f'_f{i}' for i, code in enumerate(codes)}

    frame = {}
    for code in codes:
        info = infos[code]
        data, _, boxed = _unbox(values[code])
        if info.kind == 'categorical':
            cat = pd.Categorical(pd.Series(np.asarray(data, dtype=object)),
                                 categories=list(info.levels))
            unseen = pd.isna(cat) & ~pd.isna(pd.Series(np.asarray(data, dtype=object))).to_numpy()
            if unseen.any():
                bad = _sorted_levels(np.asarray(data, dtype=object)[unseen])
                raise LevelMismatchError(code, bad)
            frame[alias[code]] = cat
        else:
            if boxed or _is_categorical(data):
                raise DesignMismatchError(
                    f"Factor '{code}' was numeric when the model was fitted but is categorical now"
                )
            frame[alias[code]] = np.asarray(data, dtype=float)

    rhs = ' + '.join(':'.join(alias[c] for c in term.factors) for term in terms.terms)
    rhs = f"{'1' if terms.intercept else '0'} + {rhs}"
    try:
        dm = patsy.dmatrix(rhs, frame, NA_action='raise', return_type='dataframe')
    except PatsyError as exc:
        raise MissingValueError(f"Cannot build the model frame: {exc.message}") from exc

    if 'Intercept' in dm.columns:
        dm = dm.drop(columns='Intercept')
    names = [_ALIAS_RE.sub(_restore_alias(codes), str(c)) for c in dm.columns]
    x = dm.to_numpy(dtype=float)
    if sparse:
        x = sp.csr_matrix(x)
    logger.debug("Built model-frame matrix %s from %d terms", x.shape, len(terms.terms))
    return x, names


def evaluate_factors(codes, data, eval_env) -> Dict[str, object]:
    """Evaluate every code once."""
    return {code: evaluate_factor(code, data, eval_env) for code in codes}


def subset_values(values, rows):
    return {code: _take(v, rows) for code, v in values.items()}
