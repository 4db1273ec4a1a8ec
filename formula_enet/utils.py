"""
Utility functions for formula_enet.

Provides:
- R-style lambda summaries and significant-digit rounding for printing
- Saving and loading fitted models
- Example data with numeric and categorical columns
"""

import logging

import joblib
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def signif(values, digits=4):
    """
    Round to ``digits`` significant digits.

    Examples
    --------
    >>> signif([123456.0, 0.0012345], 3)
    array([1.23e+05, 1.23e-03])
    """
    values = np.asarray(values, dtype=float)
    out = np.array([float(f'{v:.{digits}g}') if np.isfinite(v) else v for v in values.ravel()])
    return out.reshape(values.shape)


def lambda_summary(lambdas):
    """
    Six-number summary of a lambda sequence.

    Returns
    -------
    pd.Series
        Indexed ``Min.``, ``1st Qu.``, ``Median``, ``Mean``, ``3rd Qu.``, ``Max.``.
    """
    lambdas = np.asarray(lambdas, dtype=float)
    q = np.percentile(lambdas, [0, 25, 50, 75, 100])
    return pd.Series(
        [q[0], q[1], q[2], lambdas.mean(), q[3], q[4]],
        index=['Min.', '1st Qu.', 'Median', 'Mean', '3rd Qu.', 'Max.'],
    )


def pad_rows(values, kept):
    """
    Scatter per-row results back to the full row count.

    Rows not in ``kept`` are NaN. Non-numeric results (class labels) are
    padded in an object array.
    """
    kept = np.asarray(kept, dtype=bool)
    if kept.all():
        return values
    values = np.asarray(values)
    dtype = values.dtype if values.dtype.kind in 'fc' else object
    out = np.full((len(kept),) + values.shape[1:], np.nan, dtype=dtype)
    out[kept] = values
    return out


def save_model(model, path, compress=3):
    """
    Save a fitted model (with its terms, levels and options) to ``path``.

    Parameters
    ----------
    model : object
        Any fitted formula_enet estimator.
    path : str or Path
    compress : int, default=3
        joblib compression level.

    Returns
    -------
    list of str
        Files written.
    """
    files = joblib.dump(model, path, compress=compress)
    logger.info("Saved %s to %s", type(model).__name__, path)
    return files


def load_model(path):
    """Load a model written by ``save_model``."""
    model = joblib.load(path)
    logger.info("Loaded %s from %s", type(model).__name__, path)
    return model


def make_example_data(n_samples=100, n_levels=3, noise=0.5, random_state=None):
    """
    Generate a data frame with numeric and categorical predictors.

    The response ``y`` depends on ``x1``, ``x2`` and the categorical ``g``;
    ``cls`` is a two-class label and ``cls3`` a three-class label derived
    from the same linear predictor; ``count`` is a Poisson count.

    Parameters
    ----------
    n_samples : int, default=100
    n_levels : int, default=3
        Number of levels of ``g``.
    noise : float, default=0.5
        Standard deviation of the gaussian noise in ``y``.
    random_state : int or None

    Returns
    -------
    pd.DataFrame
        Columns ``y``, ``x1``, ``x2``, ``x3``, ``g``, ``cls``, ``cls3``, ``count``.

    Examples
    --------
    >>> df = make_example_data(200, random_state=42)
    >>> df.dtypes['g']
    dtype('O')
    """
    rng = np.random.default_rng(random_state)
    levels = [chr(ord('a') + i) for i in range(n_levels)]
    x1 = rng.normal(size=n_samples)
    x2 = rng.normal(size=n_samples)
    x3 = rng.uniform(-1, 1, size=n_samples)
    # every level appears at least twice
    g = np.array((levels * (n_samples // n_levels + 1))[:n_samples], dtype=object)
    g = g[rng.permutation(n_samples)]
    g_effect = np.array([levels.index(v) for v in g], dtype=float) * 0.75

    eta = 1.5 * x1 - 1.0 * x2 + g_effect
    y = 2.0 + eta + noise * rng.normal(size=n_samples)
    cls = np.where(eta + rng.logistic(size=n_samples) > np.median(eta), 'yes', 'no')
    cuts = np.quantile(eta, [1 / 3, 2 / 3])
    cls3 = np.array(['low', 'mid', 'high'], dtype=object)[np.searchsorted(cuts, eta)]
    count = rng.poisson(np.exp(0.3 * eta))

    return pd.DataFrame({
        'y': y,
        'x1': x1,
        'x2': x2,
        'x3': x3,
        'g': g,
        'cls': cls.astype(object),
        'cls3': cls3,
        'count': count,
    })
