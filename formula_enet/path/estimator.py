"""
ElasticNetPath: glmnet-style regularisation path fitted with scikit-learn.

The penalised fits themselves are done by scikit-learn estimators (see
``families``). This module only marshals arguments: it standardises the
matrix, builds the lambda sequence, walks the path with warm starts and
stores coefficients on the original scale so that ``predict`` and ``coef``
can be evaluated at any lambda.
"""

import logging

import numpy as np
from scipy import sparse
from scipy.interpolate import interp1d
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_is_fitted

from ..exceptions import FamilyError
from ..versions import require_sklearn
from .control import lambda_sequence, resolve_control
from .families import get_family

logger = logging.getLogger(__name__)

PREDICT_TYPES = ('link', 'response', 'class', 'coefficients', 'nonzero')


def _as_matrix(X):
    if sparse.issparse(X):
        return sparse.csr_matrix(X, dtype=float)
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError(f"X must be 2-dimensional, got shape {X.shape}")
    return X


def _column_moments(X, w, center):
    """Weighted column means and standard deviations (population form)."""
    wn = w / w.sum()
    if sparse.issparse(X):
        mean = np.asarray(X.T @ wn).ravel()
        sq = np.asarray(X.multiply(X).T @ wn).ravel()
    else:
        mean = X.T @ wn
        sq = (X ** 2).T @ wn
    var = sq - mean ** 2 if center else sq
    sd = np.sqrt(np.maximum(var, 0.0))
    sd[sd < 1e-12] = 1.0
    return mean, sd


def _resolve_offset(offset, n, n_outputs):
    if offset is None:
        return None
    offset = np.asarray(offset, dtype=float)
    if offset.ndim == 1:
        offset = offset[:, None]
    if offset.shape[0] != n:
        raise ValueError(f"offset has {offset.shape[0]} rows, expected {n}")
    return np.broadcast_to(offset, (n, n_outputs)).copy()


class ElasticNetPath(BaseEstimator):
    """
    Elastic-net regularisation path.

    Parameters
    ----------
    family : str, Family subclass or Family instance, default='gaussian'
        One of 'gaussian', 'binomial', 'multinomial', 'poisson', 'mgaussian'.

    alpha : float, default=1.0
        Elastic-net mixing parameter: 1 is the lasso, 0 is ridge.

    nlambda : int, default=100
        Number of lambda values when the sequence is generated.

    lambda_min_ratio : float or None, default=None
        Smallest lambda as a fraction of lambda_max. Defaults to 1e-4 when
        there are more observations than columns, else 1e-2.

    lambda_seq : array-like or None, default=None
        User-supplied lambda values. Sorted decreasing; no early stopping.

    standardize : bool, default=True
        Scale columns to unit weighted standard deviation before fitting.
        Coefficients are always reported on the original scale.

    fit_intercept : bool, default=True
        Whether to fit an intercept.

    exclude : list of int or str, or None
        Columns (positions, or names when feature names are known) whose
        coefficients are held at zero.

    relax : bool, default=False
        Also compute the relaxed (unpenalised) refit on each active set.

    control : ElasticNetControl, dict or None
        Solver controls. None uses the process-wide default.

    feature_names : list of str or None
        Column names. Taken from ``X.columns`` when X is a DataFrame.

    Attributes
    ----------
    lambda_ : ndarray of shape (n_lambda,)
    coef_path_ : ndarray of shape (n_lambda, n_outputs, n_features)
    intercept_path_ : ndarray of shape (n_lambda, n_outputs)
    df_ : ndarray of shape (n_lambda,)
        Number of non-zero coefficients (in any output).
    dev_ratio_ : ndarray of shape (n_lambda,)
        Fraction of null deviance explained.
    nulldev_ : float
    classes_ : ndarray or None
    relaxed_ : dict or None
        ``coef_path_``, ``intercept_path_`` and ``dev_ratio_`` of the relaxed fit.

    Examples
    --------
    >>> path = ElasticNetPath(alpha=0.5).fit(X, y)
    >>> path.coef(s=0.1)
    """

    def __init__(
        self,
        family='gaussian',
        alpha=1.0,
        nlambda=100,
        lambda_min_ratio=None,
        lambda_seq=None,
        standardize=True,
        fit_intercept=True,
        exclude=None,
        relax=False,
        control=None,
        feature_names=None,
    ):
        self.family = family
        self.alpha = alpha
        self.nlambda = nlambda
        self.lambda_min_ratio = lambda_min_ratio
        self.lambda_seq = lambda_seq
        self.standardize = standardize
        self.fit_intercept = fit_intercept
        self.exclude = exclude
        self.relax = relax
        self.control = control
        self.feature_names = feature_names

    def fit(self, X, y, sample_weight=None, offset=None, classes=None):
        """
        Fit the whole path.

        Parameters
        ----------
        X : array-like or sparse matrix of shape (n_samples, n_features)
        y : array-like
            Response; a 2-D array for 'mgaussian', labels for classification.
        sample_weight : array-like of shape (n_samples,), optional
        offset : array-like of shape (n_samples,) or (n_samples, n_outputs), optional
        classes : array-like, optional
            Class labels to use instead of those found in ``y`` (keeps CV
            folds aligned with the full fit).

        Returns
        -------
        self : object
        """
        if not 0 <= self.alpha <= 1:
            raise ValueError(f"alpha must be in [0, 1], got {self.alpha}")
        family = get_family(self.family)
        family.check_alpha(self.alpha)
        if self.relax:
            require_sklearn('1.2', 'Relaxed fit')
        control = resolve_control(self.control)

        if hasattr(X, 'columns'):
            self.feature_names_in_ = np.array([str(c) for c in X.columns])
        elif self.feature_names is not None:
            self.feature_names_in_ = np.array(list(self.feature_names))
        else:
            self.feature_names_in_ = np.array([f'V{i + 1}' for i in range(X.shape[1])])

        X = _as_matrix(X)
        n, p = X.shape
        if len(self.feature_names_in_) != p:
            raise ValueError(f"{len(self.feature_names_in_)} feature names for {p} columns")
        if p == 0:
            raise ValueError("X must have at least one column")

        Y, y_fit, self.classes_ = family.prepare_response(y, classes)
        if Y.shape[0] != n:
            raise ValueError(f"X has {n} rows but y has {Y.shape[0]}")
        n_outputs = Y.shape[1]

        if sample_weight is None:
            w = np.ones(n)
        else:
            w = np.asarray(sample_weight, dtype=float).ravel()
            if w.shape[0] != n:
                raise ValueError(f"sample_weight has {w.shape[0]} entries, expected {n}")
            if np.any(w < 0):
                raise ValueError("Negative weights are not allowed")
        w = w * n / w.sum()

        offset = _resolve_offset(offset, n, n_outputs)
        if offset is not None and not family.supports_offset:
            raise FamilyError(
                f"Offsets are not supported for the {family.name} family by scikit-learn"
            )

        self.family_ = family
        self.n_features_in_ = p
        self.nobs_ = n
        self.offset_used_ = offset is not None
        keep = self._included_columns(p)

        # Standardise the included columns. Sparse input is scaled only; the
        # solvers centre it implicitly, so ``mean`` is the shift actually applied.
        Xk = X[:, keep]
        if self.standardize:
            mean, sd = _column_moments(Xk, w, self.fit_intercept)
        else:
            mean, sd = np.zeros(Xk.shape[1]), np.ones(Xk.shape[1])
        if sparse.issparse(Xk) or not self.fit_intercept:
            mean = np.zeros(Xk.shape[1])
        if sparse.issparse(Xk):
            Xs = sparse.csr_matrix(Xk @ sparse.diags(1.0 / sd))
        else:
            Xs = (Xk - mean) / sd

        # Null model and lambda sequence
        null_int = family.null_intercept(Y, w, offset, self.fit_intercept)
        null_eta = np.broadcast_to(null_int, (n, n_outputs))
        if offset is not None:
            null_eta = null_eta + offset
        self.nulldev_ = family.deviance(Y, family.inverse_link(null_eta), w)

        if self.lambda_seq is not None:
            lambdas = np.sort(np.asarray(self.lambda_seq, dtype=float).ravel())[::-1]
            if np.any(lambdas < 0):
                raise ValueError("lambda values must be non-negative")
            early_stop = False
        else:
            resid = Y - family.inverse_link(null_eta)
            grad = np.asarray(Xs.T @ (w[:, None] * resid)) / n
            if family.grouped:
                score = np.sqrt((grad ** 2).sum(axis=1))
            else:
                score = np.abs(grad).max(axis=1)
            lambda_max = score.max() / max(self.alpha, 1e-3)
            lambda_max = max(lambda_max, np.finfo(float).eps)
            ratio = self.lambda_min_ratio
            if ratio is None:
                ratio = 1e-4 if n > p else 1e-2
            lambdas = lambda_sequence(lambda_max, self.nlambda, ratio)
            early_stop = True

        logger.debug("Fitting %s path: n=%d, p=%d, alpha=%g, %d lambda values",
                     family.name, n, p, self.alpha, len(lambdas))

        target = family.fit_target(y_fit, offset)
        estimator = family.build_estimator(self.alpha, self.fit_intercept, control)

        coefs, intercepts, dev_ratios = [], [], []
        for i, lam in enumerate(lambdas):
            if lam <= 0:
                raise ValueError("lambda must be positive for a penalised fit")
            estimator.set_params(**family.penalty_params(lam, self.alpha, n))
            family.fit_estimator(estimator, Xs, target, w)
            coef_s, int_s = family.extract(estimator, n_outputs)

            coef = np.zeros((n_outputs, p))
            coef[:, keep] = coef_s / sd
            intercept = int_s - coef[:, keep] @ mean

            eta = self._linear_predictor(X, coef[None], intercept[None], offset)[..., 0]
            dev = family.deviance(Y, family.inverse_link(eta), w)
            dev_ratio = 1.0 - dev / self.nulldev_ if self.nulldev_ > 0 else 0.0

            coefs.append(coef)
            intercepts.append(intercept)
            dev_ratios.append(dev_ratio)

            if early_stop and i >= 1 and i + 1 >= control.mnlam:
                if dev_ratio > control.devmax:
                    break
                if dev_ratio - dev_ratios[-2] < control.fdev * dev_ratio:
                    break

        n_fit = len(coefs)
        if n_fit < len(lambdas):
            logger.debug("Path stopped early after %d of %d lambda values", n_fit, len(lambdas))

        self.lambda_ = np.asarray(lambdas[:n_fit], dtype=float)
        self.coef_path_ = np.array(coefs)
        self.intercept_path_ = np.array(intercepts)
        self.dev_ratio_ = np.array(dev_ratios)
        self.df_ = np.count_nonzero(np.any(self.coef_path_ != 0, axis=1), axis=1)

        self.relaxed_ = None
        if self.relax:
            self.relaxed_ = self._fit_relaxed(X, Y, y_fit, w, offset, control)

        return self

    def _included_columns(self, p):
        keep = np.ones(p, dtype=bool)
        if not self.exclude:
            return keep
        names = list(self.feature_names_in_)
        for item in self.exclude:
            if isinstance(item, str):
                if item not in names:
                    raise ValueError(f"Cannot exclude unknown column '{item}'")
                keep[names.index(item)] = False
            else:
                keep[int(item)] = False
        if not keep.any():
            raise ValueError("All columns are excluded")
        return keep

    def _fit_relaxed(self, X, Y, y_fit, w, offset, control):
        """Unpenalised refit on every distinct active set along the path."""
        family = self.family_
        n_outputs = Y.shape[1]
        target = family.fit_target(y_fit, offset)
        cache = {}
        coefs, intercepts, dev_ratios = [], [], []

        for coef_pen in self.coef_path_:
            active = tuple(np.flatnonzero(np.any(coef_pen != 0, axis=0)))
            if active not in cache:
                coef = np.zeros((n_outputs, self.n_features_in_))
                if active:
                    estimator = family.build_unpenalized(self.fit_intercept, control)
                    family.fit_estimator(estimator, X[:, list(active)], target, w)
                    coef_a, intercept = family.extract(estimator, n_outputs)
                    coef[:, list(active)] = coef_a
                else:
                    intercept = family.null_intercept(Y, w, offset, self.fit_intercept)
                eta = self._linear_predictor(X, coef[None], intercept[None], offset)[..., 0]
                dev = family.deviance(Y, family.inverse_link(eta), w)
                dev_ratio = 1.0 - dev / self.nulldev_ if self.nulldev_ > 0 else 0.0
                cache[active] = (coef, intercept, dev_ratio)
            coef, intercept, dev_ratio = cache[active]
            coefs.append(coef)
            intercepts.append(intercept)
            dev_ratios.append(dev_ratio)

        logger.debug("Relaxed fit: %d distinct active sets", len(cache))
        return {
            'coef_path_': np.array(coefs),
            'intercept_path_': np.array(intercepts),
            'dev_ratio_': np.array(dev_ratios),
        }

    @staticmethod
    def _linear_predictor(X, coef, intercept, offset):
        """eta of shape (n, K, S) for coef (S, K, p) and intercept (S, K)."""
        etas = [X @ c.T + b for c, b in zip(coef, intercept)]
        eta = np.stack([np.asarray(e) for e in etas], axis=-1)
        if offset is not None:
            eta = eta + offset[:, :, None]
        return eta

    def _resolve_s(self, s):
        if s is None:
            return self.lambda_, False
        s_arr = np.asarray(s, dtype=float)
        return np.atleast_1d(s_arr).ravel(), s_arr.ndim == 0

    def _path_at(self, s, gamma=1.0):
        """Coefficients (S, K, p) and intercepts (S, K) at lambda values ``s``."""
        coef_path, int_path = self.coef_path_, self.intercept_path_
        if gamma != 1.0:
            if self.relaxed_ is None:
                raise ValueError("gamma is only meaningful for a relaxed fit (relax=True)")
            if not 0 <= gamma <= 1:
                raise ValueError(f"gamma must be in [0, 1], got {gamma}")
            coef_path = gamma * coef_path + (1 - gamma) * self.relaxed_['coef_path_']
            int_path = gamma * int_path + (1 - gamma) * self.relaxed_['intercept_path_']

        s_values, scalar = self._resolve_s(s)
        if s is None or len(self.lambda_) == 1:
            if s is None:
                return coef_path, int_path, s_values, scalar
            idx = np.zeros(len(s_values), dtype=int)
            return coef_path[idx], int_path[idx], s_values, scalar

        # Linear interpolation in lambda, clamped at both ends of the path
        fill = (coef_path[-1], coef_path[0])
        coef = interp1d(self.lambda_, coef_path, axis=0, bounds_error=False,
                        fill_value=fill)(s_values)
        fill = (int_path[-1], int_path[0])
        intercept = interp1d(self.lambda_, int_path, axis=0, bounds_error=False,
                             fill_value=fill)(s_values)

        # Values on the path are returned exactly
        for i, value in enumerate(s_values):
            hit = np.flatnonzero(self.lambda_ == value)
            if hit.size:
                coef[i] = coef_path[hit[0]]
                intercept[i] = int_path[hit[0]]
        return coef, intercept, s_values, scalar

    def coef(self, s=None, gamma=1.0):
        """
        Coefficients at lambda values ``s`` (default: the whole path).

        Returns
        -------
        ndarray
            Intercept first. Shape (p + 1, S) for single-output families,
            (K, p + 1, S) otherwise; the last axis is dropped for scalar ``s``.
        """
        check_is_fitted(self, 'coef_path_')
        coef, intercept, _, scalar = self._path_at(s, gamma)
        full = np.concatenate([intercept[:, :, None], coef], axis=2)  # (S, K, p+1)
        full = np.moveaxis(full, 0, -1)  # (K, p+1, S)
        if full.shape[0] == 1:
            full = full[0]
        if scalar:
            full = full[..., 0]
        return full

    def predict(self, X, s=None, type='link', offset=None, gamma=1.0):
        """
        Predict at lambda values ``s`` (default: the whole path).

        Parameters
        ----------
        X : array-like or sparse matrix
        s : float, array-like or None
        type : {'link', 'response', 'class', 'coefficients', 'nonzero'}
        offset : array-like, optional
            Required when the model was fitted with an offset.
        gamma : float, default=1.0
            Relaxed-fit blend; 1 is the penalised fit.

        Returns
        -------
        ndarray
            (n, S) for single-output families, (n, K, S) otherwise; the last
            axis is dropped for scalar ``s``.
        """
        check_is_fitted(self, 'coef_path_')
        if type not in PREDICT_TYPES:
            raise ValueError(f"type must be one of {PREDICT_TYPES}, got '{type}'")
        if type == 'coefficients':
            return self.coef(s, gamma)
        if type == 'nonzero':
            coef, _, _, scalar = self._path_at(s, gamma)
            nonzero = [np.flatnonzero(np.any(c != 0, axis=0)) for c in coef]
            return nonzero[0] if scalar else nonzero

        X = _as_matrix(X)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, but model was fitted "
                f"with {self.n_features_in_} features"
            )
        if self.offset_used_ and offset is None:
            raise ValueError("No offset provided for prediction, yet used in fit")
        if offset is not None and not self.offset_used_:
            offset = None
        n_outputs = self.coef_path_.shape[1]
        offset = _resolve_offset(offset, X.shape[0], n_outputs)

        coef, intercept, _, scalar = self._path_at(s, gamma)
        eta = self._linear_predictor(X, coef, intercept, offset)  # (n, K, S)

        if type == 'response':
            out = np.stack([self.family_.inverse_link(eta[:, :, i])
                            for i in range(eta.shape[2])], axis=-1)
        elif type == 'class':
            if not self.family_.classification:
                raise FamilyError(
                    f"type='class' is only available for classification families, "
                    f"not {self.family_.name}"
                )
            labels = [self.family_.predict_class(eta[:, :, i], self.classes_)
                      for i in range(eta.shape[2])]
            out = np.stack(labels, axis=-1)
            return out[:, 0] if scalar else out
        else:
            out = eta

        if out.shape[1] == 1:
            out = out[:, 0]
        if scalar:
            out = out[..., 0]
        return out
