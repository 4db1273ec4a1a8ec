"""
Response families for elastic-net paths.

A family tells ElasticNetPath which scikit-learn estimator minimises the
glmnet objective

    (1/n) * sum_i w_i * loss(y_i, eta_i) + lambda * ((1 - alpha)/2 * ||b||_2^2 + alpha * ||b||_1)

for a given (lambda, alpha) pair, with weights rescaled to sum to n. It
also supplies the inverse link, the deviance and the intercept-only model
used for lambda_max and the deviance ratio.

All responses are carried as an (n, K) float matrix ``Y``: K = 1 for
gaussian, binomial and poisson, K = number of classes (one-hot) for
multinomial and K = number of responses for mgaussian.
"""

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.special import expit, softmax, xlogy
from sklearn.linear_model import (
    ElasticNet,
    LinearRegression,
    MultiTaskElasticNet,
    PoissonRegressor,
    Ridge,
)

from ..exceptions import FamilyError
from ..versions import make_logistic_regression, require_sklearn

_PROB_EPS = 1e-10


def _response_classes(y, classes=None):
    """Return (classes, integer codes) for a categorical response."""
    if classes is not None:
        classes = np.asarray(classes)
    elif isinstance(getattr(y, 'dtype', None), pd.CategoricalDtype):
        observed = set(pd.Series(y).dropna().tolist())
        classes = np.asarray([c for c in y.dtype.categories if c in observed])
    else:
        classes = np.unique(np.asarray(y))

    lookup = {c: i for i, c in enumerate(classes.tolist())}
    values = np.asarray(y).ravel().tolist()
    try:
        codes = np.array([lookup[v] for v in values], dtype=int)
    except KeyError as exc:
        raise FamilyError(
            f"Response value {exc.args[0]!r} is not one of the classes {classes.tolist()}"
        ) from None
    return classes, codes


def _weighted_column_mean(values, w):
    return (w[:, None] * values).sum(axis=0) / w.sum()


class Family:
    """Base family: identity link, squared-error deviance."""

    name = None
    deviance_label = 'Deviance'
    classification = False
    grouped = False
    supports_offset = True

    def __repr__(self):
        return f"{type(self).__name__}()"

    def check_alpha(self, alpha):
        """Reject alpha values this family cannot fit."""

    def prepare_response(self, y, classes=None):
        """Return ``(Y, y_fit, classes)``."""
        raise NotImplementedError

    def fit_target(self, y_fit, offset):
        return y_fit

    def build_estimator(self, alpha, fit_intercept, control):
        raise NotImplementedError

    def penalty_params(self, lam, alpha, n):
        raise NotImplementedError

    def build_unpenalized(self, fit_intercept, control):
        return LinearRegression(fit_intercept=fit_intercept)

    def fit_estimator(self, estimator, X, y, w):
        return estimator.fit(X, y, sample_weight=w)

    def extract(self, estimator, n_outputs):
        """Coefficients (K, p) and intercepts (K,) of a fitted estimator."""
        coef = np.atleast_2d(np.asarray(estimator.coef_, dtype=float))
        intercept = np.broadcast_to(
            np.atleast_1d(np.asarray(estimator.intercept_, dtype=float)), (coef.shape[0],)
        ).copy()
        return coef, intercept

    def inverse_link(self, eta):
        return eta

    def pointwise_deviance(self, Y, mu):
        return ((Y - mu) ** 2).sum(axis=1)

    def deviance(self, Y, mu, w):
        return float(np.sum(w * self.pointwise_deviance(Y, mu)))

    def null_intercept(self, Y, w, offset, fit_intercept):
        """Intercept (link scale) of the intercept-only model."""
        if not fit_intercept:
            return np.zeros(Y.shape[1])
        target = Y if offset is None else Y - offset
        return _weighted_column_mean(target, w)

    def predict_class(self, eta, classes):
        raise FamilyError(f"type='class' is only available for classification families, not {self.name}")


class Gaussian(Family):
    name = 'gaussian'
    deviance_label = 'Mean-Squared Error'

    def prepare_response(self, y, classes=None):
        Y = np.asarray(y, dtype=float)
        Y = Y.reshape(Y.shape[0], -1)
        if Y.shape[1] != 1:
            raise FamilyError(
                f"The gaussian family needs a single response column, got {Y.shape[1]}; "
                "use family='mgaussian' for several responses"
            )
        return Y, Y[:, 0], None

    def fit_target(self, y_fit, offset):
        if offset is None:
            return y_fit
        return y_fit - offset[:, 0]

    def build_estimator(self, alpha, fit_intercept, control):
        if alpha == 0:
            return Ridge(fit_intercept=fit_intercept, max_iter=control.max_iter, tol=control.tol)
        return ElasticNet(l1_ratio=alpha, fit_intercept=fit_intercept,
                          max_iter=control.max_iter, tol=control.tol, warm_start=True)

    def penalty_params(self, lam, alpha, n):
        # Ridge minimises ||r||^2 + a||b||^2, i.e. 2n times the glmnet objective
        if alpha == 0:
            return {'alpha': lam * n}
        return {'alpha': lam}


class MGaussian(Gaussian):
    name = 'mgaussian'
    grouped = True

    def prepare_response(self, y, classes=None):
        Y = np.asarray(y, dtype=float)
        Y = Y.reshape(Y.shape[0], -1)
        return Y, Y, None

    def fit_target(self, y_fit, offset):
        if offset is None:
            return y_fit
        return y_fit - offset

    def build_estimator(self, alpha, fit_intercept, control):
        if alpha == 0:
            return Ridge(fit_intercept=fit_intercept, max_iter=control.max_iter, tol=control.tol)
        return MultiTaskElasticNet(l1_ratio=alpha, fit_intercept=fit_intercept,
                                   max_iter=control.max_iter, tol=control.tol, warm_start=True)

    def fit_estimator(self, estimator, X, y, w):
        if isinstance(estimator, MultiTaskElasticNet):
            if not np.allclose(w, w[0]):
                raise FamilyError(
                    "The mgaussian family with alpha > 0 is fitted with MultiTaskElasticNet, "
                    "which does not support case weights"
                )
            if sparse.issparse(X):
                X = X.toarray()
            return estimator.fit(X, y)
        return estimator.fit(X, y, sample_weight=w)


class Binomial(Family):
    name = 'binomial'
    deviance_label = 'Binomial Deviance'
    classification = True
    supports_offset = False

    def prepare_response(self, y, classes=None):
        classes, codes = _response_classes(y, classes)
        if len(classes) != 2:
            raise FamilyError(
                f"The binomial family needs exactly two classes, found {len(classes)}; "
                "use family='multinomial'"
            )
        _check_class_counts(codes, len(classes))
        return codes[:, None].astype(float), codes, classes

    def build_estimator(self, alpha, fit_intercept, control):
        return make_logistic_regression(l1_ratio=alpha, solver='saga', fit_intercept=fit_intercept,
                                        max_iter=control.max_iter, tol=control.tol,
                                        warm_start=True)

    def penalty_params(self, lam, alpha, n):
        return {'C': 1.0 / (n * lam)}

    def build_unpenalized(self, fit_intercept, control):
        return make_logistic_regression(None, solver='lbfgs', fit_intercept=fit_intercept,
                                        max_iter=control.max_iter)

    def inverse_link(self, eta):
        return expit(eta)

    def pointwise_deviance(self, Y, mu):
        mu = np.clip(mu, _PROB_EPS, 1 - _PROB_EPS)
        return (-2.0 * (Y * np.log(mu) + (1 - Y) * np.log(1 - mu))).sum(axis=1)

    def null_intercept(self, Y, w, offset, fit_intercept):
        if not fit_intercept:
            return np.zeros(1)
        p = np.clip(_weighted_column_mean(Y, w), _PROB_EPS, 1 - _PROB_EPS)
        return np.log(p / (1 - p))

    def predict_class(self, eta, classes):
        return classes[(eta[:, 0] > 0).astype(int)]


class Multinomial(Family):
    name = 'multinomial'
    deviance_label = 'Multinomial Deviance'
    classification = True
    supports_offset = False

    def prepare_response(self, y, classes=None):
        classes, codes = _response_classes(y, classes)
        if len(classes) < 2:
            raise FamilyError("The multinomial family needs at least two classes")
        _check_class_counts(codes, len(classes))
        Y = np.zeros((len(codes), len(classes)))
        Y[np.arange(len(codes)), codes] = 1.0
        return Y, codes, classes

    build_estimator = Binomial.build_estimator
    penalty_params = Binomial.penalty_params
    build_unpenalized = Binomial.build_unpenalized

    def extract(self, estimator, n_outputs):
        coef, intercept = super().extract(estimator, n_outputs)
        if coef.shape[0] == 1 and n_outputs == 2:
            # scikit-learn parametrises two classes with a single row
            coef = np.vstack([-coef[0] / 2, coef[0] / 2])
            intercept = np.array([-intercept[0] / 2, intercept[0] / 2])
        return coef, intercept

    def inverse_link(self, eta):
        return softmax(eta, axis=1)

    def pointwise_deviance(self, Y, mu):
        mu = np.clip(mu, _PROB_EPS, 1.0)
        return -2.0 * (Y * np.log(mu)).sum(axis=1)

    def null_intercept(self, Y, w, offset, fit_intercept):
        if not fit_intercept:
            return np.zeros(Y.shape[1])
        logp = np.log(np.clip(_weighted_column_mean(Y, w), _PROB_EPS, 1.0))
        return logp - logp.mean()

    def predict_class(self, eta, classes):
        return classes[np.argmax(eta, axis=1)]


class Poisson(Family):
    name = 'poisson'
    deviance_label = 'Poisson Deviance'
    supports_offset = False

    def check_alpha(self, alpha):
        require_sklearn('0.23', 'The poisson family')
        if alpha != 0:
            raise FamilyError(
                "The poisson family is fitted with scikit-learn's PoissonRegressor, "
                "which only supports the ridge penalty (alpha=0)"
            )

    def prepare_response(self, y, classes=None):
        Y = np.asarray(y, dtype=float).reshape(len(y), -1)
        if Y.shape[1] != 1:
            raise FamilyError("The poisson family needs a single response column")
        if np.any(Y < 0):
            raise FamilyError("Negative responses are not allowed for the poisson family")
        return Y, Y[:, 0], None

    def build_estimator(self, alpha, fit_intercept, control):
        return PoissonRegressor(fit_intercept=fit_intercept, max_iter=control.max_iter,
                                tol=control.tol, warm_start=True)

    def penalty_params(self, lam, alpha, n):
        return {'alpha': lam}

    def build_unpenalized(self, fit_intercept, control):
        return PoissonRegressor(alpha=0.0, fit_intercept=fit_intercept, max_iter=control.max_iter)

    def inverse_link(self, eta):
        return np.exp(eta)

    def pointwise_deviance(self, Y, mu):
        return (2.0 * (xlogy(Y, Y) - xlogy(Y, mu) - Y + mu)).sum(axis=1)

    def null_intercept(self, Y, w, offset, fit_intercept):
        if not fit_intercept:
            return np.zeros(1)
        return np.log(np.maximum(_weighted_column_mean(Y, w), _PROB_EPS))


def _check_class_counts(codes, n_classes):
    counts = np.bincount(codes, minlength=n_classes)
    if np.any(counts < 2):
        raise FamilyError("One multinomial or binomial class has 1 or 0 observations; not allowed")


FAMILIES = {
    'gaussian': Gaussian,
    'binomial': Binomial,
    'multinomial': Multinomial,
    'poisson': Poisson,
    'mgaussian': MGaussian,
}


def get_family(family):
    """Resolve a family name, Family subclass or Family instance."""
    if isinstance(family, Family):
        return family
    if isinstance(family, type) and issubclass(family, Family):
        return family()
    if isinstance(family, str):
        key = family.lower()
        if key == 'cox':
            raise FamilyError(
                "The cox family is not available: scikit-learn has no "
                "proportional-hazards estimator"
            )
        if key not in FAMILIES:
            raise FamilyError(f"Unknown family '{family}'; choose from {sorted(FAMILIES)}")
        return FAMILIES[key]()
    raise FamilyError(
        "Invalid family argument; must be a family name, a Family subclass or a Family instance"
    )
