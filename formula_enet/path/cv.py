"""
Cross-validation along an elastic-net path, and over the mixing parameter.

CVElasticNetPath fits the full-data path once, then refits every fold on
the same lambda sequence and scores the held-out rows. Folds are
independent units of work mapped with joblib; the reduction to cvm/cvsd
happens only after all of them finish, so serial and parallel runs give
identical results for a fixed fold assignment.

CVAElasticNetPath repeats this for a grid of alpha values with one shared
fold assignment.
"""

import logging
import warnings

import numpy as np
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator, clone
from sklearn.metrics import roc_auc_score
from sklearn.utils.validation import check_is_fitted

from ..exceptions import FamilyError
from .estimator import ElasticNetPath, _as_matrix
from .families import get_family

logger = logging.getLogger(__name__)

MEASURES = ('default', 'deviance', 'mse', 'mae', 'class', 'auc')

MEASURE_LABELS = {
    'mse': 'Mean-Squared Error',
    'mae': 'Mean Absolute Error',
    'class': 'Misclassification Error',
    'auc': 'AUC',
}


def make_foldid(n_samples, nfolds=10, random_state=None):
    """Random balanced fold assignment with values 0 .. nfolds-1."""
    rng = np.random.default_rng(random_state)
    return rng.permutation(np.arange(n_samples) % nfolds)


def _check_foldid(foldid, n_samples):
    foldid = np.asarray(foldid).ravel()
    if foldid.shape[0] != n_samples:
        raise ValueError(f"foldid has {foldid.shape[0]} entries, expected {n_samples}")
    folds = np.unique(foldid)
    if len(folds) < 3:
        raise ValueError("nfolds must be bigger than 3; nfolds=10 recommended")
    return foldid, folds


def _take(a, idx):
    if a is None:
        return None
    if hasattr(a, 'iloc'):
        return a.iloc[idx]
    return a[idx]


def _fit_fold(template, X, y, w, offset, train, classes):
    """Fit one training fold; the unit of work for the parallel map."""
    model = clone(template)
    return model.fit(X[train], _take(y, train), sample_weight=_take(w, train),
                     offset=_take(offset, train), classes=classes)


def _measure(measure, family):
    if measure == 'default':
        measure = 'deviance'
    if measure not in MEASURES:
        raise ValueError(f"type_measure must be one of {MEASURES}, got '{measure}'")
    if measure == 'class' and not family.classification:
        raise FamilyError("type_measure='class' needs a binomial or multinomial family")
    if measure == 'auc' and family.name != 'binomial':
        raise FamilyError("type_measure='auc' needs the binomial family")
    return measure


def _fold_loss(measure, family, model, X, Y, w, offset, codes):
    """Weighted mean held-out loss for each lambda; shape (n_lambda,)."""
    eta = model.predict(X, type='link', offset=offset)
    # predict squeezes single-output families; restore (n, K, L)
    if eta.ndim == 2:
        eta = eta[:, None, :]
    mu = np.stack([family.inverse_link(eta[:, :, i]) for i in range(eta.shape[2])], axis=-1)

    if measure == 'auc':
        if len(np.unique(Y[:, 0])) < 2:
            return np.full(mu.shape[2], np.nan)
        return np.array([roc_auc_score(Y[:, 0], mu[:, 0, i], sample_weight=w)
                         for i in range(mu.shape[2])])

    Yl = Y[:, :, None]
    if measure == 'deviance':
        raw = family.pointwise_deviance(Yl, mu)
    elif measure == 'mse':
        raw = ((Yl - mu) ** 2).sum(axis=1)
    elif measure == 'mae':
        raw = np.abs(Yl - mu).sum(axis=1)
    else:
        if family.name == 'binomial':
            predicted = (eta[:, 0, :] > 0).astype(int)
        else:
            predicted = np.argmax(eta, axis=1)
        raw = (predicted != codes[:, None]).astype(float)
    return (w[:, None] * raw).sum(axis=0) / w.sum()


class CVElasticNetPath(BaseEstimator):
    """
    K-fold cross-validated elastic-net path.

    Parameters
    ----------
    family, alpha, nlambda, lambda_min_ratio, lambda_seq, standardize,
    fit_intercept, exclude, control :
        Passed to ElasticNetPath.

    nfolds : int, default=10
        Number of folds when ``foldid`` is not given. At least 3.

    foldid : array-like or None
        Fixed fold assignment, one label per observation.

    type_measure : str, default='default'
        'deviance' (the default), 'mse', 'mae', 'class' or 'auc'.

    keep : bool, default=False
        Keep the pre-validated linear predictors in ``fit_preval_``.

    n_jobs : int or None, default=None
        Parallel jobs over folds (joblib).

    random_state : int or None
        Seed for the generated fold assignment.

    verbose : int, default=0
        Verbosity level.

    Attributes
    ----------
    path_ : ElasticNetPath
        Fit on the full data.
    lambda_ : ndarray
    cvm_, cvsd_, cvup_, cvlo_ : ndarray
    nzero_ : ndarray
    name_ : str
    lambda_min_, lambda_1se_ : float
    index_min_, index_1se_ : int
    foldid_ : ndarray
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
        control=None,
        nfolds=10,
        foldid=None,
        type_measure='default',
        keep=False,
        n_jobs=None,
        random_state=None,
        verbose=0,
    ):
        self.family = family
        self.alpha = alpha
        self.nlambda = nlambda
        self.lambda_min_ratio = lambda_min_ratio
        self.lambda_seq = lambda_seq
        self.standardize = standardize
        self.fit_intercept = fit_intercept
        self.exclude = exclude
        self.control = control
        self.nfolds = nfolds
        self.foldid = foldid
        self.type_measure = type_measure
        self.keep = keep
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose

    def _path_template(self, lambda_seq=None, feature_names=None):
        return ElasticNetPath(
            family=self.family,
            alpha=self.alpha,
            nlambda=self.nlambda,
            lambda_min_ratio=self.lambda_min_ratio,
            lambda_seq=self.lambda_seq if lambda_seq is None else lambda_seq,
            standardize=self.standardize,
            fit_intercept=self.fit_intercept,
            exclude=self.exclude,
            control=self.control,
            feature_names=feature_names,
        )

    def fit(self, X, y, sample_weight=None, offset=None, feature_names=None):
        """
        Fit the full path and cross-validate it.

        Parameters
        ----------
        X : array-like or sparse matrix
        y : array-like
        sample_weight : array-like, optional
        offset : array-like, optional
        feature_names : list of str, optional

        Returns
        -------
        self : object
        """
        family = get_family(self.family)
        measure = _measure(self.type_measure, family)
        if hasattr(X, 'columns') and feature_names is None:
            feature_names = [str(c) for c in X.columns]
        X = _as_matrix(X)
        n = X.shape[0]

        if self.foldid is not None:
            foldid, folds = _check_foldid(self.foldid, n)
        else:
            if self.nfolds < 3:
                raise ValueError("nfolds must be bigger than 3; nfolds=10 recommended")
            foldid, folds = _check_foldid(make_foldid(n, self.nfolds, self.random_state), n)

        if measure == 'auc' and n / len(folds) < 10:
            warnings.warn(
                "Too few (< 10) observations per fold for type_measure='auc'; "
                "using type_measure='deviance' instead",
                UserWarning,
            )
            measure = 'deviance'

        self.path_ = self._path_template(feature_names=feature_names).fit(
            X, y, sample_weight=sample_weight, offset=offset)
        self.lambda_ = self.path_.lambda_
        self.foldid_ = foldid
        self.name_ = (self.path_.family_.deviance_label if measure == 'deviance'
                      else MEASURE_LABELS[measure])
        self.measure_ = measure

        Y, _, _ = self.path_.family_.prepare_response(y, self.path_.classes_)
        codes = np.argmax(Y, axis=1) if self.path_.family_.name == 'multinomial' else Y[:, 0]
        w = np.ones(n) if sample_weight is None else np.asarray(sample_weight, dtype=float).ravel()
        offset_arr = None if offset is None else np.asarray(offset, dtype=float)

        if self.verbose > 0:
            print(f"Cross-validating {len(self.lambda_)} lambda values over {len(folds)} folds "
                  f"(alpha={self.alpha:g})...")

        template = self._path_template(lambda_seq=self.lambda_, feature_names=feature_names)
        trains = [np.flatnonzero(foldid != k) for k in folds]
        models = Parallel(n_jobs=self.n_jobs)(
            delayed(_fit_fold)(template, X, y, w, offset_arr, train, self.path_.classes_)
            for train in trains
        )

        cvraw = np.empty((len(folds), len(self.lambda_)))
        fold_weights = np.empty(len(folds))
        preval = None
        if self.keep:
            preval = np.full((n, Y.shape[1], len(self.lambda_)), np.nan)
        for j, (k, model) in enumerate(zip(folds, models)):
            test = np.flatnonzero(foldid == k)
            cvraw[j] = _fold_loss(measure, self.path_.family_, model, X[test], Y[test], w[test],
                                  _take(offset_arr, test), codes[test])
            fold_weights[j] = w[test].sum()
            if preval is not None:
                eta = model.predict(X[test], type='link', offset=_take(offset_arr, test))
                preval[test] = eta[:, None, :] if eta.ndim == 2 else eta
            logger.debug("Fold %s: %d held-out rows", k, len(test))

        # AUC is undefined on a held-out fold with a single class
        scored = ~np.isnan(cvraw).any(axis=1)
        if not scored.all():
            if scored.sum() < 2:
                raise ValueError(
                    "type_measure='auc' needs at least two folds whose held-out rows "
                    "contain both classes"
                )
            warnings.warn(
                f"{int((~scored).sum())} fold(s) with a single class in the held-out rows "
                "left out of the AUC",
                UserWarning,
            )
        used, used_weights = cvraw[scored], fold_weights[scored]
        self.cvm_ = np.average(used, axis=0, weights=used_weights)
        var = np.average((used - self.cvm_) ** 2, axis=0, weights=used_weights)
        self.cvsd_ = np.sqrt(var / (len(used) - 1))
        self.cvup_ = self.cvm_ + self.cvsd_
        self.cvlo_ = self.cvm_ - self.cvsd_
        self.nzero_ = self.path_.df_
        self.cvraw_ = cvraw
        if preval is not None:
            self.fit_preval_ = preval[:, 0, :] if preval.shape[1] == 1 else preval

        self._select_lambda()
        if self.verbose > 0:
            print(f"lambda.min={self.lambda_min_:.6g}, lambda.1se={self.lambda_1se_:.6g}")
        return self

    def _select_lambda(self):
        # AUC is maximised, everything else minimised
        sign = -1.0 if self.measure_ == 'auc' else 1.0
        cvm = sign * self.cvm_
        cvmin = np.nanmin(cvm)
        idmin = np.flatnonzero(cvm <= cvmin)
        self.index_min_ = int(idmin[np.argmax(self.lambda_[idmin])])
        self.lambda_min_ = float(self.lambda_[self.index_min_])

        semin = cvm[self.index_min_] + self.cvsd_[self.index_min_]
        id1se = np.flatnonzero(cvm <= semin)
        self.index_1se_ = int(id1se[np.argmax(self.lambda_[id1se])])
        self.lambda_1se_ = float(self.lambda_[self.index_1se_])

    def _resolve_s(self, s):
        if isinstance(s, str):
            if s in ('lambda_1se', 'lambda.1se'):
                return self.lambda_1se_
            if s in ('lambda_min', 'lambda.min'):
                return self.lambda_min_
            raise ValueError(f"Invalid form for s: '{s}'")
        return s

    def loss_at(self, s='lambda_1se'):
        """CV loss at ``s`` (the value of cvm at that lambda)."""
        check_is_fitted(self, 'cvm_')
        lam = self._resolve_s(s)
        return float(self.cvm_[np.argmin(np.abs(self.lambda_ - lam))])

    def predict(self, X, s='lambda_1se', **kwargs):
        """Predict with the full-data path at ``s``."""
        check_is_fitted(self, 'cvm_')
        return self.path_.predict(X, s=self._resolve_s(s), **kwargs)

    def coef(self, s='lambda_1se', **kwargs):
        """Coefficients of the full-data path at ``s``."""
        check_is_fitted(self, 'cvm_')
        return self.path_.coef(s=self._resolve_s(s), **kwargs)


def _fit_alpha(template, alpha, X, y, w, offset, feature_names):
    """Cross-validate one alpha value; the unit of work for the outer map."""
    model = clone(template).set_params(alpha=alpha)
    return model.fit(X, y, sample_weight=w, offset=offset, feature_names=feature_names)


class CVAElasticNetPath(BaseEstimator):
    """
    Cross-validation over the elastic-net mixing parameter alpha.

    Every alpha is cross-validated with the same fold assignment so that
    the CV losses are comparable.

    Parameters
    ----------
    alphas : array-like or None
        Alpha grid. Defaults to ``np.linspace(0, 1, 11) ** 3``, or ``[0.0]``
        for the poisson family.

    nfolds : int, default=10
    foldid : array-like or None
    outer_jobs : int or None
        Parallel jobs over alpha values.
    n_jobs : int or None
        Parallel jobs over folds within each alpha.
    cv_type : {'min', '1se'}, default='min'
        Lambda rule used to choose the best (alpha, lambda) pair.
    random_state : int or None
    verbose : int, default=0

    Remaining parameters are passed to CVElasticNetPath.

    Attributes
    ----------
    alpha_ : ndarray
    modlist_ : list of CVElasticNetPath
    foldid_ : ndarray
    best_alpha_, best_lambda_ : float
    best_index_ : int
    """

    def __init__(
        self,
        alphas=None,
        family='gaussian',
        nlambda=100,
        lambda_min_ratio=None,
        lambda_seq=None,
        standardize=True,
        fit_intercept=True,
        exclude=None,
        control=None,
        nfolds=10,
        foldid=None,
        type_measure='default',
        cv_type='min',
        outer_jobs=None,
        n_jobs=None,
        random_state=None,
        verbose=0,
    ):
        self.alphas = alphas
        self.family = family
        self.nlambda = nlambda
        self.lambda_min_ratio = lambda_min_ratio
        self.lambda_seq = lambda_seq
        self.standardize = standardize
        self.fit_intercept = fit_intercept
        self.exclude = exclude
        self.control = control
        self.nfolds = nfolds
        self.foldid = foldid
        self.type_measure = type_measure
        self.cv_type = cv_type
        self.outer_jobs = outer_jobs
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose

    def fit(self, X, y, sample_weight=None, offset=None, feature_names=None):
        """
        Cross-validate every alpha in the grid.

        Returns
        -------
        self : object
        """
        if self.cv_type not in ('min', '1se'):
            raise ValueError(f"cv_type must be 'min' or '1se', got '{self.cv_type}'")
        if hasattr(X, 'columns') and feature_names is None:
            feature_names = [str(c) for c in X.columns]
        X = _as_matrix(X)
        n = X.shape[0]

        family = get_family(self.family)
        if self.alphas is not None:
            alphas = np.asarray(self.alphas)
        elif family.name == 'poisson':
            # PoissonRegressor only has the ridge penalty
            alphas = np.array([0.0])
        else:
            alphas = np.linspace(0, 1, 11) ** 3
        alphas = np.atleast_1d(alphas).astype(float)

        if self.foldid is not None:
            foldid, _ = _check_foldid(self.foldid, n)
        else:
            if self.nfolds < 3:
                raise ValueError("nfolds must be bigger than 3; nfolds=10 recommended")
            foldid = make_foldid(n, self.nfolds, self.random_state)

        outer = self.outer_jobs not in (None, 1)
        inner = self.n_jobs not in (None, 1)
        if outer and inner:
            warnings.warn(
                "Parallel evaluation over both alpha values and folds; "
                "this may oversubscribe the available cores",
                UserWarning,
            )

        if self.verbose > 0:
            print(f"Cross-validating {len(alphas)} alpha values...")

        template = CVElasticNetPath(
            family=self.family,
            nlambda=self.nlambda,
            lambda_min_ratio=self.lambda_min_ratio,
            lambda_seq=self.lambda_seq,
            standardize=self.standardize,
            fit_intercept=self.fit_intercept,
            exclude=self.exclude,
            control=self.control,
            foldid=foldid,
            type_measure=self.type_measure,
            n_jobs=self.n_jobs,
        )
        self.modlist_ = Parallel(n_jobs=self.outer_jobs)(
            delayed(_fit_alpha)(template, alpha, X, y, sample_weight, offset, feature_names)
            for alpha in alphas
        )
        self.alpha_ = alphas
        self.foldid_ = foldid
        self.nfolds_ = len(np.unique(foldid))

        losses = np.array([m.loss_at(f'lambda_{self.cv_type}') for m in self.modlist_])
        if self.modlist_[0].measure_ == 'auc':
            losses = -losses
        self.best_index_ = int(np.argmin(losses))
        self.best_alpha_ = float(alphas[self.best_index_])
        best = self.modlist_[self.best_index_]
        self.best_lambda_ = best.lambda_1se_ if self.cv_type == '1se' else best.lambda_min_

        if self.verbose > 0:
            print(f"Best alpha: {self.best_alpha_:.6g}, lambda: {self.best_lambda_:.6g}")
        return self

    def _which(self, alpha=None, which=None):
        check_is_fitted(self, 'modlist_')
        if which is not None:
            return int(which)
        if alpha is None:
            return self.best_index_
        hits = np.flatnonzero(np.abs(self.alpha_ - alpha) < 1e-8)
        if hits.size == 0:
            raise ValueError(f"Supplied alpha value {alpha} not found in the alpha grid")
        return int(hits[0])

    def min_losses(self, cv_type='1se'):
        """CV loss of every alpha at lambda.min or lambda.1se."""
        check_is_fitted(self, 'modlist_')
        if cv_type not in ('min', '1se'):
            raise ValueError(f"cv_type must be 'min' or '1se', got '{cv_type}'")
        return np.array([m.loss_at(f'lambda_{cv_type}') for m in self.modlist_])

    def predict(self, X, alpha=None, which=None, s='lambda_1se', **kwargs):
        """Predict with the CV model for ``alpha`` (or index ``which``)."""
        return self.modlist_[self._which(alpha, which)].predict(X, s=s, **kwargs)

    def coef(self, alpha=None, which=None, s='lambda_1se', **kwargs):
        """Coefficients of the CV model for ``alpha`` (or index ``which``)."""
        return self.modlist_[self._which(alpha, which)].coef(s=s, **kwargs)
