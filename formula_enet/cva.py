"""
Cross-validation over the elastic-net mixing parameter, from a formula.
"""

import logging
from functools import singledispatch

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_is_fitted

from .core import FormulaMixin
from .formula.design import resolve_eval_env
from .path.cv import CVAElasticNetPath
from .plotting import minlossplot, plot_cva

logger = logging.getLogger(__name__)


class CVAGlmnetFormula(FormulaMixin, BaseEstimator):
    """
    Cross-validate both alpha and lambda for an elastic-net model.

    Every alpha is cross-validated with the same fold assignment; the best
    (alpha, lambda) pair is the one with the lowest CV loss at lambda.min
    or lambda.1se (``cv_type``).

    Parameters
    ----------
    formula : str
    alphas : array-like, optional
        Alpha grid. Defaults to ``np.linspace(0, 1, 11) ** 3``, or ``[0.0]``
        for the poisson family.
    family : str, default='gaussian'
    nfolds : int, default=10
    foldid : array-like, optional
    type_measure : str, default='default'
    cv_type : {'min', '1se'}, default='min'
    outer_jobs : int, optional
        Parallel jobs over alpha values.
    n_jobs : int, optional
        Parallel jobs over folds within each alpha.
    random_state : int, optional
    verbose : int, default=0
    nlambda, lambda_min_ratio, lambda_seq, standardize, exclude, control,
    na_action, drop_unused_levels, xlev, sparse, use_model_frame :
        As for GlmnetFormula.

    Attributes
    ----------
    model_ : CVAElasticNetPath
    alpha_ : ndarray
    best_alpha_, best_lambda_ : float
    terms_, xlev_, factor_info_, column_names_, call_

    Examples
    --------
    >>> cva = CVAGlmnetFormula('y ~ .', random_state=1).fit(df)
    >>> cva.best_alpha_, cva.best_lambda_
    >>> cva.predict(df, alpha=cva.alpha_[3])
    """

    _call_name = 'cva_glmnet'

    def __init__(
        self,
        formula,
        alphas=None,
        family='gaussian',
        nlambda=100,
        lambda_min_ratio=None,
        lambda_seq=None,
        standardize=True,
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
        na_action='omit',
        drop_unused_levels=False,
        xlev=None,
        sparse=False,
        use_model_frame=False,
    ):
        self.formula = formula
        self.alphas = alphas
        self.family = family
        self.nlambda = nlambda
        self.lambda_min_ratio = lambda_min_ratio
        self.lambda_seq = lambda_seq
        self.standardize = standardize
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
        self.na_action = na_action
        self.drop_unused_levels = drop_unused_levels
        self.xlev = xlev
        self.sparse = sparse
        self.use_model_frame = use_model_frame

    def fit(self, data, weights=None, offset=None, subset=None, eval_env=0):
        """
        Build the model matrix from ``data`` and cross-validate every alpha.

        Returns
        -------
        self : object
        """
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._components(data, weights, offset, subset, env)
        self.model_ = CVAElasticNetPath(
            alphas=self.alphas,
            family=self.family,
            nlambda=self.nlambda,
            lambda_min_ratio=self.lambda_min_ratio,
            lambda_seq=self.lambda_seq,
            standardize=self.standardize,
            fit_intercept=comps.terms.intercept,
            exclude=self.exclude,
            control=self.control,
            nfolds=self.nfolds,
            foldid=self.foldid,
            type_measure=self.type_measure,
            cv_type=self.cv_type,
            outer_jobs=self.outer_jobs,
            n_jobs=self.n_jobs,
            random_state=self.random_state,
            verbose=self.verbose,
        )
        self.model_.fit(comps.x, comps.y, sample_weight=comps.weights, offset=comps.offset,
                        feature_names=self.column_names_)
        return self

    @property
    def alpha_(self):
        check_is_fitted(self, 'model_')
        return self.model_.alpha_

    @property
    def best_alpha_(self):
        check_is_fitted(self, 'model_')
        return self.model_.best_alpha_

    @property
    def best_lambda_(self):
        check_is_fitted(self, 'model_')
        return self.model_.best_lambda_

    def predict(self, newdata=None, alpha=None, which=None, s='lambda_1se', type='link',
                offset=None, na_action='pass', unseen_levels='error', eval_env=0):
        """
        Predict from new data with the model for ``alpha`` (or index ``which``).

        Without either, the best alpha is used.
        """
        check_is_fitted(self, 'model_')
        if type in ('coefficients', 'nonzero'):
            return self.model_.predict(None, alpha=alpha, which=which, s=s, type=type)
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._newdata_components(newdata, offset, na_action, unseen_levels, env)
        out = self.model_.predict(comps.x, alpha=alpha, which=which, s=s, type=type,
                                  offset=comps.offset)
        return self._pad(out, comps, na_action)

    def coef(self, alpha=None, which=None, s='lambda_1se'):
        """Labelled coefficients for ``alpha`` (or index ``which``) at ``s``."""
        check_is_fitted(self, 'model_')
        cv = self.model_.modlist_[self.model_._which(alpha, which)]
        return self._label_coef(cv.coef(s=s), cv.path_)

    def loss_table(self):
        """CV loss of every alpha at lambda.min and lambda.1se."""
        check_is_fitted(self, 'model_')
        return pd.DataFrame({
            'alpha': self.model_.alpha_,
            'lambda.min': [m.lambda_min_ for m in self.model_.modlist_],
            'loss.min': self.model_.min_losses('min'),
            'lambda.1se': [m.lambda_1se_ for m in self.model_.modlist_],
            'loss.1se': self.model_.min_losses('1se'),
        })

    def _format_summary(self, digits=4):
        check_is_fitted(self, 'model_')
        alphas = ' '.join(f'{a:.{digits}g}' for a in np.asarray(self.model_.alpha_))
        lines = [
            "Call:",
            self.call_,
            "",
            "Model fitting options:",
            *self._options_lines(),
            f"    Number of crossvalidation folds for each alpha: {self.model_.nfolds_}",
            f"    Alpha values: {alphas}",
            f"    Best alpha: {self.model_.best_alpha_:.{digits}g} "
            f"(lambda.{self.cv_type} = {self.model_.best_lambda_:.{digits}g})",
        ]
        return '\n'.join(lines)

    def plot(self, **kwargs):
        """CV curves for every alpha; see ``plotting.plot_cva``."""
        check_is_fitted(self, 'model_')
        return plot_cva(self, **kwargs)

    def minlossplot(self, cv_type='1se', **kwargs):
        """Minimum CV loss against alpha; see ``plotting.minlossplot``."""
        check_is_fitted(self, 'model_')
        return minlossplot(self, cv_type=cv_type, **kwargs)


@singledispatch
def cva_glmnet(x, y=None, weights=None, offset=None, **kwargs):
    """
    Cross-validate alpha and lambda.

    ``cva_glmnet(formula, data, ...)`` returns a ``CVAGlmnetFormula``;
    ``cva_glmnet(X, y, ...)`` returns a ``CVAElasticNetPath``.
    """
    model = CVAElasticNetPath(**kwargs)
    return model.fit(x, y, sample_weight=weights, offset=offset)


@cva_glmnet.register(str)
def _cva_glmnet_formula(formula, data, weights=None, offset=None, subset=None, eval_env=0,
                        **kwargs):
    env = resolve_eval_env(eval_env, depth=2)
    return CVAGlmnetFormula(formula, **kwargs).fit(data, weights=weights, offset=offset,
                                                   subset=subset, eval_env=env)
