"""
Cross-validated elastic-net paths from a formula.

CVGlmnetFormula builds the model matrix once, cross-validates the path
with CVElasticNetPath and keeps the terms and levels so that ``predict``
and ``coef`` work on new data frames.
"""

import logging
from functools import singledispatch

import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_is_fitted

from .core import FormulaMixin
from .formula.design import resolve_eval_env
from .path.cv import CVElasticNetPath
from .plotting import plot_cv
from .utils import signif

logger = logging.getLogger(__name__)


class CVGlmnetFormula(FormulaMixin, BaseEstimator):
    """
    K-fold cross-validated elastic-net path from a formula.

    Parameters
    ----------
    formula : str
    family : str, default='gaussian'
    alpha : float, default=1.0
    nlambda, lambda_min_ratio, lambda_seq, standardize, exclude, control :
        Passed to ElasticNetPath.
    nfolds : int, default=10
    foldid : array-like, optional
        Fixed fold assignment, one label per (kept) row.
    type_measure : {'default', 'deviance', 'mse', 'mae', 'class', 'auc'}
    keep : bool, default=False
        Keep pre-validated fits.
    n_jobs : int, optional
        Parallel jobs over folds (joblib).
    random_state : int, optional
    verbose : int, default=0
    na_action, drop_unused_levels, xlev, sparse, use_model_frame :
        As for GlmnetFormula.

    Attributes
    ----------
    model_ : CVElasticNetPath
    lambda_min_, lambda_1se_ : float
    terms_, xlev_, factor_info_, column_names_, call_
    """

    _call_name = 'cv_glmnet'

    def __init__(
        self,
        formula,
        family='gaussian',
        alpha=1.0,
        nlambda=100,
        lambda_min_ratio=None,
        lambda_seq=None,
        standardize=True,
        exclude=None,
        control=None,
        nfolds=10,
        foldid=None,
        type_measure='default',
        keep=False,
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
        self.family = family
        self.alpha = alpha
        self.nlambda = nlambda
        self.lambda_min_ratio = lambda_min_ratio
        self.lambda_seq = lambda_seq
        self.standardize = standardize
        self.exclude = exclude
        self.control = control
        self.nfolds = nfolds
        self.foldid = foldid
        self.type_measure = type_measure
        self.keep = keep
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
        Build the model matrix from ``data`` and cross-validate the path.

        Parameters
        ----------
        data : DataFrame
        weights, offset : array-like or str, optional
        subset : bool mask, integer positions or query string, optional
        eval_env : int or patsy.EvalEnvironment, default=0

        Returns
        -------
        self : object
        """
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._components(data, weights, offset, subset, env)
        self.model_ = CVElasticNetPath(
            family=self.family,
            alpha=self.alpha,
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
            keep=self.keep,
            n_jobs=self.n_jobs,
            random_state=self.random_state,
            verbose=self.verbose,
        )
        self.model_.fit(comps.x, comps.y, sample_weight=comps.weights, offset=comps.offset,
                        feature_names=self.column_names_)
        return self

    @property
    def lambda_min_(self):
        check_is_fitted(self, 'model_')
        return self.model_.lambda_min_

    @property
    def lambda_1se_(self):
        check_is_fitted(self, 'model_')
        return self.model_.lambda_1se_

    def predict(self, newdata=None, s='lambda_1se', type='link', offset=None, na_action='pass',
                unseen_levels='error', eval_env=0):
        """
        Predict from new data at ``s`` ('lambda_1se', 'lambda_min' or numbers).

        See ``GlmnetFormula.predict`` for the other arguments.
        """
        check_is_fitted(self, 'model_')
        if type in ('coefficients', 'nonzero'):
            return self.model_.predict(None, s=s, type=type)
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._newdata_components(newdata, offset, na_action, unseen_levels, env)
        out = self.model_.predict(comps.x, s=s, type=type, offset=comps.offset)
        return self._pad(out, comps, na_action)

    def coef(self, s='lambda_1se'):
        """Labelled coefficients at ``s``; values equal ``self.model_.coef(s)``."""
        check_is_fitted(self, 'model_')
        return self._label_coef(self.model_.coef(s=s), self.model_.path_)

    def cv_table(self, digits=4):
        """Lambda, index, measure, SE and nonzero count at lambda.min and lambda.1se."""
        check_is_fitted(self, 'model_')
        cv = self.model_
        rows = []
        for label, idx in (('min', cv.index_min_), ('1se', cv.index_1se_)):
            rows.append({
                '': label,
                'Lambda': signif(cv.lambda_[idx], digits).item(),
                'Index': idx + 1,
                'Measure': signif(cv.cvm_[idx], digits).item(),
                'SE': signif(cv.cvsd_[idx], digits).item(),
                'Nonzero': int(cv.nzero_[idx]),
            })
        return pd.DataFrame(rows).set_index('')

    def _format_summary(self, digits=4):
        check_is_fitted(self, 'model_')
        lines = [
            "Call:",
            self.call_,
            "",
            "Model fitting options:",
            *self._options_lines(),
            f"    Alpha: {self.alpha}",
            f"    Number of crossvalidation folds: {len(set(self.model_.foldid_))}",
            "",
            f"Measure: {self.model_.name_}",
            "",
            self.cv_table(digits).to_string(),
        ]
        return '\n'.join(lines)

    def plot(self, **kwargs):
        """CV curve; see ``plotting.plot_cv``."""
        check_is_fitted(self, 'model_')
        return plot_cv(self, **kwargs)


@singledispatch
def cv_glmnet(x, y=None, weights=None, offset=None, **kwargs):
    """
    Cross-validate an elastic-net path.

    ``cv_glmnet(formula, data, ...)`` returns a ``CVGlmnetFormula``;
    ``cv_glmnet(X, y, ...)`` returns a ``CVElasticNetPath``.
    """
    model = CVElasticNetPath(**kwargs)
    return model.fit(x, y, sample_weight=weights, offset=offset)


@cv_glmnet.register(str)
def _cv_glmnet_formula(formula, data, weights=None, offset=None, subset=None, eval_env=0,
                       **kwargs):
    env = resolve_eval_env(eval_env, depth=2)
    return CVGlmnetFormula(formula, **kwargs).fit(data, weights=weights, offset=offset,
                                                  subset=subset, eval_env=env)
