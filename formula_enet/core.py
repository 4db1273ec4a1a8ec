"""
Formula interface for elastic-net paths.

GlmnetFormula fits an ElasticNetPath from a formula and a data frame and
keeps everything needed to rebuild the model matrix from new data: the
parsed terms, the level of every categorical factor and the fitting
options. ``predict`` and ``coef`` then work in terms of the formula.

``glmnet`` dispatches on its first argument: a formula string goes to the
formula interface, anything else is treated as a predictor matrix.
"""

import inspect
import logging
from functools import singledispatch

import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_is_fitted

from .formula.components import make_model_components
from .formula.design import resolve_eval_env
from .path.estimator import ElasticNetPath
from .plotting import plot_path
from .utils import lambda_summary, pad_rows, signif

logger = logging.getLogger(__name__)

PREDICT_NA_ACTIONS = ('pass', 'exclude', 'omit', 'fail')


def _is_default(value, default):
    if value is default:
        return True
    if isinstance(value, (bool, int, float, str)) and isinstance(default, (bool, int, float, str)):
        return value == default
    return False


def _format_call(name, formula, params, defaults):
    """``name('y ~ x', data, alpha=0.5)`` with the non-default arguments."""
    parts = [repr(formula), 'data']
    for key, value in params.items():
        if key == 'formula' or _is_default(value, defaults.get(key)):
            continue
        parts.append(f'{key}={value!r}')
    return f"{name}({', '.join(parts)})"


class FormulaMixin:
    """
    Matrix construction shared by the formula wrappers.

    Subclasses set ``_call_name`` and build ``self.model_`` in ``fit``.
    """

    _call_name = 'glmnet'

    def _components(self, data, weights, offset, subset, eval_env):
        comps = make_model_components(
            self.formula,
            data,
            weights=weights,
            offset=offset,
            subset=subset,
            na_action=self.na_action,
            drop_unused_levels=self.drop_unused_levels,
            xlev=self.xlev,
            sparse=self.sparse,
            use_model_frame=self.use_model_frame,
            eval_env=eval_env,
        )
        self.terms_ = comps.terms
        self.xlev_ = comps.xlev
        self.factor_info_ = comps.factor_info
        self.column_names_ = list(comps.column_names)
        self.nobs_ = comps.x.shape[0]
        self.n_dropped_ = comps.n_dropped
        self.offset_used_ = comps.offset is not None
        defaults = {
            name: p.default for name, p in inspect.signature(type(self).__init__).parameters.items()
        }
        self.call_ = _format_call(self._call_name, self.formula, self.get_params(deep=False), defaults)
        if comps.n_dropped:
            logger.info("%d rows with missing values dropped", comps.n_dropped)
        return comps

    def _newdata_components(self, newdata, offset, na_action, unseen_levels, eval_env):
        if na_action not in PREDICT_NA_ACTIONS:
            raise ValueError(f"na_action must be one of {PREDICT_NA_ACTIONS}, got '{na_action}'")
        build_na = 'fail' if na_action == 'fail' else 'omit'
        return make_model_components(
            self.terms_.delete_response(),
            newdata,
            offset=offset,
            na_action=build_na,
            sparse=self.sparse,
            use_model_frame=self.use_model_frame,
            factor_info=self.factor_info_,
            column_names=self.column_names_,
            unseen_levels=unseen_levels,
            require_response=False,
            eval_env=eval_env,
        )

    @staticmethod
    def _pad(values, comps, na_action):
        if na_action in ('pass', 'exclude'):
            return pad_rows(values, comps.kept)
        return values

    def model_matrix(self, newdata, na_action='pass', unseen_levels='error', eval_env=0):
        """The model matrix the fitted model would see for ``newdata``."""
        check_is_fitted(self, 'model_')
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._newdata_components(newdata, None, na_action, unseen_levels, env)
        return comps.x

    def _output_names(self, path):
        if path.classes_ is not None:
            return [str(c) for c in path.classes_]
        return list(self.terms_.response)

    def _label_coef(self, raw, path, s_labels=None):
        """Attach ``(Intercept)`` + column names (and class names) to raw coefficients."""
        index = ['(Intercept)'] + self.column_names_
        n_outputs = path.coef_path_.shape[1]

        def frame(values):
            if values.ndim == 1:
                return pd.Series(values, index=index)
            columns = s_labels if s_labels is not None else [f's{i}' for i in range(values.shape[1])]
            return pd.DataFrame(values, index=index, columns=columns)

        if n_outputs == 1:
            return frame(raw)
        return {name: frame(raw[k]) for k, name in enumerate(self._output_names(path))}

    def _options_lines(self):
        return [
            f"    Sparse model matrix: {self.sparse}",
            f"    Use model frame: {self.use_model_frame}",
        ]

    def __str__(self):
        if not hasattr(self, 'model_'):
            return self.__repr__()
        return self._format_summary()

    def summary(self, **kwargs):
        """Print the call, the fitting options and a summary of the fit."""
        print(self._format_summary(**kwargs))


class GlmnetFormula(FormulaMixin, BaseEstimator):
    """
    Elastic-net path from a formula and a data frame.

    Parameters
    ----------
    formula : str
        A patsy formula such as ``'y ~ x1 + g + x1:g'``. ``.`` stands for all
        other columns; ``offset(expr)`` adds an offset; several responses
        (``y1 + y2 ~ ...``) give a multi-response model.

    family : str, default='gaussian'
        'gaussian', 'binomial', 'multinomial', 'poisson' or 'mgaussian'.

    alpha : float, default=1.0
        Elastic-net mixing parameter (1 = lasso, 0 = ridge).

    nlambda, lambda_min_ratio, lambda_seq, standardize, exclude, control :
        Passed to ElasticNetPath. ``exclude`` may name model-matrix columns.

    na_action : {'omit', 'exclude', 'pass', 'fail'}, default='omit'
        Handling of rows with missing values when fitting.

    drop_unused_levels : bool, default=False
        Drop categorical levels that do not occur in the data.

    xlev : dict, optional
        Levels to assume for categorical factors, keyed by factor code.

    sparse : bool, default=False
        Build a ``scipy.sparse`` model matrix.

    use_model_frame : bool, default=False
        Build the matrix with ``patsy.dmatrix`` (standard treatment coding)
        instead of term by term.

    Attributes
    ----------
    model_ : ElasticNetPath
    terms_ : Terms
    xlev_ : dict
        Levels of every categorical factor.
    factor_info_ : dict of FactorInfo
    column_names_ : list of str
    call_ : str
    nobs_ : int

    Examples
    --------
    >>> model = GlmnetFormula('y ~ x1 + x2 + g', alpha=0.5).fit(df)
    >>> model.predict(df.head(), s=0.1)
    >>> model.coef(s=0.1)
    """

    _call_name = 'glmnet'
    _relax = False

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
        self.na_action = na_action
        self.drop_unused_levels = drop_unused_levels
        self.xlev = xlev
        self.sparse = sparse
        self.use_model_frame = use_model_frame

    def fit(self, data, weights=None, offset=None, subset=None, eval_env=0):
        """
        Build the model matrix from ``data`` and fit the path.

        Parameters
        ----------
        data : DataFrame
        weights : array-like or str, optional
            Case weights, or the name of a column of ``data``.
        offset : array-like or str, optional
            Offset added to the linear predictor, or a column name.
        subset : bool mask, integer positions or query string, optional
        eval_env : int or patsy.EvalEnvironment, default=0
            Frames above the caller in which to look up names used in the
            formula that are not data columns.

        Returns
        -------
        self : object
        """
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._components(data, weights, offset, subset, env)
        self.model_ = ElasticNetPath(
            family=self.family,
            alpha=self.alpha,
            nlambda=self.nlambda,
            lambda_min_ratio=self.lambda_min_ratio,
            lambda_seq=self.lambda_seq,
            standardize=self.standardize,
            fit_intercept=comps.terms.intercept,
            exclude=self.exclude,
            relax=self._relax,
            control=self.control,
            feature_names=self.column_names_,
        )
        self.model_.fit(comps.x, comps.y, sample_weight=comps.weights, offset=comps.offset)
        logger.debug("Fitted %s: %d lambda values", self.call_, len(self.model_.lambda_))
        return self

    @property
    def lambda_(self):
        check_is_fitted(self, 'model_')
        return self.model_.lambda_

    def predict(self, newdata=None, s=None, type='link', offset=None, na_action='pass',
                unseen_levels='error', eval_env=0, **kwargs):
        """
        Predict from new data.

        Parameters
        ----------
        newdata : DataFrame
            Not needed for ``type='coefficients'`` or ``'nonzero'``.
        s : float, array-like or None
            Lambda values; default the whole path.
        type : {'link', 'response', 'class', 'coefficients', 'nonzero'}
        offset : array-like or str, optional
            Needed when the model was fitted with an offset argument.
        na_action : {'pass', 'exclude', 'omit', 'fail'}, default='pass'
            'pass' and 'exclude' return NaN for rows with missing values,
            'omit' drops those rows, 'fail' raises.
        unseen_levels : {'error', 'zero'}, default='error'
            What to do with categorical levels not seen when fitting.
        eval_env : int or patsy.EvalEnvironment

        Returns
        -------
        ndarray
        """
        check_is_fitted(self, 'model_')
        if type in ('coefficients', 'nonzero'):
            return self.model_.predict(None, s=s, type=type, **kwargs)
        env = resolve_eval_env(eval_env, depth=1)
        comps = self._newdata_components(newdata, offset, na_action, unseen_levels, env)
        out = self.model_.predict(comps.x, s=s, type=type, offset=comps.offset, **kwargs)
        return self._pad(out, comps, na_action)

    def coef(self, s=None, **kwargs):
        """
        Coefficients labelled by model-matrix column.

        The values are exactly those of ``self.model_.coef(s)``.

        Returns
        -------
        pd.Series, pd.DataFrame, or a dict of them (one per class or response)
        """
        check_is_fitted(self, 'model_')
        raw = self.model_.coef(s=s, **kwargs)
        labels = None
        if s is None:
            labels = [f's{i}' for i in range(len(self.model_.lambda_))]
        return self._label_coef(raw, self.model_, labels)

    def deviance_table(self, digits=4):
        """Df, %Dev and Lambda along the path."""
        check_is_fitted(self, 'model_')
        return pd.DataFrame({
            'Df': self.model_.df_,
            '%Dev': signif(self.model_.dev_ratio_ * 100, digits),
            'Lambda': signif(self.model_.lambda_, digits),
        })

    def _format_summary(self, digits=4, print_deviance_ratios=False):
        check_is_fitted(self, 'model_')
        lines = [
            "Call:",
            self.call_,
            "",
            "Model fitting options:",
            *self._options_lines(),
            f"    Alpha: {self.alpha}",
            "    Lambda summary:",
            lambda_summary(self.model_.lambda_).to_frame().T.to_string(
                index=False, float_format=lambda v: f'{v:.{digits}g}'),
        ]
        if print_deviance_ratios:
            lines += ["", "Deviance ratios:", self.deviance_table(digits).to_string()]
        return '\n'.join(lines)

    def plot(self, xvar='lambda', label=False, **kwargs):
        """Coefficient paths; see ``plotting.plot_path``."""
        check_is_fitted(self, 'model_')
        return plot_path(self, xvar=xvar, label=label, **kwargs)


class RelaxedFormula(GlmnetFormula):
    """
    GlmnetFormula followed by a relaxed fit.

    The relaxed fit is an unpenalised refit on the variables selected at
    each lambda; ``predict`` and ``coef`` take ``gamma`` to blend
    ``gamma * penalised + (1 - gamma) * relaxed``. Needs scikit-learn 1.2
    or later.
    """

    _relax = True

    def predict(self, newdata=None, s=None, type='link', offset=None, na_action='pass',
                unseen_levels='error', eval_env=0, gamma=1.0):
        env = resolve_eval_env(eval_env, depth=1)
        return super().predict(newdata, s=s, type=type, offset=offset, na_action=na_action,
                               unseen_levels=unseen_levels, eval_env=env, gamma=gamma)

    def coef(self, s=None, gamma=1.0):
        return super().coef(s=s, gamma=gamma)

    def _format_summary(self, digits=4, print_deviance_ratios=False):
        text = super()._format_summary(digits, print_deviance_ratios)
        return text + "\nRelaxed fit in attribute model_.relaxed_"


@singledispatch
def glmnet(x, y=None, weights=None, offset=None, **kwargs):
    """
    Fit an elastic-net path.

    ``glmnet(formula, data, ...)`` builds the model matrix from a formula and
    returns a ``GlmnetFormula`` (``RelaxedFormula`` with ``relax=True``).
    ``glmnet(X, y, ...)`` fits a predictor matrix directly and returns an
    ``ElasticNetPath``.

    Examples
    --------
    >>> glmnet('y ~ .', df)
    >>> glmnet('cls3 ~ x1 + x2', df, family='multinomial')
    >>> glmnet(X, y, alpha=0.5)
    """
    model = ElasticNetPath(**kwargs)
    return model.fit(x, y, sample_weight=weights, offset=offset)


@glmnet.register(str)
def _glmnet_formula(formula, data, weights=None, offset=None, subset=None, eval_env=0,
                    relax=False, **kwargs):
    # one frame for singledispatch's wrapper
    env = resolve_eval_env(eval_env, depth=2)
    cls = RelaxedFormula if relax else GlmnetFormula
    return cls(formula, **kwargs).fit(data, weights=weights, offset=offset, subset=subset,
                                      eval_env=env)
