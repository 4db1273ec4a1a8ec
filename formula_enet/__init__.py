"""
formula_enet
============

A formula and data-frame interface for elastic-net regularisation paths.

Models are specified with a patsy formula and a pandas DataFrame; the
model matrix is built term by term (dense or sparse), fitting is done by
scikit-learn, and the fitted object remembers the terms and factor levels
so that ``predict`` and ``coef`` work directly on new data frames.
Cross-validation over lambda and over the mixing parameter alpha is
included.

Main Classes
------------
GlmnetFormula : Elastic-net path from a formula
RelaxedFormula : The same, followed by a relaxed (unpenalised) refit
CVGlmnetFormula : Cross-validated path from a formula
CVAGlmnetFormula : Cross-validation over alpha and lambda from a formula
ElasticNetPath, CVElasticNetPath, CVAElasticNetPath : Matrix interfaces

Quick Start
-----------
>>> import formula_enet as fe
>>> df = fe.make_example_data(200, random_state=0)
>>>
>>> model = fe.glmnet('y ~ x1 + x2 + g', df, alpha=0.5)
>>> model.coef(s=0.05)
>>>
>>> cvfit = fe.cv_glmnet('cls ~ .', df.drop(columns=['y', 'cls3', 'count']),
...                      family='binomial', random_state=0)
>>> cvfit.predict(df.head(), type='class')
>>>
>>> cva = fe.cva_glmnet('y ~ x1 + x2 + x3 + g', df, random_state=0)
>>> cva.best_alpha_, cva.best_lambda_
"""

import logging

from .core import GlmnetFormula, RelaxedFormula, glmnet
from .cv import CVGlmnetFormula, cv_glmnet
from .cva import CVAGlmnetFormula, cva_glmnet
from .exceptions import (
    FormulaEnetError,
    FormulaParseError,
    MissingVariableError,
    LevelMismatchError,
    DesignMismatchError,
    MissingValueError,
    FamilyError,
    VersionError,
)
from .formula import (
    Terms,
    FactorInfo,
    ModelComponents,
    parse_formula,
    make_model_components,
)
from .path import (
    ElasticNetPath,
    CVElasticNetPath,
    CVAElasticNetPath,
    ElasticNetControl,
    get_default_control,
    set_default_control,
    reset_default_control,
)
from .plotting import plot_path, plot_cv, plot_cva, minlossplot
from .utils import save_model, load_model, lambda_summary, make_example_data

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Formula interface
    'glmnet',
    'cv_glmnet',
    'cva_glmnet',
    'GlmnetFormula',
    'RelaxedFormula',
    'CVGlmnetFormula',
    'CVAGlmnetFormula',

    # Matrix interface
    'ElasticNetPath',
    'CVElasticNetPath',
    'CVAElasticNetPath',
    'ElasticNetControl',
    'get_default_control',
    'set_default_control',
    'reset_default_control',

    # Formula machinery
    'Terms',
    'FactorInfo',
    'ModelComponents',
    'parse_formula',
    'make_model_components',

    # Exceptions
    'FormulaEnetError',
    'FormulaParseError',
    'MissingVariableError',
    'LevelMismatchError',
    'DesignMismatchError',
    'MissingValueError',
    'FamilyError',
    'VersionError',

    # Plotting
    'plot_path',
    'plot_cv',
    'plot_cva',
    'minlossplot',

    # Utilities
    'save_model',
    'load_model',
    'lambda_summary',
    'make_example_data',
]
