"""
Elastic-net path adapter.

This module fits glmnet-style regularisation paths by delegating every
penalised fit to scikit-learn, and cross-validates them over lambda and
over the mixing parameter alpha.
"""

from .control import (
    ElasticNetControl,
    get_default_control,
    set_default_control,
    reset_default_control,
    lambda_sequence,
)
from .families import (
    Family,
    Gaussian,
    MGaussian,
    Binomial,
    Multinomial,
    Poisson,
    FAMILIES,
    get_family,
)
from .estimator import ElasticNetPath, PREDICT_TYPES
from .cv import CVElasticNetPath, CVAElasticNetPath, make_foldid, MEASURES

__all__ = [
    # Estimators
    'ElasticNetPath',
    'CVElasticNetPath',
    'CVAElasticNetPath',
    'PREDICT_TYPES',
    # Families
    'Family',
    'Gaussian',
    'MGaussian',
    'Binomial',
    'Multinomial',
    'Poisson',
    'FAMILIES',
    'get_family',
    # Controls
    'ElasticNetControl',
    'get_default_control',
    'set_default_control',
    'reset_default_control',
    'lambda_sequence',
    # CV helpers
    'make_foldid',
    'MEASURES',
]
