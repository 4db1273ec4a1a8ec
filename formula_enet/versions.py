"""
scikit-learn version checks.

Features that depend on a particular scikit-learn release fail fast with a
message naming the minimum version.
"""

import numpy as np
import sklearn
from packaging.version import Version
from sklearn.linear_model import LogisticRegression

from .exceptions import VersionError


def sklearn_version():
    """Installed scikit-learn version as a ``packaging.version.Version``."""
    return Version(sklearn.__version__)


def require_sklearn(minimum, feature):
    """Raise VersionError unless scikit-learn is at least ``minimum``."""
    if sklearn_version() < Version(minimum):
        raise VersionError(feature, minimum, sklearn.__version__)


def make_logistic_regression(l1_ratio=None, C=1.0, **kwargs):
    """
    Build a LogisticRegression for an elastic-net or unpenalised fit.

    ``l1_ratio=None`` means no penalty. scikit-learn 1.8 replaced the
    ``penalty`` argument by ``l1_ratio`` and ``C=np.inf``.
    """
    if sklearn_version() >= Version("1.8"):
        if l1_ratio is None:
            return LogisticRegression(C=np.inf, **kwargs)
        return LogisticRegression(C=C, l1_ratio=l1_ratio, **kwargs)

    if l1_ratio is None:
        return LogisticRegression(penalty=None, **kwargs)
    return LogisticRegression(penalty='elasticnet', C=C, l1_ratio=l1_ratio, **kwargs)
