"""
Tests for the elastic-net path adapter.
"""
import numpy as np
import pytest
from packaging.version import Version
from scipy import sparse
from sklearn.linear_model import Lasso, LinearRegression

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import formula_enet.versions
from formula_enet import (
    ElasticNetControl,
    ElasticNetPath,
    FamilyError,
    VersionError,
    get_default_control,
    reset_default_control,
    set_default_control,
)
from formula_enet.path import get_family, lambda_sequence, Gaussian


@pytest.fixture
def regression_data():
    """Linear signal in the first two of five columns."""
    rng = np.random.default_rng(42)
    X = rng.normal(size=(100, 5))
    y = 3.0 * X[:, 0] - 2.0 * X[:, 1] + 1.0 + 0.5 * rng.normal(size=100)
    return X, y


@pytest.fixture
def classification_data():
    rng = np.random.default_rng(7)
    X = rng.normal(size=(200, 4))
    eta = 2.0 * X[:, 0] - 1.5 * X[:, 1]
    y2 = np.where(eta + rng.logistic(size=200) > 0, 'yes', 'no')
    y3 = np.array(['low', 'mid', 'high'])[np.digitize(eta, [-1.0, 1.0])]
    return X, y2, y3


class TestControl:
    """Tests for solver controls and lambda sequences."""

    def teardown_method(self):
        reset_default_control()

    def test_defaults(self):
        control = get_default_control()
        assert isinstance(control, ElasticNetControl)
        assert control.mnlam == 5

    def test_set_and_reset(self):
        set_default_control(max_iter=50)
        assert get_default_control().max_iter == 50
        reset_default_control()
        assert get_default_control().max_iter == 10000

    def test_unknown_control(self):
        with pytest.raises(TypeError):
            set_default_control(not_a_control=1)

    def test_lambda_sequence(self):
        lambdas = lambda_sequence(2.0, 10, 0.01)
        assert len(lambdas) == 10
        assert lambdas[0] == pytest.approx(2.0)
        assert lambdas[-1] == pytest.approx(0.02)
        assert np.all(np.diff(lambdas) < 0)

    def test_lambda_sequence_validation(self):
        with pytest.raises(ValueError):
            lambda_sequence(1.0, 0, 0.01)
        with pytest.raises(ValueError):
            lambda_sequence(1.0, 10, 1.5)


class TestFamilies:
    """Tests for family resolution."""

    def test_by_name_class_instance(self):
        assert get_family('gaussian').name == 'gaussian'
        assert get_family(Gaussian).name == 'gaussian'
        assert get_family(Gaussian()).name == 'gaussian'

    def test_cox_not_available(self):
        with pytest.raises(FamilyError, match='cox'):
            get_family('cox')

    def test_unknown(self):
        with pytest.raises(FamilyError):
            get_family('gamma')
        with pytest.raises(FamilyError):
            get_family(42)

    def test_binomial_needs_two_classes(self):
        with pytest.raises(FamilyError):
            get_family('binomial').prepare_response(np.array(['a', 'b', 'c', 'a', 'b', 'c']))

    def test_singleton_class(self):
        with pytest.raises(FamilyError):
            get_family('multinomial').prepare_response(np.array(['a', 'a', 'b', 'b', 'c']))


class TestElasticNetPath:
    """Tests for ElasticNetPath."""

    def test_gaussian_path(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath().fit(X, y)

        assert path.coef_path_.shape[1:] == (1, 5)
        assert len(path.lambda_) == path.coef_path_.shape[0]
        assert np.all(np.diff(path.lambda_) < 0)
        np.testing.assert_allclose(path.coef_path_[0], 0.0, atol=1e-8)
        assert path.df_[0] == 0
        assert path.dev_ratio_[-1] > 0.9
        assert list(path.feature_names_in_) == ['V1', 'V2', 'V3', 'V4', 'V5']

    def test_matches_lasso(self, regression_data):
        """A single lambda reproduces scikit-learn's Lasso."""
        X, y = regression_data
        path = ElasticNetPath(lambda_seq=[0.1], standardize=False,
                              control={'tol': 1e-8}).fit(X, y)
        lasso = Lasso(alpha=0.1, tol=1e-8).fit(X, y)
        coef = path.coef(s=0.1)
        np.testing.assert_allclose(coef[1:], lasso.coef_, atol=1e-4)
        assert coef[0] == pytest.approx(lasso.intercept_, abs=1e-4)

    def test_coef_shapes(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20).fit(X, y)
        assert path.coef().shape == (6, len(path.lambda_))
        assert path.coef(s=0.1).shape == (6,)
        assert path.coef(s=[0.1, 0.2]).shape == (6, 2)

    def test_predict_is_linear_predictor(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20).fit(X, y)
        coef = path.coef(s=0.05)
        np.testing.assert_allclose(path.predict(X, s=0.05), X @ coef[1:] + coef[0])
        assert path.predict(X).shape == (100, len(path.lambda_))

    def test_interpolation(self, regression_data):
        """Coefficients between two path values are linear in lambda."""
        X, y = regression_data
        path = ElasticNetPath(nlambda=20).fit(X, y)
        lo, hi = path.lambda_[6], path.lambda_[5]
        mid = path.coef(s=(lo + hi) / 2)
        np.testing.assert_allclose(mid, (path.coef(s=lo) + path.coef(s=hi)) / 2)

    def test_exact_on_path(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20).fit(X, y)
        np.testing.assert_array_equal(path.coef(s=path.lambda_[3])[1:], path.coef_path_[3, 0])

    def test_clamped_beyond_path(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20).fit(X, y)
        np.testing.assert_array_equal(path.coef(s=10 * path.lambda_[0]), path.coef()[:, 0])

    def test_user_lambda_is_sorted(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(lambda_seq=[0.01, 0.5, 0.1]).fit(X, y)
        np.testing.assert_array_equal(path.lambda_, [0.5, 0.1, 0.01])

    def test_exclude(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20, exclude=[0]).fit(X, y)
        np.testing.assert_array_equal(path.coef_path_[:, 0, 0], 0.0)

    def test_exclude_by_name(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20, exclude=['b'],
                              feature_names=['a', 'b', 'c', 'd', 'e']).fit(X, y)
        np.testing.assert_array_equal(path.coef_path_[:, 0, 1], 0.0)

    def test_ridge(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(alpha=0.0, nlambda=20).fit(X, y)
        assert np.all(path.df_ == 5)

    def test_bad_alpha(self, regression_data):
        X, y = regression_data
        with pytest.raises(ValueError):
            ElasticNetPath(alpha=1.5).fit(X, y)

    def test_sparse_matches_dense(self, regression_data):
        """Sparse input gives the same fit (no centering, but an intercept)."""
        X, y = regression_data
        dense = ElasticNetPath(lambda_seq=[0.2, 0.1], standardize=False,
                               control={'tol': 1e-8}).fit(X, y)
        sp = ElasticNetPath(lambda_seq=[0.2, 0.1], standardize=False,
                            control={'tol': 1e-8}).fit(sparse.csr_matrix(X), y)
        np.testing.assert_allclose(sp.coef(), dense.coef(), atol=1e-3)

    def test_sparse_matches_dense_standardized(self, regression_data):
        """Standardised sparse fits agree with dense ones for off-centre columns."""
        X, y = regression_data
        X = X * np.array([1.0, 3.0, 0.5, 2.0, 1.0]) + np.array([5.0, -2.0, 10.0, 0.0, 1.0])
        w = np.linspace(0.5, 1.5, 100)
        dense = ElasticNetPath(lambda_seq=[0.3, 0.1, 0.05],
                               control={'tol': 1e-10}).fit(X, y, sample_weight=w)
        sp = ElasticNetPath(lambda_seq=[0.3, 0.1, 0.05],
                            control={'tol': 1e-10}).fit(sparse.csr_matrix(X), y, sample_weight=w)
        np.testing.assert_allclose(sp.coef(), dense.coef(), atol=1e-4)

    def test_standardize_matches_prescaled(self, regression_data):
        """standardize=True equals an unstandardised fit on scaled columns, mapped back."""
        X, y = regression_data
        X = X * np.array([1.0, 3.0, 0.5, 2.0, 1.0]) + 4.0
        mean, sd = X.mean(axis=0), X.std(axis=0)

        reference = ElasticNetPath(lambda_seq=[0.1], standardize=False,
                                   control={'tol': 1e-10}).fit((X - mean) / sd, y)
        ref = reference.coef(s=0.1)
        slopes = ref[1:] / sd
        intercept = ref[0] - slopes @ mean

        fitted = ElasticNetPath(lambda_seq=[0.1], control={'tol': 1e-10}).fit(X, y).coef(s=0.1)
        np.testing.assert_allclose(fitted[1:], slopes, atol=1e-6)
        assert fitted[0] == pytest.approx(intercept, abs=1e-6)

    def test_early_stop_after_mnlam(self, regression_data):
        """A generated path stops at mnlam once the deviance ratio passes devmax."""
        X, y = regression_data
        path = ElasticNetPath(nlambda=20, control={'devmax': 1e-6, 'mnlam': 5}).fit(X, y)
        assert len(path.lambda_) == 5
        assert path.coef_path_.shape[0] == 5

        path = ElasticNetPath(nlambda=20, control={'devmax': 1e-6, 'mnlam': 8}).fit(X, y)
        assert len(path.lambda_) == 8

    def test_user_lambda_never_stops_early(self, regression_data):
        X, y = regression_data
        lambdas = np.geomspace(3.0, 1e-3, 20)
        path = ElasticNetPath(lambda_seq=lambdas, control={'devmax': 1e-6, 'mnlam': 2}).fit(X, y)
        np.testing.assert_allclose(path.lambda_, lambdas)

    def test_weights(self, regression_data):
        """Integer weights behave like repeated rows."""
        X, y = regression_data
        w = np.ones(100)
        w[:10] = 2.0
        weighted = ElasticNetPath(lambda_seq=[0.05], control={'tol': 1e-10}).fit(X, y, sample_weight=w)
        Xr = np.vstack([X, X[:10]])
        yr = np.concatenate([y, y[:10]])
        repeated = ElasticNetPath(lambda_seq=[0.05], control={'tol': 1e-10}).fit(Xr, yr)
        np.testing.assert_allclose(weighted.coef(s=0.05), repeated.coef(s=0.05), atol=1e-3)

    def test_offset(self, regression_data):
        X, y = regression_data
        offset = np.full(100, 2.0)
        path = ElasticNetPath(nlambda=10).fit(X, y, offset=offset)
        assert path.offset_used_
        with pytest.raises(ValueError, match='No offset provided'):
            path.predict(X)
        np.testing.assert_allclose(
            path.predict(X, s=0.1, offset=offset) - path.predict(X, s=0.1, offset=offset - 1.0),
            1.0,
        )

    def test_offset_unsupported_family(self, classification_data):
        X, y2, _ = classification_data
        with pytest.raises(FamilyError):
            ElasticNetPath(family='binomial').fit(X, y2, offset=np.zeros(200))

    def test_wrong_feature_count(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=10).fit(X, y)
        with pytest.raises(ValueError):
            path.predict(X[:, :3])

    def test_bad_type(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=10).fit(X, y)
        with pytest.raises(ValueError):
            path.predict(X, type='probability')
        with pytest.raises(FamilyError):
            path.predict(X, type='class')

    def test_nonzero(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20).fit(X, y)
        assert set(path.predict(None, s=path.lambda_[-1], type='nonzero')) >= {0, 1}

    def test_binomial(self, classification_data):
        X, y2, _ = classification_data
        path = ElasticNetPath(family='binomial', nlambda=15).fit(X, y2)
        assert list(path.classes_) == ['no', 'yes']
        prob = path.predict(X, s=0.01, type='response')
        assert prob.shape == (200,)
        assert np.all((prob > 0) & (prob < 1))
        labels = path.predict(X, s=0.01, type='class')
        assert set(labels) <= {'no', 'yes'}
        assert np.mean(labels == y2) > 0.7

    def test_multinomial(self, classification_data):
        X, _, y3 = classification_data
        path = ElasticNetPath(family='multinomial', nlambda=10).fit(X, y3)
        assert list(path.classes_) == ['high', 'low', 'mid']
        assert path.coef(s=0.01).shape == (3, 5)
        prob = path.predict(X, s=0.01, type='response')
        assert prob.shape == (200, 3)
        np.testing.assert_allclose(prob.sum(axis=1), 1.0)

    def test_poisson_ridge_only(self, regression_data):
        X, _ = regression_data
        counts = np.random.default_rng(0).poisson(np.exp(0.3 * X[:, 0]))
        with pytest.raises(FamilyError):
            ElasticNetPath(family='poisson', alpha=0.5).fit(X, counts)
        path = ElasticNetPath(family='poisson', alpha=0.0, nlambda=10).fit(X, counts)
        assert np.all(path.predict(X, s=0.01, type='response') > 0)

    def test_mgaussian(self, regression_data):
        X, y = regression_data
        Y = np.column_stack([y, -y])
        path = ElasticNetPath(family='mgaussian', nlambda=10).fit(X, Y)
        assert path.coef(s=0.1).shape == (2, 6)
        assert path.predict(X, s=0.1).shape == (100, 2)


class TestRelaxedPath:
    """Tests for the relaxed fit."""

    def test_relaxed_refit(self, regression_data):
        """gamma=0 is least squares on the active set."""
        X, y = regression_data
        path = ElasticNetPath(nlambda=20, relax=True).fit(X, y)
        assert path.relaxed_ is not None
        s = path.lambda_[6]
        active = path.predict(None, s=s, type='nonzero')
        ols = LinearRegression().fit(X[:, active], y)
        relaxed = path.coef(s=s, gamma=0.0)
        np.testing.assert_allclose(relaxed[1 + active], ols.coef_)
        assert relaxed[0] == pytest.approx(ols.intercept_)

    def test_gamma_blend(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=20, relax=True).fit(X, y)
        s = path.lambda_[6]
        half = path.coef(s=s, gamma=0.5)
        np.testing.assert_allclose(half, (path.coef(s=s, gamma=0.0) + path.coef(s=s)) / 2)

    def test_gamma_needs_relax(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=10).fit(X, y)
        with pytest.raises(ValueError):
            path.coef(s=0.1, gamma=0.5)

    def test_gamma_range(self, regression_data):
        X, y = regression_data
        path = ElasticNetPath(nlambda=10, relax=True).fit(X, y)
        with pytest.raises(ValueError):
            path.coef(s=0.1, gamma=1.5)

    def test_version_check(self, regression_data, monkeypatch):
        """An old scikit-learn fails fast naming the minimum version."""
        X, y = regression_data
        monkeypatch.setattr(formula_enet.versions, 'sklearn_version', lambda: Version('1.0'))
        with pytest.raises(VersionError, match='1.2') as exc:
            ElasticNetPath(relax=True).fit(X, y)
        assert exc.value.required == '1.2'
