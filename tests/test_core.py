"""
Test suite for the formula_enet formula interface.
"""
import pickle

import numpy as np
import pandas as pd
import pytest
from sklearn.base import clone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from formula_enet import (
    glmnet,
    cv_glmnet,
    cva_glmnet,
    GlmnetFormula,
    RelaxedFormula,
    CVGlmnetFormula,
    CVAGlmnetFormula,
    ElasticNetPath,
    CVElasticNetPath,
    LevelMismatchError,
    MissingValueError,
    MissingVariableError,
    make_example_data,
    save_model,
    load_model,
)


@pytest.fixture
def df():
    return make_example_data(120, random_state=0)


class TestGlmnetFormula:
    """Tests for the formula front end of glmnet."""

    def test_dispatch(self, df):
        model = glmnet('y ~ x1 + x2 + g', df, nlambda=20)
        assert isinstance(model, GlmnetFormula)
        assert isinstance(model.model_, ElasticNetPath)

        X = df[['x1', 'x2']].to_numpy()
        path = glmnet(X, df['y'].to_numpy(), nlambda=20)
        assert isinstance(path, ElasticNetPath)

    def test_column_names(self, df):
        model = glmnet('y ~ x1 + x2 + g', df, nlambda=20)
        assert model.column_names_ == ['x1', 'x2', 'g[a]', 'g[b]', 'g[c]']
        assert model.xlev_ == {'g': ['a', 'b', 'c']}
        assert list(model.coef(s=0.1).index) == ['(Intercept)', 'x1', 'x2', 'g[a]', 'g[b]', 'g[c]']

    def test_dot(self, df):
        model = glmnet('y ~ .', df[['y', 'x1', 'x3']], nlambda=20)
        assert model.column_names_ == ['x1', 'x3']

    def test_coef_matches_path(self, df):
        """Labelled coefficients carry exactly the path's values."""
        model = glmnet('y ~ x1 + x2 + g', df, alpha=0.5, nlambda=20)
        np.testing.assert_array_equal(model.coef(s=0.05).to_numpy(), model.model_.coef(s=0.05))

        full = model.coef()
        assert full.shape == (6, len(model.lambda_))
        np.testing.assert_array_equal(full.to_numpy(), model.model_.coef())

    def test_predict_matches_model_matrix(self, df):
        model = glmnet('y ~ x1 + x2 + g + x1:g', df, nlambda=20)
        newdata = df.sample(15, random_state=1)
        expected = model.model_.predict(model.model_matrix(newdata), s=[0.1, 0.01])
        np.testing.assert_allclose(model.predict(newdata, s=[0.1, 0.01]), expected)

    def test_predict_subset_of_levels(self, df):
        """New data with fewer levels still gets the full column layout."""
        model = glmnet('y ~ x1 + g', df, nlambda=20)
        newdata = df[df['g'] == 'b'].head(4)
        assert model.model_matrix(newdata).shape == (4, 4)
        assert model.predict(newdata, s=0.1).shape == (4,)

    def test_unseen_level(self, df):
        model = glmnet('y ~ x1 + x2 + g', df, nlambda=20)
        newdata = df.head(3).copy()
        newdata.loc[newdata.index[0], 'g'] = 'z'

        with pytest.raises(LevelMismatchError, match='z'):
            model.predict(newdata, s=0.1)

        pred = model.predict(newdata, s=0.1, unseen_levels='zero')
        coef = model.coef(s=0.1)
        row = newdata.iloc[0]
        expected = coef['(Intercept)'] + coef['x1'] * row['x1'] + coef['x2'] * row['x2']
        assert pred[0] == pytest.approx(expected)

    def test_predict_missing_rows(self, df):
        """Rows with missing predictors are NaN, dropped, or raise."""
        model = glmnet('y ~ x1 + x2 + g', df, nlambda=20)
        newdata = df.head(6).copy()
        newdata.loc[newdata.index[2], 'x1'] = np.nan

        padded = model.predict(newdata, s=0.1)
        assert padded.shape == (6,)
        assert np.isnan(padded[2])
        assert not np.isnan(np.delete(padded, 2)).any()

        assert model.predict(newdata, s=0.1, na_action='omit').shape == (5,)
        with pytest.raises(MissingValueError):
            model.predict(newdata, s=0.1, na_action='fail')

    def test_fit_missing_rows(self, df):
        data = df.copy()
        data.loc[data.index[:4], 'x2'] = np.nan
        model = glmnet('y ~ x1 + x2', data, nlambda=20)
        assert model.nobs_ == 116
        assert model.n_dropped_ == 4

        with pytest.raises(MissingValueError):
            glmnet('y ~ x1 + x2', data, na_action='fail')

    def test_missing_variable(self, df):
        with pytest.raises(MissingVariableError, match='nope'):
            glmnet('y ~ x1 + nope', df)

        model = glmnet('y ~ x1 + x2', df, nlambda=20)
        with pytest.raises(MissingVariableError):
            model.predict(df.drop(columns=['x2']), s=0.1)

    def test_transform_in_formula(self, df):
        model = glmnet('y ~ np.log(x1 + 5) + x2', df, nlambda=20)
        assert model.column_names_ == ['np.log(x1 + 5)', 'x2']
        assert model.predict(df.head(3), s=0.1).shape == (3,)

    def test_local_variable(self, df):
        scale = 3.0
        model = glmnet('y ~ I(x1 * scale)', df, nlambda=20)
        np.testing.assert_allclose(model.model_matrix(df.head(4))[:, 0], df['x1'].head(4) * scale)

    def test_offset_term(self, df):
        model = glmnet('y ~ x1 + offset(x2)', df, nlambda=20)
        assert model.offset_used_
        assert model.column_names_ == ['x1']
        newdata = df.head(5)
        coef = model.coef(s=0.1)
        expected = coef['(Intercept)'] + coef['x1'] * newdata['x1'] + newdata['x2']
        np.testing.assert_allclose(model.predict(newdata, s=0.1), expected)

    def test_offset_argument(self, df):
        model = glmnet('y ~ x1 + x2', df, offset=np.ones(120), nlambda=20)
        with pytest.raises(ValueError, match='offset'):
            model.predict(df.head(3), s=0.1)
        assert model.predict(df.head(3), s=0.1, offset=np.ones(3)).shape == (3,)

    def test_weights_by_name(self, df):
        data = df.assign(w=np.linspace(0.5, 2.0, 120))
        by_name = glmnet('y ~ x1 + x2', data, weights='w', nlambda=20)
        by_value = glmnet('y ~ x1 + x2', data, weights=data['w'].to_numpy(), nlambda=20)
        np.testing.assert_array_equal(by_name.coef().to_numpy(), by_value.coef().to_numpy())

    def test_subset(self, df):
        model = glmnet('y ~ x1 + x2', df, subset='x1 > 0', nlambda=20)
        assert model.nobs_ == int((df['x1'] > 0).sum())

        mask = (df['g'] != 'c').to_numpy()
        model = glmnet('y ~ x1 + g', df, subset=mask, drop_unused_levels=True, nlambda=20)
        assert model.xlev_['g'] == ['a', 'b']

    def test_no_intercept(self, df):
        model = glmnet('y ~ x1 + x2 - 1', df, nlambda=20)
        assert not model.model_.fit_intercept
        assert model.coef(s=0.1)['(Intercept)'] == 0.0

    def test_sparse_matches_dense(self, df):
        dense = glmnet('y ~ x1 + g - 1', df, lambda_seq=[0.1, 0.05], standardize=False,
                       control={'tol': 1e-8})
        sp = glmnet('y ~ x1 + g - 1', df, lambda_seq=[0.1, 0.05], standardize=False,
                    control={'tol': 1e-8}, sparse=True)
        np.testing.assert_allclose(sp.coef().to_numpy(), dense.coef().to_numpy(), atol=1e-3)

    def test_sparse_matches_dense_standardized(self, df):
        """sparse=True changes storage only, also for off-centre predictors."""
        data = df.assign(x1=3.0 * df['x1'] + 5.0)
        dense = glmnet('y ~ x1 + x2 + x3', data, lambda_seq=[0.3, 0.1, 0.05],
                       control={'tol': 1e-10})
        sp = glmnet('y ~ x1 + x2 + x3', data, lambda_seq=[0.3, 0.1, 0.05],
                    control={'tol': 1e-10}, sparse=True)
        np.testing.assert_allclose(sp.coef().to_numpy(), dense.coef().to_numpy(), atol=1e-4)
        np.testing.assert_allclose(sp.predict(data.head(5), s=0.1),
                                   dense.predict(data.head(5), s=0.1), atol=1e-4)

    def test_model_frame_mode(self, df):
        model = glmnet('y ~ x1 + g', df, use_model_frame=True, nlambda=20)
        assert sorted(model.column_names_) == ['g[T.b]', 'g[T.c]', 'x1']
        assert model.predict(df.tail(4), s=0.1).shape == (4,)

    def test_binomial(self, df):
        model = glmnet('cls ~ x1 + x2 + g', df, family='binomial', nlambda=15)
        labels = model.predict(df.head(10), s=0.01, type='class')
        assert set(labels) <= {'no', 'yes'}
        prob = model.predict(df.head(10), s=0.01, type='response')
        assert np.all((prob > 0) & (prob < 1))

    def test_multinomial_coef(self, df):
        model = glmnet('cls3 ~ x1 + x2', df, family='multinomial', nlambda=10)
        coef = model.coef(s=0.01)
        assert list(coef) == ['high', 'low', 'mid']
        assert list(coef['low'].index) == ['(Intercept)', 'x1', 'x2']

    def test_mgaussian(self, df):
        model = glmnet('y + x3 ~ x1 + x2', df, family='mgaussian', nlambda=10)
        coef = model.coef(s=0.05)
        assert list(coef) == ['y', 'x3']
        assert model.predict(df.head(4), s=0.05).shape == (4, 2)

    def test_coefficients_without_newdata(self, df):
        model = glmnet('y ~ x1 + x2 + x3', df, nlambda=20)
        np.testing.assert_array_equal(model.predict(s=0.1, type='coefficients'),
                                      model.model_.coef(s=0.1))

    def test_summary(self, df, capsys):
        model = glmnet('y ~ x1 + x2 + g', df, alpha=0.5, nlambda=20)
        text = str(model)
        assert model.call_ == "glmnet('y ~ x1 + x2 + g', data, alpha=0.5, nlambda=20)"
        assert "Call:" in text
        assert "Sparse model matrix: False" in text
        assert "Lambda summary:" in text

        model.summary(print_deviance_ratios=True)
        assert "Deviance ratios:" in capsys.readouterr().out

    def test_unfitted_str(self):
        assert 'GlmnetFormula' in str(GlmnetFormula('y ~ x'))

    def test_clone(self, df):
        model = GlmnetFormula('y ~ x1 + g', alpha=0.3, nlambda=20).fit(df)
        fresh = clone(model)
        assert fresh.get_params() == model.get_params()
        assert not hasattr(fresh, 'model_')


class TestRelaxedFormula:
    """Tests for the relaxed formula fit."""

    def test_relaxed(self, df):
        model = glmnet('y ~ x1 + x2 + x3', df, relax=True, nlambda=20)
        assert isinstance(model, RelaxedFormula)
        assert model.model_.relaxed_ is not None
        assert "Relaxed fit" in str(model)

        s = model.lambda_[5]
        np.testing.assert_allclose(model.predict(df.head(3), s=s, gamma=0.0),
                                   model.model_.predict(model.model_matrix(df.head(3)), s=s, gamma=0.0))
        assert model.coef(s=s, gamma=0.0).shape == (4,)


class TestCVGlmnetFormula:
    """Tests for the formula front end of cv_glmnet."""

    @pytest.fixture
    def cvfit(self, df):
        return cv_glmnet('y ~ x1 + x2 + x3 + g', df, nlambda=25, nfolds=5, random_state=0)

    def test_dispatch(self, cvfit, df):
        assert isinstance(cvfit, CVGlmnetFormula)
        assert isinstance(cvfit.model_, CVElasticNetPath)
        X = df[['x1', 'x2']].to_numpy()
        assert isinstance(cv_glmnet(X, df['y'].to_numpy(), nlambda=10, nfolds=3), CVElasticNetPath)

    def test_predict_default_is_1se(self, cvfit, df):
        np.testing.assert_allclose(cvfit.predict(df.head(5)),
                                   cvfit.predict(df.head(5), s=cvfit.lambda_1se_))
        np.testing.assert_array_equal(cvfit.coef('lambda.min').to_numpy(),
                                      cvfit.model_.coef(s='lambda_min'))

    def test_cv_table(self, cvfit):
        table = cvfit.cv_table()
        assert list(table.index) == ['min', '1se']
        assert list(table.columns) == ['Lambda', 'Index', 'Measure', 'SE', 'Nonzero']

    def test_summary(self, cvfit):
        text = str(cvfit)
        assert "Number of crossvalidation folds: 5" in text
        assert "Measure: Mean-Squared Error" in text

    def test_binomial_class_measure(self, df):
        cvfit = cv_glmnet('cls ~ x1 + x2 + g', df, family='binomial', type_measure='class',
                          nlambda=15, nfolds=5, random_state=0)
        assert cvfit.model_.name_ == 'Misclassification Error'
        assert set(cvfit.predict(df.head(8), type='class')) <= {'no', 'yes'}


class TestCVAGlmnetFormula:
    """Tests for the formula front end of cva_glmnet."""

    @pytest.fixture
    def cva(self, df):
        return cva_glmnet('y ~ x1 + x2 + x3 + g', df, alphas=[0.0, 0.5, 1.0],
                          nlambda=15, nfolds=5, random_state=0)

    def test_dispatch(self, cva):
        assert isinstance(cva, CVAGlmnetFormula)
        assert cva.best_alpha_ in (0.0, 0.5, 1.0)

    def test_predict_by_alpha(self, cva, df):
        newdata = df.head(5)
        pred = cva.predict(newdata, alpha=0.5)
        expected = cva.model_.modlist_[1].predict(cva.model_matrix(newdata))
        np.testing.assert_allclose(pred, expected)
        with pytest.raises(ValueError, match='not found'):
            cva.predict(newdata, alpha=0.25)

    def test_coef_by_index(self, cva):
        coef = cva.coef(which=2)
        np.testing.assert_array_equal(coef.to_numpy(), cva.model_.modlist_[2].coef())

    def test_loss_table(self, cva):
        table = cva.loss_table()
        assert len(table) == 3
        np.testing.assert_allclose(table['loss.1se'], cva.model_.min_losses('1se'))

    def test_summary(self, cva):
        assert "Best alpha:" in str(cva)


class TestPersistence:
    """Fitted models survive pickling with their terms and levels."""

    def test_pickle(self, df):
        model = glmnet('y ~ x1 + g', df, nlambda=20)
        restored = pickle.loads(pickle.dumps(model))
        np.testing.assert_array_equal(restored.predict(df.head(5), s=0.1),
                                      model.predict(df.head(5), s=0.1))
        assert restored.xlev_ == model.xlev_

    def test_save_load(self, df, tmp_path):
        cvfit = cv_glmnet('y ~ x1 + x2 + g', df, nlambda=15, nfolds=4, random_state=0)
        path = tmp_path / 'cvfit.joblib'
        save_model(cvfit, path)
        restored = load_model(path)
        assert isinstance(restored, CVGlmnetFormula)
        assert restored.call_ == cvfit.call_
        np.testing.assert_array_equal(restored.predict(df.head(5)), cvfit.predict(df.head(5)))
