import os

import numpy as np
import pandas as pd
import pytest
from sklearn.model_selection import KFold
from sklearn.tree import DecisionTreeRegressor

import main


def test_formula_for():
    assert main.formula_for("bill_avg", ["a", "b"]) == "bill_avg ~ a + b"
    assert main.formula_for("bill_avg", []) == "bill_avg ~ 1"


def test_term_column_maps_dummies_back():
    preds = ["is_tv_subscriber", "download_avg"]
    assert main._term_column("is_tv_subscriber[T.1]", preds) == "is_tv_subscriber"
    assert main._term_column("C(is_tv_subscriber)[T.1]", preds) == "is_tv_subscriber"
    assert main._term_column("download_avg", preds) == "download_avg"
    assert main._term_column("Intercept", preds) is None


def test_significant_predictors(prepared):
    df, train_idx, _ = prepared
    train = df.loc[train_idx]
    predictors = main.predictors_for(df, "bill_avg")
    fit = main.fit_ols(train, "bill_avg", predictors)

    keep = main.significant_predictors(fit, predictors, alpha=0.05)
    assert {"download_avg", "subscription_age", "is_tv_subscriber", "is_movie_package_subscriber"} <= set(keep)
    assert keep == [c for c in predictors if c in keep]
    assert main.significant_predictors(fit, predictors, alpha=0.0) == []


def test_reduced_predictors_configured_list(prepared):
    df, train_idx, _ = prepared
    predictors = main.predictors_for(df, "bill_avg")
    fit = main.fit_ols(df.loc[train_idx], "bill_avg", predictors)

    assert main._reduced_predictors(["download_avg"], fit, predictors) == ["download_avg"]
    with pytest.raises(ValueError, match="shoe_size"):
        main._reduced_predictors(["shoe_size"], fit, predictors)


def test_intercept_only_reduced_model(prepared):
    df, train_idx, test_idx = prepared
    fit = main.fit_ols(df.loc[train_idx], "bill_avg", [])
    pred = np.asarray(fit.predict(df.loc[test_idx]))

    assert np.allclose(pred, df.loc[train_idx, "bill_avg"].mean())


def test_lambda_one_se_not_below_lambda_min(prepared):
    df, train_idx, _ = prepared
    train = df.loc[train_idx]
    X = main.as_numeric_frame(train[main.predictors_for(df, "bill_avg")])
    pipe = main.fit_lasso(X, train["bill_avg"].to_numpy(), cv_folds=3)
    lcv = pipe.named_steps["lasso"]

    lam_1se = main.lambda_one_se(lcv)
    assert lam_1se >= lcv.alpha_
    assert np.isclose(np.asarray(lcv.alphas_), lam_1se).any()


def test_prune_tree_cv_shrinks_tree(prepared):
    df, train_idx, _ = prepared
    train = main.as_numeric_frame(df.loc[train_idx])
    X, y = train.drop(columns=["bill_avg"]), train["bill_avg"].to_numpy()
    grown = DecisionTreeRegressor(min_samples_leaf=2, random_state=0).fit(X, y)

    pruned, alpha, search = main.prune_tree_cv(
        grown, X, y, "neg_mean_squared_error", KFold(3, shuffle=True, random_state=0), max_alphas=8
    )
    assert alpha >= 0
    assert len(search.param_grid["ccp_alpha"]) <= 8
    assert pruned.get_n_leaves() <= grown.get_n_leaves()


def test_run_bill_models_exports(fast_config, prepared, workdir):
    df, train_idx, test_idx = prepared
    out = main.run_bill_models(df, train_idx, test_idx)

    for key in main.BILL_MODEL_LABELS:
        assert np.isfinite(out[f"mse_{key}"])
    assert out["lambda_1se"] >= out["lambda_min"]
    assert out["tree_bill_leaves_pruned"] <= out["tree_bill_leaves_grown"]
    assert out["best_bill_model"] in main.BILL_MODEL_LABELS.values()

    mse = pd.read_csv("exports/bill_avg_mse.csv")
    assert list(mse["key"]) == list(main.BILL_MODEL_LABELS)
    assert np.allclose(mse["test_rmse"] ** 2, mse["test_mse"])

    preds = pd.read_csv("exports/bill_avg_predictions.csv")
    assert len(preds) == len(test_idx)
    assert "pred_lasso_1se" in preds.columns

    for path in ["reports/ols_full_summary.txt", "reports/ols_reduced_summary.txt",
                 "reports/figures/lasso_cv_curve.png", "reports/figures/bill_mse_by_model.png",
                 "artifacts/bill_rf.joblib"]:
        assert os.path.exists(path), path
    with open("reports/ols_full_summary.txt", encoding="utf-8") as f:
        assert "OLS Regression Results" in f.read()


def test_run_bill_models_requires_target(prepared):
    df, train_idx, test_idx = prepared
    with pytest.raises(AssertionError, match="bill_avg"):
        main.run_bill_models(df.drop(columns=["bill_avg"]), train_idx, test_idx)
