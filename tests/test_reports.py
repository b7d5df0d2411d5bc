import os

import numpy as np
import pandas as pd
import pytest

import exec_summary
import merge_features


def write_exports(root, n: int = 120, with_features: bool = True):
    rng = np.random.default_rng(0)
    exp = root / "exports"
    exp.mkdir(parents=True, exist_ok=True)
    y = rng.integers(0, 2, size=n)
    pd.DataFrame({
        "y_true": y,
        "proba_logit_full": np.clip(0.3 * y + rng.uniform(0, 0.7, size=n), 0, 1),
        "proba_rf": np.clip(0.4 * y + rng.uniform(0, 0.6, size=n), 0, 1),
    }).to_csv(exp / "churn_predictions.csv", index=False)
    pd.DataFrame({
        "model": ["Logistic regression (full)", "Random forest"],
        "key": ["logit_full", "rf"],
        "accuracy": [0.71, 0.78], "AUC": [0.74, 0.83],
        "precision": [0.66, 0.75], "recall": [0.60, 0.70],
    }).to_csv(exp / "churn_eval_summary.csv", index=False)
    pd.DataFrame({
        "model": ["Linear regression (full)", "Random forest"],
        "key": ["ols_full", "rf"],
        "test_mse": [42.5, 30.1], "test_rmse": [6.52, 5.49], "test_r2": [0.61, 0.72],
    }).to_csv(exp / "bill_avg_mse.csv", index=False)
    if with_features:
        pd.DataFrame({
            "subscription_age": rng.uniform(0, 8, size=n),
            "reamining_contract": rng.choice([0.0, 0.3, 0.8, 1.5, 2.2], size=n),
            "service_failure_count": rng.integers(0, 4, size=n),
            "is_tv_subscriber": rng.integers(0, 2, size=n),
            "region": "eu",
        }).to_csv(exp / "holdout_features.csv", index=False)


def test_band_helpers():
    assert exec_summary.band_contract(0) == "No contract left"
    assert exec_summary.band_contract(0.7) == "6–12 months"
    assert exec_summary.band_contract(np.nan) == "Contract: Missing"
    assert exec_summary.band_subscription_age(5.0) == "5+ yrs"
    assert exec_summary.band_failures(3) == "2+"
    assert exec_summary.band_tv(1) == "TV subscriber"


def test_confusion_at_threshold():
    y = np.array([1, 1, 1, 1, 1, 0, 0, 0, 0, 0])
    p = np.array([0.9, 0.6, 0.4, 0.2, 0.1, 0.8, 0.3, 0.2, 0.1, 0.05])
    # returned as (tp, fp, tn, fn)
    assert exec_summary.confusion_at_threshold(y, p, 0.5) == (2, 1, 4, 3)


def test_pick_proba_col_prefers_forest():
    df = pd.DataFrame({"y_true": [0], "proba_logit_full": [0.1], "proba_rf": [0.2]})
    assert exec_summary.pick_proba_col(df) == ("proba_rf", "Random forest")
    with pytest.raises(ValueError):
        exec_summary.pick_proba_col(pd.DataFrame({"y_true": [0]}))


def test_summary_placeholder_without_predictions(workdir):
    md = exec_summary.build_summary()
    assert md.startswith("# Executive Summary")
    assert "No predictions file found" in md


def test_merge_requires_predictions(tmp_path):
    with pytest.raises(SystemExit, match="churn_predictions.csv"):
        merge_features.merge(root=str(tmp_path))


def test_merge_requires_features(tmp_path):
    write_exports(tmp_path, with_features=False)
    with pytest.raises(SystemExit, match="holdout_features.csv"):
        merge_features.merge(root=str(tmp_path))


def test_merge_aligns_rows_and_renames(tmp_path, capsys):
    write_exports(tmp_path, n=120)
    feats_path = tmp_path / "exports" / "holdout_features.csv"
    pd.read_csv(feats_path).iloc[:100].to_csv(feats_path, index=False)

    out = merge_features.merge(root=str(tmp_path))
    merged = pd.read_csv(out)

    assert len(merged) == 100
    assert "remaining_contract" in merged.columns
    assert "region" not in merged.columns
    assert {"y_true", "proba_rf"} <= set(merged.columns)
    assert "length mismatch" in capsys.readouterr().out


def test_full_summary_sections(workdir):
    write_exports(workdir)
    merge_features.merge(root=str(workdir))

    md = exec_summary.build_summary()

    assert "**Random forest** is used for the churn summary" in md
    assert "## Average bill — which model predicts it best" in md
    assert "Lowest test error: **Random forest**" in md
    assert "## Churn models — holdout comparison" in md
    assert "## Top 10 Highest-Risk Segments" in md
    assert "### TV subscription" in md
    assert "AUC: **0.830**" in md
    assert md.endswith("\n")

    preds = pd.read_csv(workdir / "exports" / "churn_predictions.csv")
    y, flagged = preds["y_true"] == 1, preds["proba_rf"] >= exec_summary.THRESHOLD
    tp, fp = int((flagged & y).sum()), int((flagged & ~y).sum())
    tn, fn = int((~flagged & ~y).sum()), int((~flagged & y).sum())
    assert f"Confusion mix: TP={tp} FP={fp} TN={tn} FN={fn}" in md


def test_summary_without_bill_results(workdir):
    write_exports(workdir)
    os.remove(workdir / "exports" / "bill_avg_mse.csv")

    md = exec_summary.build_summary()
    assert "No bill-average results found" in md
    assert "## Recommended operating point" in md
