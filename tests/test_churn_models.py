import os

import numpy as np
import pandas as pd
import pytest

import main


def test_confusion_table_keeps_both_levels():
    cm = main.confusion_table([0, 1, 1, 0, 1], [0, 0, 0, 0, 0])

    assert list(cm.index) == [0, 1] and list(cm.columns) == [0, 1]
    assert cm.index.name == "actual" and cm.columns.name == "predicted"
    assert cm.loc[0, 0] == 2 and cm.loc[1, 0] == 3
    assert cm[1].sum() == 0
    assert cm.to_numpy().sum() == 5


def test_classification_metrics_known_values():
    m = main.classification_metrics([0, 0, 1, 1], [0.1, 0.6, 0.4, 0.9], threshold=0.5)

    assert (m["TN"], m["FP"], m["FN"], m["TP"]) == (1, 1, 1, 1)
    assert m["accuracy"] == pytest.approx(0.5)
    assert m["error_rate"] == pytest.approx(0.5)
    assert m["precision"] == pytest.approx(0.5)
    assert m["recall"] == pytest.approx(0.5)
    assert m["AUC"] == pytest.approx(0.75)


def test_classification_metrics_threshold_is_inclusive():
    m = main.classification_metrics([1, 0], [0.5, 0.2], threshold=0.5)
    assert m["TP"] == 1 and m["accuracy"] == 1.0


def test_classification_metrics_single_class_auc_is_nan():
    m = main.classification_metrics([0, 0, 0], [0.2, 0.7, 0.1])
    assert np.isnan(m["AUC"])
    assert m["precision"] == 0.0


def test_fit_logit_on_factor_target(prepared):
    df, train_idx, test_idx = prepared
    fit = main.fit_logit(df.loc[train_idx], "churn", main.predictors_for(df, "churn"))
    p = np.asarray(fit.predict(df.loc[test_idx]))

    assert len(p) == len(test_idx)
    assert ((p >= 0) & (p <= 1)).all()
    assert "is_tv_subscriber[T.1]" in fit.params.index
    assert "remaining_contract" in fit.params.index


def test_run_churn_models_exports(fast_config, prepared, workdir):
    df, train_idx, test_idx = prepared
    out = main.run_churn_models(df, train_idx, test_idx)

    assert out["best_churn_model"] in main.CHURN_MODEL_LABELS.values()
    for key in main.CHURN_MODEL_LABELS:
        assert 0.0 <= out[f"accuracy_{key}"] <= 1.0
        assert out[f"error_rate_{key}"] == pytest.approx(1 - out[f"accuracy_{key}"])

    summary = pd.read_csv("exports/churn_eval_summary.csv")
    assert list(summary["key"]) == list(main.CHURN_MODEL_LABELS)
    assert (summary[["TN", "FP", "FN", "TP"]].sum(axis=1) == len(test_idx)).all()

    preds = pd.read_csv("exports/churn_predictions.csv")
    assert len(preds) == len(test_idx)
    assert list(preds.columns) == ["y_true"] + [f"proba_{k}" for k in main.CHURN_MODEL_LABELS]
    assert preds["y_true"].tolist() == df.loc[test_idx, "churn"].astype(int).tolist()
    assert preds.filter(like="proba_").stack().between(0, 1).all()

    feats = pd.read_csv("exports/holdout_features.csv")
    assert len(feats) == len(test_idx)
    assert "churn" not in feats.columns

    for key in main.CHURN_MODEL_LABELS:
        assert os.path.exists(f"reports/figures/cm_{key}.png")
    assert os.path.exists("reports/figures/roc_churn_models.png")
    assert os.path.exists("reports/logit_full_summary.txt")


def test_run_churn_models_requires_target(prepared):
    df, train_idx, test_idx = prepared
    with pytest.raises(AssertionError, match="churn"):
        main.run_churn_models(df.drop(columns=["churn"]), train_idx, test_idx)
