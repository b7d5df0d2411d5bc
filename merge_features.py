# merge_features.py
# Join holdout features to churn holdout predictions so the summary can analyze segments.

from __future__ import annotations
import os
import pandas as pd

ROOT = os.path.dirname(os.path.abspath(__file__))

# Segment columns the summary knows how to band (falls back to 'all' if none match)
WANTED = [
    "subscription_age",
    "remaining_contract",
    "service_failure_count",
    "is_tv_subscriber", "is_movie_package_subscriber",
    "download_avg", "upload_avg", "download_over_limit",
    "bill_avg",
]


def merge(root: str = ROOT) -> str:
    exp = os.path.join(root, "exports")
    pred_path = os.path.join(exp, "churn_predictions.csv")
    if not os.path.exists(pred_path):
        raise SystemExit("Missing exports/churn_predictions.csv — run main.py first.")

    candidates = [
        os.path.join(exp, "holdout_features.csv"),
        os.path.join(root, "data", "holdout_features.csv"),
    ]
    feat_path = next((p for p in candidates if os.path.exists(p)), None)
    if feat_path is None:
        raise SystemExit(
            "Could not find a holdout features CSV.\n"
            "Looked for:\n - exports/holdout_features.csv\n - data/holdout_features.csv"
        )
    print(f"Using features file: {feat_path}")

    preds = pd.read_csv(pred_path)
    feats = pd.read_csv(feat_path).rename(columns={"reamining_contract": "remaining_contract"})
    keep = [c for c in WANTED if c in feats.columns] or list(feats.columns)

    # main.py writes both files from the same holdout rows, in the same order
    n = min(len(preds), len(feats))
    if len(preds) != len(feats):
        print(f"Note: length mismatch — preds={len(preds)}, feats={len(feats)}. Using first {n} rows.")

    combined = pd.concat(
        [feats.iloc[:n][keep].reset_index(drop=True),
         preds.iloc[:n].reset_index(drop=True)],
        axis=1
    )
    out_path = os.path.join(exp, "holdout_with_features.csv")
    combined.to_csv(out_path, index=False)
    print(f"Wrote {out_path}")
    return out_path


if __name__ == "__main__":
    merge()
    print("Next: run exec_summary.py to refresh reports/executive_summary.md.")
