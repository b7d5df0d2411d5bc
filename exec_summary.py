# exec_summary.py
# Writes a plain-English summary of the churn & bill report to reports/executive_summary.md
# - Reads the exports written by main.py (+ merge_features.py for segment tables)
# - Bill-average section: best model by test MSE and the full MSE table
# - Churn section: confusion mix at the cut-off, one-way tables, top-10 two-way segments
# - Missing inputs give a short placeholder document instead of an error

from __future__ import annotations

import os
from typing import Optional, Tuple, List

import numpy as np
import pandas as pd

EXPORTS = "exports"
REPORTS = "reports"
OUT_MD = os.path.join(REPORTS, "executive_summary.md")
PREDICTIONS_CSV = os.path.join(EXPORTS, "churn_predictions.csv")
WITH_FEATS_CSV = os.path.join(EXPORTS, "holdout_with_features.csv")
CHURN_SUMMARY_CSV = os.path.join(EXPORTS, "churn_eval_summary.csv")
BILL_MSE_CSV = os.path.join(EXPORTS, "bill_avg_mse.csv")

# ---- configuration
THRESHOLD = 0.50
PREFERRED_PROBA_COLS = ["proba_rf", "proba_logit_full", "proba_tree", "proba_logit_reduced"]  # pick in this order
PROBA_NAMES = {
    "proba_rf": "Random forest",
    "proba_logit_full": "Logistic regression (full)",
    "proba_logit_reduced": "Logistic regression (reduced)",
    "proba_tree": "Classification tree (pruned)",
}

# ------------ helpers

def ensure_dirs():
    os.makedirs(REPORTS, exist_ok=True)

def read_csv_safe(path: str) -> Optional[pd.DataFrame]:
    if not os.path.exists(path):
        return None
    try:
        return pd.read_csv(path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        print(f"[WARN] Could not read {path}: {e}")
        return None

def fmt_pct(x: float, d: int = 1) -> str:
    if x is None or not np.isfinite(x): return "—"
    return f"{100.0 * float(x):.{d}f}%"

def fmt_float(x: float, d: int = 3) -> str:
    if x is None or not np.isfinite(x): return "—"
    return f"{float(x):,.{d}f}"

def fmt_int(x: float | int) -> str:
    if x is None or (isinstance(x, float) and not np.isfinite(x)): return "—"
    return f"{int(round(float(x))):,}"

def pick_proba_col(df: pd.DataFrame) -> Tuple[str, str]:
    for c in PREFERRED_PROBA_COLS:
        if c in df.columns:
            return c, PROBA_NAMES[c]
    for c in df.columns:
        if str(c).lower().startswith("proba"):
            return c, c
    raise ValueError("No probability column found (expected proba_rf / proba_logit_full / ...).")

def confusion_at_threshold(y: np.ndarray, p: np.ndarray, thr: float) -> Tuple[int, int, int, int]:
    pred = (np.nan_to_num(p, nan=-1.0) >= thr).astype(int)
    # cell = 2*actual + predicted -> tn, fp, fn, tp
    tn, fp, fn, tp = (int(c) for c in np.bincount(2 * np.asarray(y, dtype=int) + pred, minlength=4))
    return tp, fp, tn, fn

# ------------ banding

SUB_AGE_ORDER = ["<1 yr", "1–2 yrs", "2–3 yrs", "3–5 yrs", "5+ yrs", "Subscription: Missing"]
CONTRACT_ORDER = ["No contract left", "<6 months", "6–12 months", "1–2 years", "2+ years", "Contract: Missing"]
FAILURE_ORDER = ["none", "1", "2+", "Failures: Missing"]
TV_ORDER = ["TV subscriber", "No TV", "TV: Missing"]

def band_subscription_age(x: float) -> str:
    v = pd.to_numeric(x, errors="coerce")
    if not np.isfinite(v): return "Subscription: Missing"
    if v < 1: return "<1 yr"
    if v < 2: return "1–2 yrs"
    if v < 3: return "2–3 yrs"
    if v < 5: return "3–5 yrs"
    return "5+ yrs"

def band_contract(x: float) -> str:
    v = pd.to_numeric(x, errors="coerce")
    if not np.isfinite(v): return "Contract: Missing"
    if v <= 0: return "No contract left"
    if v < 0.5: return "<6 months"
    if v < 1.0: return "6–12 months"
    if v < 2.0: return "1–2 years"
    return "2+ years"

def band_failures(x: float) -> str:
    v = pd.to_numeric(x, errors="coerce")
    if not np.isfinite(v): return "Failures: Missing"
    if v <= 0: return "none"
    if v <= 1: return "1"
    return "2+"

def band_tv(x: float) -> str:
    v = pd.to_numeric(x, errors="coerce")
    if not np.isfinite(v): return "TV: Missing"
    return "TV subscriber" if v >= 1 else "No TV"

# ------------ table builders

def df_to_md_table(df: pd.DataFrame) -> str:
    """Render a DataFrame as a GitHub-style Markdown table."""
    cols = list(df.columns)
    header = "| " + " | ".join(str(c) for c in cols) + " |"
    sep = "| " + " | ".join(["---"] * len(cols)) + " |"
    rows = ["| " + " | ".join(str(df.iloc[i, j]) for j in range(len(cols))) + " |"
            for i in range(len(df))]
    return "\n".join([header, sep] + rows)

def order_categorical(series: pd.Series, order: List[str]) -> pd.Series:
    cat = pd.Categorical(series, categories=order, ordered=True)
    return pd.Series(cat, index=series.index)

def one_way_table_df(df: pd.DataFrame, band_col: str, y_col: str, p_col: str, thr: float) -> pd.DataFrame:
    g = df.groupby(band_col, dropna=True, observed=True)
    out = g.agg(
        customers=(y_col, "size"),
        churned=(y_col, "sum"),
        flagged=(p_col, lambda s: int((pd.to_numeric(s, errors="coerce") >= thr).sum()))
    ).reset_index().rename(columns={band_col: "Group"})
    total = out["customers"].sum()
    out["Share of customers"] = out["customers"] / total if total else 0.0
    out["Churn rate"] = out["churned"] / out["customers"]
    out["Flag rate"] = out["flagged"] / out["customers"]
    return out[["Group", "Share of customers", "Churn rate", "Flag rate"]]

def microsegments_top10_df(df: pd.DataFrame, a_col: str, b_col: str, y_col: str, p_col: str,
                           thr: float, base_rate: float) -> pd.DataFrame:
    """Two-way segments ranked by excess churn weighted by segment size."""
    tmp = df[[a_col, b_col, y_col, p_col]].copy()
    tmp["flagged"] = (pd.to_numeric(tmp[p_col], errors="coerce") >= thr).astype(int)
    mix = tmp.groupby([a_col, b_col], dropna=True, observed=True).agg(
        customers=(y_col, "size"),
        churned=(y_col, "sum"),
        flagged=("flagged", "sum"),
    ).reset_index().rename(columns={a_col: "Group A", b_col: "Group B"})
    total = mix["customers"].sum()
    mix["Share of customers"] = mix["customers"] / total if total else 0.0
    mix["Churn rate"] = mix["churned"] / mix["customers"]
    mix["Flag rate"] = mix["flagged"] / mix["customers"]
    mix["Impact score"] = (mix["Churn rate"] - base_rate).clip(lower=0) * mix["Share of customers"]
    top = mix.sort_values(["Impact score", "Churn rate", "Share of customers"], ascending=False).head(10)
    return top[["Group A", "Group B", "Share of customers", "Churn rate", "Flag rate"]].reset_index(drop=True)

def _pct_columns(t: pd.DataFrame, cols: List[str]) -> pd.DataFrame:
    t = t.copy()
    for c in cols:
        t[c] = t[c].apply(lambda v: fmt_pct(v, 1))
    return t

def bill_section(mse_df: Optional[pd.DataFrame]) -> List[str]:
    lines = ["## Average bill — which model predicts it best"]
    if mse_df is None or mse_df.empty or "test_mse" not in mse_df.columns:
        lines.append(f"*No bill-average results found at `{BILL_MSE_CSV}`.*")
        lines.append("")
        return lines
    t = mse_df.sort_values("test_mse").reset_index(drop=True)
    best = t.iloc[0]
    lines.append(f"- Lowest test error: **{best['model']}** (MSE **{fmt_float(best['test_mse'], 2)}**, "
                 f"RMSE **{fmt_float(best.get('test_rmse', np.nan), 2)}**).")
    if len(t) > 1:
        worst = t.iloc[-1]
        lines.append(f"- Highest test error: {worst['model']} (MSE {fmt_float(worst['test_mse'], 2)}).")
    lines.append("")
    show = pd.DataFrame({
        "Model": t["model"],
        "Test MSE": t["test_mse"].apply(lambda v: fmt_float(v, 2)),
        "Test R²": t["test_r2"].apply(lambda v: fmt_float(v, 3)) if "test_r2" in t.columns else "—",
    })
    lines.append(df_to_md_table(show))
    lines.append("")
    return lines

# ------------ main

def build_summary() -> str:
    ensure_dirs()

    preds = read_csv_safe(PREDICTIONS_CSV)
    if preds is None or preds.empty:
        return f"# Executive Summary\n\n*No predictions file found at `{PREDICTIONS_CSV}`.*\n"

    y_col = next((c for c in ["y_true", "churn"] if c in preds.columns), None)
    if y_col is None:
        return "# Executive Summary\n\n*No label column found (expected y_true / churn).*\n"
    proba_col, model_name = pick_proba_col(preds)

    y = pd.to_numeric(preds[y_col], errors="coerce").fillna(0).astype(int).to_numpy()
    p = pd.to_numeric(preds[proba_col], errors="coerce").clip(0, 1).to_numpy()
    n = int(np.isfinite(p).sum())
    base_rate = float(np.nanmean(y)) if n else np.nan

    tp, fp, tn, fn = confusion_at_threshold(y, p, THRESHOLD)
    precision = tp / (tp + fp) if (tp + fp) else np.nan
    recall = tp / (tp + fn) if (tp + fn) else np.nan
    accuracy = (tp + tn) / (tp + tn + fp + fn) if n else np.nan
    flagged_share = float((p >= THRESHOLD).mean()) if n else np.nan

    eval_df = read_csv_safe(CHURN_SUMMARY_CSV)
    auc_txt = None
    if eval_df is not None and not eval_df.empty and "AUC" in eval_df.columns:
        key = proba_col[len("proba_"):]
        match = eval_df[eval_df["key"] == key] if "key" in eval_df.columns else eval_df.iloc[0:0]
        row = match.iloc[0] if not match.empty else eval_df.iloc[eval_df["AUC"].astype(float).idxmax()]
        auc_txt = fmt_float(float(row["AUC"]), 3)

    lines: List[str] = []
    lines.append("# Executive Summary\n")

    lines.append("## What this means in plain terms")
    lines.append(f"- About **{fmt_pct(base_rate)}** of customers in the evaluation half churned.")
    lines.append(f"- **{model_name}** is used for the churn summary.")
    lines.append(f"- At a cutoff of **{THRESHOLD:.2f}**, about **{fmt_pct(flagged_share)}** of customers would be flagged as likely to churn.")
    lines.append(f"- Accuracy **{fmt_float(accuracy, 3)}**; among those flagged, precision is **{fmt_float(precision, 3)}**; "
                 f"we catch **{fmt_float(recall, 3)}** of actual churners (recall).")
    if auc_txt:
        lines.append(f"- AUC: **{auc_txt}**")
    if np.isfinite(flagged_share):
        total = tp + tn + fp + fn
        lines.append(
            f"- Per **10,000** customers at this cutoff: **{fmt_int(10000 * flagged_share)}** flagged "
            f"(~{fmt_int(10000 * tp / total)} true churners, {fmt_int(10000 * fp / total)} false alarms; "
            f"{fmt_int(10000 * fn / total)} missed)."
        )
    lines.append("")

    lines.extend(bill_section(read_csv_safe(BILL_MSE_CSV)))

    if eval_df is not None and not eval_df.empty:
        cols = [c for c in ["model", "accuracy", "AUC", "precision", "recall"] if c in eval_df.columns]
        show = eval_df[cols].copy()
        for c in cols[1:]:
            show[c] = show[c].apply(lambda v: fmt_float(v, 3))
        lines.append("## Churn models — holdout comparison")
        lines.append(df_to_md_table(show))
        lines.append("")

    df_feat = read_csv_safe(WITH_FEATS_CSV)
    if df_feat is not None and not df_feat.empty and proba_col in df_feat.columns:
        df = df_feat.copy()
        df["y"] = pd.to_numeric(df[y_col], errors="coerce").fillna(0).astype(int)
        df[proba_col] = pd.to_numeric(df[proba_col], errors="coerce").clip(0, 1)

        if "subscription_age" in df: df["Subscription age"] = df["subscription_age"].map(band_subscription_age)
        if "remaining_contract" in df: df["Remaining contract"] = df["remaining_contract"].map(band_contract)
        if "service_failure_count" in df: df["Service failures"] = df["service_failure_count"].map(band_failures)
        if "is_tv_subscriber" in df: df["TV"] = df["is_tv_subscriber"].map(band_tv)

        bullets: List[str] = []
        for label in ["Subscription age", "Remaining contract", "Service failures"]:
            if label not in df:
                continue
            t = one_way_table_df(df, label, "y", proba_col, THRESHOLD)
            t = t[~t["Group"].str.contains("Missing", na=False)]
            if t.empty:
                continue
            g = t.sort_values("Churn rate", ascending=False).iloc[0]
            bullets.append(f"- **{label}:** highest churn in **{g['Group']}** ({fmt_pct(g['Churn rate'])}); flagged at {fmt_pct(g['Flag rate'])}.")
        if bullets:
            lines.append("## Who to prioritise for retention")
            lines.extend(bullets)
            lines.append("")

        if "Subscription age" in df and "Remaining contract" in df:
            top10 = microsegments_top10_df(df, "Subscription age", "Remaining contract", "y", proba_col, THRESHOLD, base_rate)
            lines.append("## Top 10 Highest-Risk Segments (Subscription age × Remaining contract)")
            lines.append(df_to_md_table(_pct_columns(top10, ["Share of customers", "Churn rate", "Flag rate"])))
            lines.append("")
            pairs = [f"**{r['Group A']} × {r['Group B']}**" for _, r in top10.head(3).iterrows()]
            if pairs:
                lines.append(f"**Takeaway:** Start with {', then '.join(pairs)}. These segments churn more often "
                             "than average and hold enough customers to matter for retention offers.")
                lines.append("")

        lines.append("## Comparison tables")
        for title, colname, order in [
            ("Subscription age", "Subscription age", SUB_AGE_ORDER),
            ("Remaining contract", "Remaining contract", CONTRACT_ORDER),
            ("Service failures", "Service failures", FAILURE_ORDER),
            ("TV subscription", "TV", TV_ORDER),
        ]:
            if colname not in df:
                continue
            t = one_way_table_df(df, colname, "y", proba_col, THRESHOLD)
            t["Group"] = order_categorical(t["Group"], order)
            t = t.sort_values("Group")
            t["Group"] = t["Group"].astype(str)
            lines.append(f"### {title}")
            lines.append(df_to_md_table(_pct_columns(t, ["Share of customers", "Churn rate", "Flag rate"])))
            lines.append("")

    lines.append("## Recommended operating point")
    lines.append(f"- Threshold: **{THRESHOLD:.2f}**")
    lines.append(f"- Precision: **{fmt_float(precision, 3)}**, Recall: **{fmt_float(recall, 3)}**")
    lines.append(f"- Confusion mix: TP={fmt_int(tp)} FP={fmt_int(fp)} TN={fmt_int(tn)} FN={fmt_int(fn)}")
    lines.append("- Lower the threshold if a missed churner costs more than an unneeded retention offer.")
    lines.append("")

    return "\n".join(lines).strip() + "\n"


if __name__ == "__main__":
    md = build_summary()
    ensure_dirs()
    with open(OUT_MD, "w", encoding="utf-8") as f:
        f.write(md)
    print(f"Wrote {OUT_MD}")
