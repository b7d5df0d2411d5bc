"""
============ Internet Service Churn — Bill & Churn Modeling Report ============

Loads the internet-service churn dataset, recodes the subscriber flags as
factors, runs a short EDA and fits two model families on a 50/50 random split:

  * bill_avg (regression): full & reduced OLS, LASSO with a 10-fold CV
    penalty, a CV-pruned regression tree and a random forest. Scored by
    test-set mean squared error.
  * churn (classification): full & reduced logistic regression, a CV-pruned
    classification tree and a random forest. Scored by confusion tables at
    a 0.5 cut-off plus accuracy / AUC.

Outputs: figures + HTML index under reports/figures, statsmodels summaries,
CSV exports for exec_summary.py, saved estimators and a short model card.

Palette: blue = stayed (0), coral = churned (1).
===============================================================================
"""


import os
import sys
import platform
import warnings
warnings.filterwarnings("ignore", category=UserWarning)

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.ticker import FuncFormatter
from matplotlib import image as mpimg  # for figure sizes in manifest

import statsmodels.api as sm
import statsmodels.formula.api as smf
from statsmodels.stats.outliers_influence import variance_inflation_factor

from sklearn.base import clone
from sklearn.model_selection import train_test_split, KFold, StratifiedKFold, GridSearchCV
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import StandardScaler, OneHotEncoder
from sklearn.pipeline import Pipeline
from sklearn.linear_model import LassoCV, Lasso
from sklearn.tree import DecisionTreeRegressor, DecisionTreeClassifier, plot_tree
from sklearn.ensemble import RandomForestRegressor, RandomForestClassifier
from sklearn.metrics import (
    mean_squared_error, r2_score,
    accuracy_score, precision_score, recall_score, f1_score,
    roc_auc_score, roc_curve, confusion_matrix
)

# -------------------- Configuration ----------------------------------------
DATA_PATH    = os.environ.get("CHURN_DATA_PATH", "internet_service_churn.csv")
ID_COLUMN    = "id"
BILL_TARGET  = "bill_avg"
CHURN_TARGET = "churn"
FACTOR_COLS  = ["is_tv_subscriber", "is_movie_package_subscriber", "churn"]
NUMERIC_COLS = ["subscription_age", "bill_avg", "remaining_contract",
                "service_failure_count", "download_avg", "upload_avg",
                "download_over_limit"]
COLUMN_ALIASES = {"reamining_contract": "remaining_contract"}  # public file typo
OUTPUT_DIR   = "reports/figures"
RANDOM_SEED  = 42
TRAIN_FRACTION = 0.50
CV_FOLDS     = 10
RF_TREES     = 500
TREE_MAX_ALPHAS = 25                    # pruning levels tried by CV
SIGNIF_LEVEL = 0.05
CLASS_THRESHOLD = 0.50
CONTRACT_MISSING_AS_ZERO = False        # True: no contract -> 0 instead of dropping the row
REDUCED_BILL_PREDICTORS  = None         # None -> significant terms of the full fit
REDUCED_CHURN_PREDICTORS = None
SHOW_WINDOWS = False                    # True to pop up figure windows
# ----------------------------------------------------------------------------

# ------------------ Palette (color-vision friendly) ------------------------
COLOR_NO   = "#3B5BA5"  # deep blue  — stayed
COLOR_YES  = "#E45756"  # coral      — churned
LINE_MED   = "#FFB000"  # gold       — median
LINE_MEAN  = "#6B7280"  # slate      — mean
LINE_MODE  = "#8E6AC8"  # purple     — mode
HEATMAP_CMAP = "PuOr"   # purple <-> orange
MODEL_COLORS = ["#3B5BA5", "#E45756", "#FFB000", "#8E6AC8", "#2A9D8F", "#6B7280", "#D97706"]
# ----------------------------------------------------------------------------

sns.set_theme(
    style="whitegrid",
    rc={
        "axes.titlesize": 13,
        "axes.labelsize": 11,
        "axes.titlepad": 10,
        "legend.frameon": False,
        "figure.dpi": 110,
        "axes.facecolor": "white",
        "grid.color": "#EEF2F5",
        "grid.linewidth": 0.8,
    }
)

# ---------------------- Formatters -----------------------------------------
PCT = FuncFormatter(lambda v, _: f"{v*100:.0f}%")  # [0,1] → "xx%"
def _fmt_thousands(x, _):
    try:
        return f"{int(x):,}"
    except (TypeError, ValueError, OverflowError):
        return str(x)
FMT_THOUSANDS = FuncFormatter(_fmt_thousands)

BILL_MODEL_LABELS = {
    "ols_full":    "Linear regression (full)",
    "ols_reduced": "Linear regression (reduced)",
    "lasso_min":   "LASSO (lambda.min)",
    "lasso_1se":   "LASSO (lambda.1se)",
    "tree_grown":  "Regression tree (grown)",
    "tree_pruned": "Regression tree (pruned)",
    "rf":          "Random forest",
}
CHURN_MODEL_LABELS = {
    "logit_full":    "Logistic regression (full)",
    "logit_reduced": "Logistic regression (reduced)",
    "tree":          "Classification tree (pruned)",
    "rf":            "Random forest",
}

# ============================== Small helpers ==============================

def make_output_folder() -> None:
    os.makedirs(OUTPUT_DIR, exist_ok=True)

def new_fig(figsize=(7, 4)):
    return plt.subplots(figsize=figsize, constrained_layout=True)

def save_and_show(fig: plt.Figure, filename: str) -> None:
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    out = os.path.join(OUTPUT_DIR, filename)
    fig.savefig(out, dpi=150, bbox_inches="tight")
    if SHOW_WINDOWS:
        plt.show()
    plt.close(fig)
    print(f"[SAVE] {out}")

def save_table(df: pd.DataFrame, path: str, index: bool = False) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    df.to_csv(path, index=index)
    print(f"[SAVE] {path}")

def save_text_report(text: str, filename: str) -> None:
    os.makedirs("reports", exist_ok=True)
    path = os.path.join("reports", filename)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    print(f"[SAVE] {path}")

def cap_series(s: pd.Series, q_low: float = 0.001, q_high: float = 0.99) -> pd.Series:
    lo, hi = s.quantile(q_low), s.quantile(q_high)
    return s.clip(lower=lo, upper=hi)

def _first_mode(s: pd.Series) -> float:
    m = s.mode(dropna=True)
    return float(m.iloc[0]) if not m.empty else np.nan

def add_stats_box(ax, s: pd.Series, round_to: int | None = None):
    s = pd.to_numeric(s, errors="coerce").dropna()
    s_for_mode = (s / round_to).round() * round_to if round_to else s
    mean_v   = float(s.mean()) if len(s) else np.nan
    median_v = float(s.median()) if len(s) else np.nan
    mode_v   = _first_mode(s_for_mode) if len(s_for_mode) else np.nan
    lines = []
    if np.isfinite(mean_v):   lines.append(f"Mean: {mean_v:,.1f}")
    if np.isfinite(median_v): lines.append(f"Median: {median_v:,.1f}")
    if np.isfinite(mode_v):   lines.append(f"Mode: {mode_v:,.1f}")
    if lines:
        ax.text(
            0.98, 0.98, "\n".join(lines),
            transform=ax.transAxes, ha="right", va="top", fontsize=9,
            bbox=dict(facecolor="white", edgecolor="#D1D5DB", boxstyle="round,pad=0.3")
        )
    return mean_v, median_v, mode_v

def as_numeric_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Factor columns back to 0/1 ints so tree models and correlations can use them."""
    return df.astype({c: int for c in FACTOR_COLS if c in df.columns})

def save_run_environment():
    os.makedirs("reports", exist_ok=True)
    path = os.path.join("reports", "run_environment.txt")
    import sklearn, pandas, numpy, matplotlib, seaborn, statsmodels
    with open(path, "w", encoding="utf-8") as f:
        f.write("=== Run Environment ===\n")
        f.write(f"Python        : {sys.version.split()[0]} ({platform.system()})\n")
        f.write(f"numpy         : {numpy.__version__}\n")
        f.write(f"pandas        : {pandas.__version__}\n")
        f.write(f"scikit-learn  : {sklearn.__version__}\n")
        f.write(f"statsmodels   : {statsmodels.__version__}\n")
        f.write(f"matplotlib    : {matplotlib.__version__}\n")
        f.write(f"seaborn       : {seaborn.__version__}\n")
    print(f"[SAVE] Environment -> {path}")

def write_min_requirements():
    os.makedirs("reports", exist_ok=True)
    import sklearn, pandas, numpy, matplotlib, seaborn, statsmodels, joblib
    with open("reports/requirements_min.txt", "w", encoding="utf-8") as f:
        f.write(f"numpy=={numpy.__version__}\n")
        f.write(f"pandas=={pandas.__version__}\n")
        f.write(f"scikit-learn=={sklearn.__version__}\n")
        f.write(f"statsmodels=={statsmodels.__version__}\n")
        f.write(f"matplotlib=={matplotlib.__version__}\n")
        f.write(f"seaborn=={seaborn.__version__}\n")
        f.write(f"joblib=={joblib.__version__}\n")
    print("[SAVE] Minimal requirements -> reports/requirements_min.txt")

# -------- Figures index + manifest, and key numbers -------------------

def _read_captions(cap_path: str) -> dict:
    caps = {}
    if os.path.exists(cap_path):
        with open(cap_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip().startswith("===") or ": " not in line:
                    continue
                k, v = line.strip().split(": ", 1)
                caps[k.strip()] = v.strip()
    return caps

def build_figures_index():
    """Create reports/figures/index.html + manifest.csv."""
    fig_dir = OUTPUT_DIR
    os.makedirs(fig_dir, exist_ok=True)

    captions = _read_captions(os.path.join("reports", "figure_captions.txt"))
    files = sorted(f for f in os.listdir(fig_dir) if f.lower().endswith(".png"))

    rows = []
    for fname in files:
        fpath = os.path.join(fig_dir, fname)
        try:
            arr = mpimg.imread(fpath)
            h, w = int(arr.shape[0]), int(arr.shape[1])
        except (OSError, ValueError, SyntaxError) as e:
            print(f"[WARN] Could not read {fpath}: {e}")
            w, h = None, None
        rows.append({
            "filename": fname,
            "caption": captions.get(fname, ""),
            "width_px": w,
            "height_px": h,
            "size_kb": round(os.path.getsize(fpath) / 1024, 1),
        })
    manifest_path = os.path.join(fig_dir, "manifest.csv")
    pd.DataFrame(rows, columns=["filename", "caption", "width_px", "height_px", "size_kb"]).to_csv(manifest_path, index=False)

    html = [
        "<!doctype html><meta charset='utf-8'>",
        "<title>Churn report — figures</title>",
        "<style>",
        "body{font-family:Arial, sans-serif;max-width:1100px;margin:24px auto;padding:0 12px;}",
        ".card{margin:16px 0;padding:12px 16px;border:1px solid #e5e7eb;border-radius:10px;}",
        "img{max-width:100%;height:auto;border:1px solid #e5e7eb;border-radius:8px;}",
        "h1{margin:0 0 10px 0} h3{margin:6px 0 8px;} p{margin:6px 0;}",
        "</style>",
        "<h1>Churn report — figures</h1>",
        "<p>EDA, bill-average models and churn models, in file-name order.</p>",
    ]
    for r in rows:
        html += [
            "<div class='card'>",
            f"<h3>{r['filename']}</h3>",
            f"<p>{r['caption']}</p>",
            f"<img src='{r['filename']}' alt='{r['filename']}'>",
            f"<p style='color:#6b7280;font-size:12px'>{r['width_px']}×{r['height_px']} px • {r['size_kb']} KB</p>",
            "</div>",
        ]
    index_path = os.path.join(fig_dir, "index.html")
    with open(index_path, "w", encoding="utf-8") as f:
        f.write("\n".join(html))

    print(f"[SAVE] Manifest   -> {manifest_path}")
    print(f"[SAVE] Index page -> {index_path}")

def build_key_numbers(df: pd.DataFrame, metrics: dict):
    """Save key summary numbers (data + models) to reports/key_numbers.csv."""
    total = len(df)
    churned = int(df[CHURN_TARGET].astype(int).sum()) if CHURN_TARGET in df.columns else np.nan
    out = pd.DataFrame([{
        "total_customers": total,
        "churned": churned,
        "churn_rate": churned / total if total else np.nan,
        "bill_avg_median": float(df[BILL_TARGET].median()) if BILL_TARGET in df.columns else np.nan,
        "bill_avg_mean": float(df[BILL_TARGET].mean()) if BILL_TARGET in df.columns else np.nan,
        "subscription_age_median": float(df["subscription_age"].median()) if "subscription_age" in df.columns else np.nan,
        **metrics
    }])
    save_table(out, os.path.join("reports", "key_numbers.csv"))

# ============================ Load & Clean data ============================

def load_csv(path: str | None = None) -> pd.DataFrame:
    path = path or DATA_PATH
    path_abs = os.path.abspath(path)
    if not os.path.exists(path):
        print("\n[ERROR] Can’t find the dataset.")
        print(f"Looked for: {path_abs}")
        print("➡ Put 'internet_service_churn.csv' next to this script or set CHURN_DATA_PATH.")
        raise FileNotFoundError(path_abs)
    df = pd.read_csv(path)
    df.columns = [c.strip() for c in df.columns]
    df = df.rename(columns=COLUMN_ALIASES)
    if "Unnamed: 0" in df.columns:
        df = df.drop(columns=["Unnamed: 0"])

    wanted = FACTOR_COLS + NUMERIC_COLS
    missing = [c for c in wanted if c not in df.columns]
    if missing:
        raise ValueError(f"Dataset is missing required columns: {missing}")
    extra = [c for c in df.columns if c not in wanted and c != ID_COLUMN]
    if extra:
        print(f"[WARN] Ignoring unexpected columns: {extra}")
    # identifier is not a predictor
    return df[[c for c in df.columns if c in wanted]]

def recode_factors(df: pd.DataFrame) -> pd.DataFrame:
    """0/1 flag columns -> categorical with levels [0, 1]. Anything else is an error."""
    out = df.copy()
    for c in FACTOR_COLS:
        if c not in out.columns:
            continue
        vals = pd.to_numeric(out[c], errors="coerce")
        bad = out[c].notna() & ~vals.isin([0, 1])
        if bad.any():
            seen = sorted(str(v) for v in out.loc[bad, c].unique())[:5]
            raise ValueError(f"Column '{c}' must hold 0/1 flags; found {seen}")
        codes = vals.fillna(-1).astype(int).to_numpy()
        out[c] = pd.Categorical.from_codes(codes, categories=[0, 1])
    return out

def clean_data(df: pd.DataFrame):
    """
    Keep complete cases, the way an R model frame does:
      - Replace +/-inf with NaN
      - Optionally treat missing remaining_contract as 0 (no contract)
      - Drop rows with any missing modeling value
    Duplicates are counted, not dropped: the identifier is gone, so equal
    rows can be different subscribers.
    Returns: (clean_df, summary_dict)
    """
    summary = {}
    rows_before = len(df)
    num_cols = df.select_dtypes(include=[np.number]).columns
    inf_count = int(np.isinf(df[num_cols].to_numpy(dtype=float)).sum()) if len(num_cols) else 0

    out = df.copy()
    out[num_cols] = out[num_cols].replace([np.inf, -np.inf], np.nan)
    summary["duplicate_rows"] = int(out.duplicated().sum())

    if CONTRACT_MISSING_AS_ZERO and "remaining_contract" in out.columns:
        summary["contract_filled_zero"] = int(out["remaining_contract"].isna().sum())
        out["remaining_contract"] = out["remaining_contract"].fillna(0.0)

    for c in out.columns:
        n_na = int(out[c].isna().sum())
        if n_na:
            summary[f"missing_{c}"] = n_na

    incomplete = int(out.isna().any(axis=1).sum())
    out = out.dropna()

    summary["incomplete_rows_dropped"] = incomplete
    summary["infinite_values_found"] = inf_count
    summary["rows_before"] = int(rows_before)
    summary["rows_after"]  = int(len(out))
    summary["rows_removed_total"] = int(rows_before - len(out))
    return out, summary

def save_cleaning_report(summary: dict):
    labels = {
        "rows_before": "Rows before cleaning",
        "rows_after": "Rows after cleaning",
        "rows_removed_total": "Total rows removed",
        "incomplete_rows_dropped": "Incomplete rows dropped",
        "infinite_values_found": "Infinite values found",
        "duplicate_rows": "Duplicate rows (kept)",
        "contract_filled_zero": "No-contract rows set to 0",
    }
    lines = ["=== Data Cleaning Summary ===\n"]
    for key, label in labels.items():
        if key in summary:
            lines.append(f"{label:<28}: {summary[key]:,}\n")
    for key, v in summary.items():
        if key.startswith("missing_"):
            lines.append(f"{'Missing ' + key[len('missing_'):]:<28}: {v:,}\n")
    save_text_report("".join(lines), "cleaning_report.txt")

def split_half(df: pd.DataFrame, train_fraction: float | None = None, seed: int | None = None):
    """Random sample of row indices into (train, test). Disjoint, covering, seed-deterministic."""
    frac = TRAIN_FRACTION if train_fraction is None else train_fraction
    seed = RANDOM_SEED if seed is None else seed
    n_train = int(np.floor(len(df) * frac))
    if n_train < 1 or n_train >= len(df):
        raise ValueError(f"Cannot split {len(df)} rows with train fraction {frac}.")
    train_idx, test_idx = train_test_split(df.index, train_size=n_train, random_state=seed, shuffle=True)
    return pd.Index(train_idx).sort_values(), pd.Index(test_idx).sort_values()

def write_figure_captions():
    captions = {
        "churn_counts.png": "Class balance: customers who stayed vs churned.",
        "bill_avg_distribution.png": "Average bill (capped at the 99th percentile); mean/median/mode marked.",
        "bill_avg_by_churn_box.png": "Average bill for stayers vs churners.",
        "churn_rate_by_flags.png": "Churn rate with and without TV / movie package subscriptions.",
        "churn_by_subscription_age.png": "Subscription-age bins: customers and churn rate.",
        "churn_by_remaining_contract.png": "Remaining-contract bins: customers and churn rate.",
        "churn_by_service_failures.png": "Service failures: customers and churn rate.",
        "churn_by_download_avg.png": "Download-average deciles: customers and churn rate.",
        "correlation_heatmap.png": "Correlation heatmap (numeric features, flags as 0/1).",
        "lasso_cv_curve.png": "LASSO cross-validation error vs penalty; lambda.min and lambda.1se marked.",
        "tree_bill_pruned.png": "Pruned regression tree for average bill.",
        "rf_bill_importance.png": "Random forest variable importance — average bill.",
        "bill_mse_by_model.png": "Test-set MSE by model — average bill.",
        "cm_logit_full.png": "Confusion matrix — logistic regression (full).",
        "cm_logit_reduced.png": "Confusion matrix — logistic regression (reduced).",
        "cm_tree.png": "Confusion matrix — classification tree.",
        "cm_rf.png": "Confusion matrix — random forest.",
        "roc_churn_models.png": "ROC curves of the churn models; diagonal is random.",
        "rf_churn_importance.png": "Random forest variable importance — churn.",
    }
    lines = ["=== Figure Captions ===\n"] + [f"{k}: {v}\n" for k, v in captions.items()]
    save_text_report("".join(lines), "figure_captions.txt")

# ============================== Diagnostic EDA =============================

def missingness_table(df: pd.DataFrame) -> pd.DataFrame:
    miss = df.isna().sum().rename("missing")
    pct = (df.isna().mean()*100).round(2).rename("missing_pct")
    out = pd.concat([miss, pct], axis=1).sort_values("missing_pct", ascending=False)
    save_table(out, "reports/missingness.csv", index=True)
    return out

def summary_stats_table(df: pd.DataFrame) -> pd.DataFrame:
    out = as_numeric_frame(df).describe().T
    save_table(out, "reports/summary_stats.csv", index=True)
    return out

def high_corr_report(df: pd.DataFrame, thr: float = 0.80) -> pd.DataFrame:
    num = as_numeric_frame(df).select_dtypes(include=[np.number])
    pairs = []
    if num.shape[1] >= 2:
        corr = num.corr()
        cols = corr.columns
        for i in range(len(cols)):
            for j in range(i+1, len(cols)):
                r = corr.iloc[i, j]
                if abs(r) >= thr:
                    pairs.append((cols[i], cols[j], float(r)))
    out = pd.DataFrame(pairs, columns=["feature_1", "feature_2", "corr"])
    save_table(out, "reports/high_corr_pairs.csv")
    return out

def vif_table(df: pd.DataFrame) -> pd.DataFrame:
    """Variance inflation factors of the numeric predictors (targets excluded)."""
    X = as_numeric_frame(df).drop(columns=[BILL_TARGET, CHURN_TARGET], errors="ignore")
    X = X.select_dtypes(include=[np.number]).astype(float)
    X = X.loc[:, X.std() > 0]
    exog = sm.add_constant(X, has_constant="add").to_numpy()
    vifs = [(col, float(variance_inflation_factor(exog, i + 1))) for i, col in enumerate(X.columns)]
    out = pd.DataFrame(vifs, columns=["feature", "VIF"]).sort_values("VIF", ascending=False)
    save_table(out, "reports/vif.csv")
    return out

def risk_by_bins_plot(df: pd.DataFrame, col: str, title: str, fname: str, bins=None, q: int = 10):
    if col not in df.columns or CHURN_TARGET not in df.columns:
        return
    s = pd.to_numeric(df[col], errors="coerce")
    tmp = pd.DataFrame({col: s, CHURN_TARGET: df[CHURN_TARGET].astype(int)}).dropna()
    if tmp[col].nunique() < 2:
        return
    if bins is None:
        tmp["bin"] = pd.qcut(tmp[col], q=q, duplicates="drop")
    else:
        tmp["bin"] = pd.cut(tmp[col], bins=bins, include_lowest=True)
    grp = tmp.groupby("bin", observed=False)[CHURN_TARGET].agg(churn="mean", customers="count").reset_index()
    grp["label"] = grp["bin"].astype(str)
    fig, ax1 = new_fig(figsize=(8.5, 4.2))
    ax1.bar(grp["label"], grp["customers"], color=COLOR_NO)
    ax1.set_ylabel("Number of customers"); ax1.yaxis.set_major_formatter(FMT_THOUSANDS)
    ax1.tick_params(axis="x", labelrotation=45)
    for lbl in ax1.get_xticklabels():
        lbl.set_ha("right")
    ax2 = ax1.twinx()
    ax2.plot(grp["label"], grp["churn"], marker="o", linewidth=2, color=COLOR_YES)
    ax2.set_ylabel("Churn rate"); ax2.yaxis.set_major_formatter(PCT)
    fig.suptitle(title)
    save_and_show(fig, fname)

# ================================ EDA ======================================

def make_eda_charts(df: pd.DataFrame) -> None:
    make_output_folder()
    plt.close("all")
    print("\n[EDA] Columns:", list(df.columns))

    summary_stats_table(df)
    high_corr_report(df, thr=0.80)
    vif_table(df)

    churn = df[CHURN_TARGET].astype(int)

    # 1) Target balance (counts + %)
    counts = churn.value_counts().reindex([0, 1], fill_value=0)
    total  = int(counts.sum())
    data = pd.DataFrame({"label": ["Stayed (0)", "Churned (1)"], "n": counts.values})
    fig, ax = new_fig(figsize=(6.2, 4))
    sns.barplot(
        data=data, x="label", y="n", hue="label",
        palette={"Stayed (0)": COLOR_NO, "Churned (1)": COLOR_YES}, dodge=False, ax=ax
    )
    leg = ax.get_legend()
    if leg is not None:
        leg.remove()
    ax.set_title("Customers by churn status")
    ax.set_xlabel(""); ax.set_ylabel("Number of customers")
    ax.yaxis.set_major_formatter(FMT_THOUSANDS)
    for i, v in enumerate(counts.values):
        ax.text(i, v, f"{v:,}\n({v/total:.1%})", ha="center", va="bottom", fontsize=9)
    ax.margins(y=0.10)
    save_and_show(fig, "churn_counts.png")
    print(f"[EDA] Churned: {int(counts[1]):,} of {total:,} = {counts[1]/total:.1%}")

    # 2) bill_avg distribution + mean/median/mode
    bill = cap_series(df[BILL_TARGET].astype(float))
    fig, ax = new_fig()
    sns.histplot(bill, bins=50, kde=True, ax=ax, color=COLOR_NO)
    ax.set_title("Average bill — distribution (≤ 99th pct)")
    ax.set_xlabel("bill_avg"); ax.set_ylabel("Number of customers")
    ax.yaxis.set_major_formatter(FMT_THOUSANDS)
    mean_v, median_v, mode_v = add_stats_box(ax, bill)
    if np.isfinite(median_v): ax.axvline(median_v, linestyle="--", linewidth=2, color=LINE_MED,  label=f"Median {median_v:,.1f}")
    if np.isfinite(mean_v):   ax.axvline(mean_v,   linestyle=":",  linewidth=2, color=LINE_MEAN, label=f"Mean {mean_v:,.1f}")
    if np.isfinite(mode_v):   ax.axvline(mode_v,   linestyle="-.", linewidth=2, color=LINE_MODE, label=f"Mode {mode_v:,.1f}")
    ax.legend(loc="center right")
    save_and_show(fig, "bill_avg_distribution.png")

    # 3) bill_avg by churn
    box = pd.DataFrame({BILL_TARGET: bill, CHURN_TARGET: churn.astype(str)})
    n0 = int((box[CHURN_TARGET] == "0").sum()); n1 = int((box[CHURN_TARGET] == "1").sum())
    fig, ax = new_fig()
    sns.boxplot(
        data=box, x=CHURN_TARGET, y=BILL_TARGET,
        order=["0", "1"], hue=CHURN_TARGET, hue_order=["0", "1"],
        palette={"0": COLOR_NO, "1": COLOR_YES},
        dodge=False, showfliers=False, ax=ax
    )
    leg = ax.get_legend()
    if leg is not None:
        leg.remove()
    ax.set_title("Average bill by churn status")
    ax.set_xlabel("Churn"); ax.set_ylabel("bill_avg")
    ax.set_xticks([0, 1]); ax.set_xticklabels([f"Stayed (n={n0:,})", f"Churned (n={n1:,})"])
    save_and_show(fig, "bill_avg_by_churn_box.png")

    # 4) Churn rate by subscription flags
    rows = []
    for col, name in [("is_tv_subscriber", "TV"), ("is_movie_package_subscriber", "Movie package")]:
        g = (pd.DataFrame({"flag": df[col].astype(int), "churn": churn})
             .groupby("flag")["churn"].agg(rate="mean", customers="count"))
        for flag, r in g.iterrows():
            rows.append({"group": f"{name}: {'yes' if flag == 1 else 'no'}",
                         "rate": float(r["rate"]), "customers": int(r["customers"])})
    flag_tbl = pd.DataFrame(rows)
    fig, ax = new_fig(figsize=(7.5, 4))
    sns.barplot(data=flag_tbl, x="group", y="rate", ax=ax, color=COLOR_YES)
    ax.set_title("Churn rate by subscription flags")
    ax.set_xlabel(""); ax.set_ylabel("Churn rate"); ax.yaxis.set_major_formatter(PCT)
    for i, r in flag_tbl.iterrows():
        ax.text(i, r["rate"], f"{r['rate']*100:.1f}%  |  {r['customers']:,}", ha="center", va="bottom", fontsize=9, color="#374151")
    save_and_show(fig, "churn_rate_by_flags.png")
    print("\n[Table] Churn by subscription flags:")
    print(flag_tbl)

    # 5) Churn rate by bins (monotonicity check)
    risk_by_bins_plot(df, "subscription_age", "Subscription age (years) — customers & churn rate",
                      "churn_by_subscription_age.png", bins=[0, 0.5, 1, 2, 3, 5, 8, 15])
    risk_by_bins_plot(df, "remaining_contract", "Remaining contract (years) — customers & churn rate",
                      "churn_by_remaining_contract.png", bins=[0, 0.01, 0.5, 1.0, 1.5, 2.0, 3.0])
    if "service_failure_count" in df.columns:
        sf = pd.DataFrame({
            "bucket": df["service_failure_count"].clip(0, 4).astype(int).astype(str).replace({"4": "4+"}),
            "churn": churn
        })
        sf_tbl = (sf.groupby("bucket")["churn"].agg(rate="mean", customers="count")
                    .reindex(["0", "1", "2", "3", "4+"]).dropna().rename_axis("bucket").reset_index())
        fig, ax1 = new_fig(figsize=(7, 4))
        ax1.bar(sf_tbl["bucket"], sf_tbl["customers"], color=COLOR_NO)
        ax1.set_xlabel("Service failures"); ax1.set_ylabel("Number of customers")
        ax1.yaxis.set_major_formatter(FMT_THOUSANDS)
        ax2 = ax1.twinx()
        ax2.plot(sf_tbl["bucket"], sf_tbl["rate"], marker="o", linewidth=2, color=COLOR_YES)
        ax2.set_ylabel("Churn rate"); ax2.yaxis.set_major_formatter(PCT)
        fig.suptitle("Service failures — customers & churn rate")
        save_and_show(fig, "churn_by_service_failures.png")
    risk_by_bins_plot(df, "download_avg", "Download average deciles — customers & churn rate",
                      "churn_by_download_avg.png", q=10)

    # 6) Correlation heatmap
    num_df = as_numeric_frame(df).select_dtypes(include=[np.number])
    if num_df.shape[1] >= 2:
        corr = num_df.corr()
        mask = np.triu(np.ones_like(corr, dtype=bool))
        labels = corr.round(2).astype(str).where(np.abs(corr) >= 0.10, "").mask(mask, "")
        fig, ax = new_fig(figsize=(9, 7))
        sns.heatmap(
            corr, mask=mask, cmap=HEATMAP_CMAP, center=0, vmin=-1, vmax=1, square=True,
            linewidths=0.5, linecolor="#E6ECF2", cbar_kws={"shrink": 0.8},
            annot=labels, fmt="", annot_kws={"fontsize": 8, "fontweight": "bold", "color": "#1F2937"},
            ax=ax
        )
        ax.set_title("Correlation heatmap (flags as 0/1)")
        save_and_show(fig, "correlation_heatmap.png")

# ======================= Shared modeling helpers ===========================

def predictors_for(df: pd.DataFrame, target: str) -> list[str]:
    return [c for c in df.columns if c != target]

def formula_for(target: str, predictors) -> str:
    rhs = " + ".join(predictors) if len(predictors) else "1"
    return f"{target} ~ {rhs}"

def _term_column(term: str, predictors) -> str | None:
    # "is_tv_subscriber[T.1]" / "C(x)[T.1]" -> source column
    base = term.split("[", 1)[0]
    if base.startswith("C(") and base.endswith(")"):
        base = base[2:-1]
    return base if base in predictors else None

def significant_predictors(fit, predictors, alpha: float | None = None) -> list[str]:
    """Columns with at least one fitted term below the significance level, in predictor order."""
    alpha = SIGNIF_LEVEL if alpha is None else alpha
    keep = set()
    for term, p in fit.pvalues.items():
        if term == "Intercept":
            continue
        col = _term_column(term, predictors)
        if col is not None and np.isfinite(p) and p < alpha:
            keep.add(col)
    return [c for c in predictors if c in keep]

def _reduced_predictors(configured, fit, predictors) -> list[str]:
    if configured is None:
        return significant_predictors(fit, predictors)
    unknown = [c for c in configured if c not in predictors]
    if unknown:
        raise ValueError(f"Reduced model names unknown predictors: {unknown}")
    return list(configured)

def coef_table(fit) -> pd.DataFrame:
    return pd.DataFrame({
        "term": fit.params.index,
        "estimate": fit.params.values,
        "std_err": fit.bse.values,
        "statistic": fit.tvalues.values,
        "p_value": fit.pvalues.values,
    })

def build_prep(X: pd.DataFrame) -> ColumnTransformer:
    cat_cols = [c for c in X.columns if c in FACTOR_COLS]
    num_cols = [c for c in X.columns if c not in cat_cols]
    return ColumnTransformer(
        [("num", StandardScaler(), num_cols),
         ("cat", OneHotEncoder(drop="if_binary", sparse_output=False), cat_cols)],
        verbose_feature_names_out=False,
    )

def prune_tree_cv(tree, X, y, scoring: str, cv, max_alphas: int | None = None):
    """
    Cost-complexity pruning with the level picked by K-fold CV.

    Candidate alphas come from the pruning path of the grown tree; long paths
    are thinned to `max_alphas` quantiles. Returns (pruned_tree, alpha, search).
    """
    max_alphas = TREE_MAX_ALPHAS if max_alphas is None else max_alphas
    path = clone(tree).cost_complexity_pruning_path(X, y)
    alphas = np.unique(np.clip(path.ccp_alphas, 0.0, None))
    if len(alphas) > max_alphas:
        alphas = np.unique(np.quantile(alphas, np.linspace(0.0, 1.0, max_alphas)))
    search = GridSearchCV(clone(tree), {"ccp_alpha": [float(a) for a in alphas]},
                          scoring=scoring, cv=cv, n_jobs=-1)
    search.fit(X, y)
    return search.best_estimator_, float(search.best_params_["ccp_alpha"]), search

def importance_plot(model, feat_names, title, fname, top: int = 12) -> pd.DataFrame:
    imp = (pd.DataFrame({"feature": list(feat_names), "importance": model.feature_importances_})
             .sort_values("importance", ascending=False).head(top))
    fig, ax = new_fig(figsize=(8, 5))
    sns.barplot(data=imp, x="importance", y="feature", ax=ax, color=COLOR_NO)
    ax.set_title(title); ax.set_xlabel("Mean decrease in impurity")
    save_and_show(fig, fname)
    return imp

def save_estimators(estimators: dict) -> None:
    try:
        from joblib import dump
        os.makedirs("artifacts", exist_ok=True)
        for name, est in estimators.items():
            path = f"artifacts/{name}.joblib"
            dump(est, path)
            print(f"[SAVE] {path}")
    except (OSError, ImportError) as e:
        print("[WARN] Could not save joblib artifacts:", e)

# ====================== Bill average (regression) ==========================

def fit_ols(train: pd.DataFrame, target: str, predictors):
    return smf.ols(formula_for(target, predictors), data=train).fit()

def lambda_one_se(lasso: LassoCV) -> float:
    """Largest penalty whose mean CV error is within one standard error of the minimum."""
    path = np.asarray(lasso.mse_path_)
    mean = path.mean(axis=1)
    se = path.std(axis=1, ddof=1) / np.sqrt(path.shape[1])
    i_min = int(np.argmin(mean))
    ok = np.where(mean <= mean[i_min] + se[i_min])[0]
    return float(np.asarray(lasso.alphas_)[ok].max())

def fit_lasso(X: pd.DataFrame, y, cv_folds: int | None = None) -> Pipeline:
    folds = CV_FOLDS if cv_folds is None else cv_folds
    cv = KFold(n_splits=folds, shuffle=True, random_state=RANDOM_SEED)
    pipe = Pipeline([("prep", build_prep(X)),
                     ("lasso", LassoCV(cv=cv, max_iter=10000))])
    return pipe.fit(X, y)

def refit_lasso(X: pd.DataFrame, y, alpha: float) -> Pipeline:
    pipe = Pipeline([("prep", build_prep(X)),
                     ("lasso", Lasso(alpha=alpha, max_iter=10000))])
    return pipe.fit(X, y)

def lasso_cv_plot(lasso: LassoCV, lam_min: float, lam_1se: float):
    path = np.asarray(lasso.mse_path_)
    mean = path.mean(axis=1)
    se = path.std(axis=1, ddof=1) / np.sqrt(path.shape[1])
    log_a = np.log(np.asarray(lasso.alphas_))
    fig, ax = new_fig(figsize=(7, 4.2))
    ax.errorbar(log_a, mean, yerr=se, fmt="o", markersize=3, color=COLOR_YES, ecolor="#9CA3AF", capsize=2)
    ax.axvline(np.log(lam_min), linestyle="--", color=LINE_MEAN, label=f"lambda.min = {lam_min:.4g}")
    ax.axvline(np.log(lam_1se), linestyle=":",  color=LINE_MODE, label=f"lambda.1se = {lam_1se:.4g}")
    ax.set_xlabel("log(lambda)"); ax.set_ylabel("Mean CV squared error")
    ax.set_title("LASSO — cross-validated error"); ax.legend()
    save_and_show(fig, "lasso_cv_curve.png")

def run_bill_models(df: pd.DataFrame, train_idx, test_idx) -> dict:
    assert BILL_TARGET in df.columns, f"Missing target column '{BILL_TARGET}'."
    train, test = df.loc[train_idx], df.loc[test_idx]
    predictors = predictors_for(df, BILL_TARGET)
    y_tr = train[BILL_TARGET].to_numpy(dtype=float)
    y_te = test[BILL_TARGET].to_numpy(dtype=float)
    preds = {}

    # Linear regression — full, then significant terms only
    ols_full = fit_ols(train, BILL_TARGET, predictors)
    save_text_report(ols_full.summary().as_text(), "ols_full_summary.txt")
    save_table(coef_table(ols_full), "exports/coef_ols_full.csv")
    reduced = _reduced_predictors(REDUCED_BILL_PREDICTORS, ols_full, predictors)
    ols_red = fit_ols(train, BILL_TARGET, reduced)
    save_text_report(ols_red.summary().as_text(), "ols_reduced_summary.txt")
    save_table(coef_table(ols_red), "exports/coef_ols_reduced.csv")
    dropped = [c for c in predictors if c not in reduced]
    print(f"\n[OLS] Full R²={ols_full.rsquared:.4f} | reduced R²={ols_red.rsquared:.4f}")
    print(f"[OLS] Reduced model keeps {len(reduced)}/{len(predictors)} predictors; dropped: {dropped or 'none'}")
    preds["ols_full"] = np.asarray(ols_full.predict(test), dtype=float)
    preds["ols_reduced"] = np.asarray(ols_red.predict(test), dtype=float)

    # LASSO
    X_tr, X_te = train[predictors], test[predictors]
    lasso = fit_lasso(as_numeric_frame(X_tr), y_tr)
    lcv = lasso.named_steps["lasso"]
    lam_min, lam_1se = float(lcv.alpha_), lambda_one_se(lcv)
    coefs = pd.Series(lcv.coef_, index=lasso.named_steps["prep"].get_feature_names_out())
    zeroed = coefs.index[coefs == 0].tolist()
    save_table(coefs.rename("coef").rename_axis("feature").reset_index(), "exports/coef_lasso.csv")
    print(f"[LASSO] lambda.min={lam_min:.5g}  lambda.1se={lam_1se:.5g}  zeroed: {zeroed or 'none'}")
    print(coefs.round(4).to_string())
    lasso_1se = refit_lasso(as_numeric_frame(X_tr), y_tr, lam_1se)
    preds["lasso_min"] = lasso.predict(as_numeric_frame(X_te))
    preds["lasso_1se"] = lasso_1se.predict(as_numeric_frame(X_te))
    lasso_cv_plot(lcv, lam_min, lam_1se)

    # Regression tree — grow, then CV-prune
    Xn_tr, Xn_te = as_numeric_frame(X_tr), as_numeric_frame(X_te)
    grown = DecisionTreeRegressor(min_samples_split=10, min_samples_leaf=5, random_state=RANDOM_SEED)
    grown.fit(Xn_tr, y_tr)
    cv = KFold(n_splits=CV_FOLDS, shuffle=True, random_state=RANDOM_SEED)
    pruned, alpha, _ = prune_tree_cv(grown, Xn_tr, y_tr, "neg_mean_squared_error", cv)
    print(f"[TREE] Grown: {grown.get_n_leaves()} leaves | pruned (alpha={alpha:.4g}): {pruned.get_n_leaves()} leaves")
    preds["tree_grown"] = grown.predict(Xn_te)
    preds["tree_pruned"] = pruned.predict(Xn_te)
    fig, ax = new_fig(figsize=(12, 6))
    plot_tree(pruned, feature_names=list(Xn_tr.columns), filled=True, impurity=False,
              max_depth=None if pruned.get_n_leaves() <= 16 else 3, fontsize=7, ax=ax)
    ax.set_title(f"Pruned regression tree — bill_avg ({pruned.get_n_leaves()} leaves)")
    save_and_show(fig, "tree_bill_pruned.png")

    # Random forest
    rf = RandomForestRegressor(n_estimators=RF_TREES, max_features=1/3, oob_score=True,
                               n_jobs=-1, random_state=RANDOM_SEED)
    rf.fit(Xn_tr, y_tr)
    oob_mse = float(mean_squared_error(y_tr, rf.oob_prediction_))
    print(f"[RF] {RF_TREES} trees, mtry=p/3 | OOB MSE={oob_mse:,.3f} | OOB R²={rf.oob_score_:.3f}")
    preds["rf"] = rf.predict(Xn_te)
    importance_plot(rf, Xn_tr.columns, "Random forest importance — bill_avg", "rf_bill_importance.png")

    # Test-set MSE table
    rows = []
    for key, label in BILL_MODEL_LABELS.items():
        mse = float(mean_squared_error(y_te, preds[key]))
        rows.append({"model": label, "key": key, "test_mse": mse,
                     "test_rmse": float(np.sqrt(mse)), "test_r2": float(r2_score(y_te, preds[key]))})
    mse_tbl = pd.DataFrame(rows)
    print("\n=== bill_avg — test-set MSE ===")
    print(mse_tbl[["model", "test_mse", "test_rmse", "test_r2"]].to_string(index=False, float_format=lambda v: f"{v:,.4f}"))
    save_table(mse_tbl, "exports/bill_avg_mse.csv")
    save_table(pd.DataFrame({"y_true": y_te, **{f"pred_{k}": v for k, v in preds.items()}}),
               "exports/bill_avg_predictions.csv")

    fig, ax = new_fig(figsize=(8, 4.2))
    order = mse_tbl.sort_values("test_mse")
    ax.barh(order["model"], order["test_mse"], color=MODEL_COLORS[:len(order)])
    ax.invert_yaxis()
    ax.set_xlabel("Test MSE"); ax.set_title("bill_avg — test-set MSE by model")
    for i, v in enumerate(order["test_mse"]):
        ax.text(v, i, f" {v:,.1f}", va="center", fontsize=9, color="#374151")
    save_and_show(fig, "bill_mse_by_model.png")

    save_estimators({"bill_lasso": lasso, "bill_tree_pruned": pruned, "bill_rf": rf})

    best = mse_tbl.loc[mse_tbl["test_mse"].idxmin()]
    return {
        **{f"mse_{k}": float(v) for k, v in zip(mse_tbl["key"], mse_tbl["test_mse"])},
        "best_bill_model": str(best["model"]),
        "lambda_min": lam_min,
        "lambda_1se": lam_1se,
        "lasso_zeroed": ";".join(zeroed),
        "bill_reduced_predictors": ";".join(reduced),
        "tree_bill_leaves_grown": int(grown.get_n_leaves()),
        "tree_bill_leaves_pruned": int(pruned.get_n_leaves()),
        "rf_bill_oob_mse": oob_mse,
    }

# ========================= Churn (classification) ==========================

def fit_logit(train: pd.DataFrame, target: str, predictors):
    data = train.assign(**{target: train[target].astype(int)})
    return smf.logit(formula_for(target, predictors), data=data).fit(disp=0, maxiter=200)

def confusion_table(y_true, y_pred) -> pd.DataFrame:
    """Rows = actual, columns = predicted, both levels always present."""
    cm = confusion_matrix(np.asarray(y_true).astype(int), np.asarray(y_pred).astype(int), labels=[0, 1])
    return pd.DataFrame(cm, index=pd.Index([0, 1], name="actual"),
                        columns=pd.Index([0, 1], name="predicted"))

def classification_metrics(y_true, y_prob, threshold: float | None = None) -> dict:
    thr = CLASS_THRESHOLD if threshold is None else threshold
    y_true = np.asarray(y_true).astype(int)
    y_prob = np.asarray(y_prob, dtype=float)
    y_hat  = (y_prob >= thr).astype(int)
    (tn, fp), (fn, tp) = confusion_table(y_true, y_hat).to_numpy()
    acc = accuracy_score(y_true, y_hat)
    auc = roc_auc_score(y_true, y_prob) if len(np.unique(y_true)) == 2 else np.nan
    return {
        "threshold": float(thr),
        "accuracy": float(acc), "error_rate": float(1 - acc),
        "precision": float(precision_score(y_true, y_hat, zero_division=0)),
        "recall": float(recall_score(y_true, y_hat, zero_division=0)),
        "f1": float(f1_score(y_true, y_hat, zero_division=0)),
        "AUC": float(auc),
        "TN": int(tn), "FP": int(fp), "FN": int(fn), "TP": int(tp),
    }

def nice_confusion(y_true, y_pred, title, fname):
    cm = confusion_table(y_true, y_pred)
    df_cm = pd.DataFrame(cm.to_numpy(),
                         index=["Actual: stayed", "Actual: churned"],
                         columns=["Pred: stayed", "Pred: churned"])
    fig, ax = new_fig(figsize=(6, 5))
    sns.heatmap(df_cm, annot=True, fmt="d", cmap="Purples", cbar=False, ax=ax)
    ax.set_title(title)
    ax.text(0.0, -0.25,
            "Rows = actual, Columns = predicted. FP = predicted churn but stayed. FN = missed churner.",
            transform=ax.transAxes, ha="left", va="top", fontsize=9, color="#374151")
    save_and_show(fig, fname)
    (tn, fp), (fn, tp) = cm.to_numpy()
    print(f"[EXPLAIN] {title}: TN={tn:,}, FP={fp:,}, FN={fn:,}, TP={tp:,}")

def print_classification_block(name: str, m: dict) -> None:
    print(f"\n=== {name} (holdout) ===")
    print(f"Accuracy : {m['accuracy']:.4f}   (error rate {m['error_rate']:.4f})")
    print(f"Precision: {m['precision']:.4f}")
    print(f"Recall   : {m['recall']:.4f}")
    print(f"F1-score : {m['f1']:.4f}")
    print(f"ROC AUC  : {m['AUC']:.4f}")

def run_churn_models(df: pd.DataFrame, train_idx, test_idx) -> dict:
    assert CHURN_TARGET in df.columns, f"Missing target column '{CHURN_TARGET}'."
    train, test = df.loc[train_idx], df.loc[test_idx]
    predictors = predictors_for(df, CHURN_TARGET)
    y_tr = train[CHURN_TARGET].astype(int).to_numpy()
    y_te = test[CHURN_TARGET].astype(int).to_numpy()
    probs = {}

    # Logistic regression — full, then significant terms only
    logit_full = fit_logit(train, CHURN_TARGET, predictors)
    save_text_report(logit_full.summary().as_text(), "logit_full_summary.txt")
    save_table(coef_table(logit_full), "exports/coef_logit_full.csv")
    reduced = _reduced_predictors(REDUCED_CHURN_PREDICTORS, logit_full, predictors)
    logit_red = fit_logit(train, CHURN_TARGET, reduced)
    save_text_report(logit_red.summary().as_text(), "logit_reduced_summary.txt")
    save_table(coef_table(logit_red), "exports/coef_logit_reduced.csv")
    print(f"\n[LOGIT] Full pseudo-R²={logit_full.prsquared:.4f} | reduced keeps {len(reduced)}/{len(predictors)} predictors")
    probs["logit_full"] = np.asarray(logit_full.predict(test), dtype=float)
    probs["logit_reduced"] = np.asarray(logit_red.predict(test), dtype=float)

    # Classification tree — grow, then CV-prune on accuracy
    Xn_tr, Xn_te = as_numeric_frame(train[predictors]), as_numeric_frame(test[predictors])
    grown = DecisionTreeClassifier(min_samples_split=10, min_samples_leaf=5, random_state=RANDOM_SEED)
    grown.fit(Xn_tr, y_tr)
    cv = StratifiedKFold(n_splits=CV_FOLDS, shuffle=True, random_state=RANDOM_SEED)
    tree, alpha, _ = prune_tree_cv(grown, Xn_tr, y_tr, "accuracy", cv)
    print(f"[TREE] Grown: {grown.get_n_leaves()} leaves | pruned (alpha={alpha:.4g}): {tree.get_n_leaves()} leaves")
    probs["tree"] = tree.predict_proba(Xn_te)[:, 1]

    # Random forest
    rf = RandomForestClassifier(n_estimators=RF_TREES, max_features="sqrt", oob_score=True,
                                n_jobs=-1, random_state=RANDOM_SEED)
    rf.fit(Xn_tr, y_tr)
    print(f"[RF] {RF_TREES} trees, mtry=sqrt(p) | OOB error rate={1 - rf.oob_score_:.4f}")
    probs["rf"] = rf.predict_proba(Xn_te)[:, 1]
    importance_plot(rf, Xn_tr.columns, "Random forest importance — churn", "rf_churn_importance.png")

    # Confusion tables + metrics
    rows = []
    for key, label in CHURN_MODEL_LABELS.items():
        m = classification_metrics(y_te, probs[key])
        print_classification_block(label, m)
        print(confusion_table(y_te, (probs[key] >= m["threshold"]).astype(int)))
        nice_confusion(y_te, (probs[key] >= m["threshold"]).astype(int),
                       f"Confusion matrix — {label}", f"cm_{key}.png")
        rows.append({"model": label, "key": key, **m})
    summary_df = pd.DataFrame(rows)
    save_table(summary_df, "exports/churn_eval_summary.csv")

    fig, ax = new_fig(figsize=(6, 5))
    for (key, label), color in zip(CHURN_MODEL_LABELS.items(), MODEL_COLORS):
        fpr, tpr, _ = roc_curve(y_te, probs[key])
        auc = summary_df.loc[summary_df["key"] == key, "AUC"].iloc[0]
        ax.plot(fpr, tpr, color=color, label=f"{label} (AUC={auc:.3f})")
    ax.plot([0, 1], [0, 1], linestyle="--", color="#9CA3AF")
    ax.set_xlabel("False positive rate"); ax.set_ylabel("True positive rate")
    ax.set_title("ROC curves — churn models"); ax.legend(fontsize=8)
    save_and_show(fig, "roc_churn_models.png")

    # Exports for exec_summary.py / merge_features.py (same row order)
    save_table(pd.DataFrame({"y_true": y_te, **{f"proba_{k}": v for k, v in probs.items()}}),
               "exports/churn_predictions.csv")
    save_table(test[predictors].pipe(as_numeric_frame), "exports/holdout_features.csv")

    save_estimators({"churn_tree_pruned": tree, "churn_rf": rf})

    best = summary_df.loc[summary_df["accuracy"].idxmax()]
    out = {"best_churn_model": str(best["model"]),
           "churn_reduced_predictors": ";".join(reduced),
           "tree_churn_leaves_pruned": int(tree.get_n_leaves()),
           "rf_churn_oob_error": float(1 - rf.oob_score_)}
    for _, r in summary_df.iterrows():
        for metric in ["accuracy", "error_rate", "AUC", "precision", "recall"]:
            out[f"{metric.lower()}_{r['key']}"] = float(r[metric])
    return out

# ============================== Model card =================================

def write_model_card(df: pd.DataFrame, metrics: dict):
    total = len(df)
    churned = int(df[CHURN_TARGET].astype(int).sum())
    val = lambda k: metrics.get(k, float("nan"))

    lines = []
    lines.append("# Model Card: Internet Service Churn & Bill Average\n")
    lines.append("## 1. Intended Use\nExplain and predict two subscriber outcomes: the average bill (`bill_avg`) and whether the customer churns. Analysis report, not a production scorer.\n")
    lines.append("## 2. Data\n")
    lines.append(f"- Complete-case customers: **{total:,}**; churn rate: **{churned/total:.1%}**\n" if total else "- No rows after cleaning.\n")
    lines.append("- Predictors: TV / movie package flags, subscription age, remaining contract, service failures, download/upload averages, download over limit. The `id` column is dropped.\n")
    lines.append(f"## 3. Validation\nRandom {TRAIN_FRACTION:.0%} / {1-TRAIN_FRACTION:.0%} split of rows (seed {RANDOM_SEED}); {CV_FOLDS}-fold CV inside the training half for the LASSO penalty and tree pruning.\n")
    lines.append("## 4. bill_avg — test-set MSE\n")
    for key, label in BILL_MODEL_LABELS.items():
        lines.append(f"- {label}: **{val(f'mse_{key}'):,.3f}**\n")
    lines.append(f"- Best: **{metrics.get('best_bill_model', '—')}**; LASSO lambda.min **{val('lambda_min'):.4g}**, lambda.1se **{val('lambda_1se'):.4g}**; zeroed: {metrics.get('lasso_zeroed') or 'none'}\n")
    lines.append(f"## 5. churn — holdout at threshold {CLASS_THRESHOLD:.2f}\n")
    for key, label in CHURN_MODEL_LABELS.items():
        lines.append(f"- {label}: accuracy **{val(f'accuracy_{key}'):.3f}**, AUC **{val(f'auc_{key}'):.3f}**, "
                     f"precision **{val(f'precision_{key}'):.3f}**, recall **{val(f'recall_{key}'):.3f}**\n")
    lines.append(f"- Best by accuracy: **{metrics.get('best_churn_model', '—')}**\n")
    lines.append("## 6. Risk & Limitations\n- Results are specific to this dataset and seed.  \n- Complete-case analysis drops customers with missing contract or usage values.  \n- Coefficients describe association, not cause.\n")

    save_text_report("\n".join(lines), "model_card.md")

# ================================ Main =====================================

def main() -> None:
    make_output_folder()
    raw = load_csv()
    save_run_environment()
    write_min_requirements()
    print("Raw shape:", raw.shape)
    print("\n[Preview] First 5 rows:\n", raw.head())
    missingness_table(raw)

    df = recode_factors(raw)
    df, clean_summary = clean_data(df)
    print("\n=== Cleaning summary ===")
    for k, v in clean_summary.items():
        print(f"{k:>30}: {v:,}")
    save_cleaning_report(clean_summary)
    print("\nClean shape:", df.shape)

    make_eda_charts(df)
    write_figure_captions()

    train_idx, test_idx = split_half(df)
    print(f"\n[SPLIT] train={len(train_idx):,} | test={len(test_idx):,} (seed {RANDOM_SEED})")

    metrics = run_bill_models(df, train_idx, test_idx)
    metrics.update(run_churn_models(df, train_idx, test_idx))

    print("\nAll done. Figures saved in:", OUTPUT_DIR)
    build_figures_index()
    build_key_numbers(df, metrics)
    write_model_card(df, metrics)

    if os.name == "nt":
        try:
            os.startfile(os.path.abspath(OUTPUT_DIR))
        except OSError as e:
            print("[WARN] Could not open the figures folder:", e)

if __name__ == "__main__":
    main()
