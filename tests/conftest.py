import os
os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pandas as pd
import pytest
from pathlib import Path

import main


def make_synth_df(n: int = 400, seed: int = 42) -> pd.DataFrame:
    """Raw-looking churn frame: id column, misspelled contract column, no missing values."""
    rng = np.random.default_rng(seed)

    tv = rng.integers(0, 2, size=n)
    movie = rng.integers(0, 2, size=n)
    sub_age = rng.uniform(0, 8, size=n).round(2)
    contract = rng.uniform(0, 2.5, size=n).round(2)
    failures = rng.poisson(0.4, size=n)
    download = rng.gamma(2.0, 40.0, size=n).round(1)
    upload = (download * rng.uniform(0.02, 0.10, size=n)).round(1)
    over_limit = rng.integers(0, 3, size=n) * (rng.uniform(size=n) < 0.1)

    # bill depends clearly on usage and packages
    bill = (10 + 0.08 * download + 2.0 * tv + 3.0 * movie + 1.5 * sub_age
            + rng.normal(0, 3, size=n)).round(0)

    # noisy churn so logit never separates perfectly
    score = (0.5 + 1.2 * (contract < 0.3) - 0.3 * sub_age + 0.6 * failures
             - 0.004 * download + rng.normal(0, 0.5, size=n))
    churn = (rng.uniform(size=n) < 1 / (1 + np.exp(-score))).astype(int)
    if churn.sum() < 20:
        churn[:20] = 1

    return pd.DataFrame({
        "id": np.arange(1, n + 1) * 15,
        "is_tv_subscriber": tv,
        "is_movie_package_subscriber": movie,
        "subscription_age": sub_age,
        "bill_avg": bill,
        "reamining_contract": contract,
        "service_failure_count": failures,
        "download_avg": download,
        "upload_avg": upload,
        "download_over_limit": over_limit.astype(int),
        "churn": churn,
    })


@pytest.fixture
def synth_df() -> pd.DataFrame:
    return make_synth_df()


@pytest.fixture
def synth_csv(tmp_path: Path) -> Path:
    df = make_synth_df()
    # 20 customers without a contract, 5 without usage data
    df.loc[:19, "reamining_contract"] = np.nan
    df.loc[20:24, "download_avg"] = np.nan
    csv_path = tmp_path / "internet_service_churn.csv"
    df.to_csv(csv_path, index=False)
    return csv_path


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def fast_config(monkeypatch):
    monkeypatch.setattr(main, "RF_TREES", 25)
    monkeypatch.setattr(main, "CV_FOLDS", 3)
    monkeypatch.setattr(main, "TREE_MAX_ALPHAS", 6)
    return main


@pytest.fixture
def prepared(synth_df):
    """Recoded, complete-case frame plus its 50/50 split."""
    raw = synth_df.drop(columns=["id"]).rename(columns=main.COLUMN_ALIASES)
    df, _ = main.clean_data(main.recode_factors(raw))
    train_idx, test_idx = main.split_half(df)
    return df, train_idx, test_idx
