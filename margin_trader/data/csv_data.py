"""
CSV price history loader.

This module loads recorded tick prices from a CSV export of the
price history table.  The expected schema is:

```
id,symbol,price,recorded_at
```

Only `symbol`, `price` and `recorded_at` are required; the `id`
column and any additional columns are ignored.  A single file may
hold several symbols; rows are filtered by the requested symbol and
sorted by `recorded_at`.  Timestamps without an offset are read as
UTC.
"""

from __future__ import annotations

from pathlib import Path
import pandas as pd

from .price_series import PriceSeries


REQUIRED_COLUMNS = ["symbol", "price", "recorded_at"]


class CSVPriceLoader:
    """Load tick price history from a CSV file for backtesting.

    Parameters
    ----------
    csv_path : str
        Path to the CSV export.
    """

    def __init__(self, csv_path: str) -> None:
        self.csv_path = Path(csv_path)

    def load(self, symbol: str) -> PriceSeries:
        if not self.csv_path.exists():
            raise FileNotFoundError(f"CSV file not found: {self.csv_path}")

        df = pd.read_csv(self.csv_path)
        df.columns = [str(c).strip() for c in df.columns]
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format in {self.csv_path}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )

        df = df[df["symbol"].astype(str).str.strip() == symbol]
        ts = pd.to_datetime(df["recorded_at"], errors="coerce", utc=True)
        if ts.isna().any():
            bad = df.loc[ts.isna(), "recorded_at"].head(5).tolist()
            raise ValueError(f"Could not parse recorded_at for {symbol}. Examples: {bad}")

        out = pd.DataFrame(
            {"price": df["price"].astype(float).to_numpy()},
            index=pd.DatetimeIndex(ts, name="recorded_at"),
        ).sort_index(kind="stable")
        return PriceSeries.from_frame(symbol, out)
