"""Market-data collaborator interfaces.

Retrieval itself is out of scope; the calibrator only needs a source that
returns a price series. ``CsvPriceSource`` reads one from a CSV file with
pandas.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Protocol

import numpy as np
import pandas as pd

from stochpath.errors import InsufficientData, InvalidParameters

logger = logging.getLogger(__name__)


class MarketDataSource(Protocol):
    def fetch(self, symbol: str, start: date | None = None, end: date | None = None) -> pd.Series:
        """Price series for ``symbol`` between ``start`` and ``end`` inclusive."""
        ...


class CsvPriceSource:
    """Price series from a CSV file.

    Args:
        path: CSV file path.
        column: Value column; the first numeric column when None.
        date_column: Optional date column used as the index.
        symbol_column: Optional column holding the symbol, for multi-symbol files.
    """

    def __init__(
        self,
        path: str | Path,
        column: str | None = None,
        date_column: str | None = None,
        symbol_column: str | None = None,
    ):
        self.path = Path(path)
        self.column = column
        self.date_column = date_column
        self.symbol_column = symbol_column

    def _read(self) -> pd.DataFrame:
        if not self.path.exists():
            raise FileNotFoundError(f"price file not found: {self.path}")
        df = pd.read_csv(self.path)
        if self.date_column is not None:
            if self.date_column not in df.columns:
                raise InvalidParameters(f"date column {self.date_column!r} not in {self.path.name}")
            df[self.date_column] = pd.to_datetime(df[self.date_column])
            df = df.sort_values(self.date_column).set_index(self.date_column)
        return df

    def _value_column(self, df: pd.DataFrame) -> str:
        if self.column is not None:
            if self.column not in df.columns:
                raise InvalidParameters(f"column {self.column!r} not in {self.path.name}")
            return self.column
        numeric = df.select_dtypes(include="number").columns
        if len(numeric) == 0:
            raise InvalidParameters(f"no numeric column in {self.path.name}")
        return numeric[0]

    def fetch(self, symbol: str | None = None, start: date | None = None, end: date | None = None) -> pd.Series:
        df = self._read()
        if symbol is not None and self.symbol_column is not None:
            df = df[df[self.symbol_column] == symbol]
        if start is not None or end is not None:
            if self.date_column is None:
                raise InvalidParameters("date filtering requires a date_column")
            df = df.loc[pd.Timestamp(start) if start else None : pd.Timestamp(end) if end else None]

        column = self._value_column(df)
        series = pd.to_numeric(df[column], errors="coerce").dropna()
        logger.debug("Loaded %d rows of %s from %s", len(series), column, self.path)
        return series.rename(symbol or column)

    def load_values(self, min_length: int = 2) -> np.ndarray:
        """Values of the whole file as a float array."""
        values = self.fetch().to_numpy(dtype=float)
        if values.size < min_length:
            raise InsufficientData(f"{self.path.name} has {values.size} values, need at least {min_length}")
        return values
