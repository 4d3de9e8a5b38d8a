"""Matching service evaluated in-process over a customer snapshot.

Used for local development and tests in place of the backend query engine.
Implements the same WireQuery semantics: every condition becomes a boolean
mask over the customer frame and the masks are combined with the query logic.
"""
import io
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import aiofiles
import numpy as np
import pandas as pd

from ..config import settings
from ..schemas.filter import Logic, Operator, WireCondition, WireQuery
from ..schemas.segment import CustomerSummary, MatchingServiceError, PreviewResult
from ..utils.logger import setup_logger

logger = setup_logger("local_matching", settings.get_log_file("local_matching"))

SUMMARY_COLUMNS = ["id", "email", "firstName", "lastName", "totalSpent", "ordersCount", "rfmSegment"]


def _text(series: pd.Series) -> pd.Series:
    return series.astype("string").str.lower()


def _compare(series: pd.Series, value: Any, op: Callable[[Any, Any], pd.Series]) -> pd.Series:
    if isinstance(value, bool):
        return op(series.astype("boolean"), value).fillna(False)
    if isinstance(value, (int, float)):
        return op(pd.to_numeric(series, errors="coerce"), value).fillna(False)
    return op(_text(series), str(value).lower()).fillna(False)


def _as_list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class LocalMatchingService:
    """Evaluates queries against an in-memory customer DataFrame"""

    def __init__(self, customers: pd.DataFrame, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc)
        self.customers = self._prepare(customers)
        self.operator_handlers: Dict[Operator, Callable[[pd.Series, Any], pd.Series]] = {
            Operator.EQUALS: lambda s, v: _compare(s, v, lambda a, b: a == b),
            Operator.NOT_EQUALS: lambda s, v: ~_compare(s, v, lambda a, b: a == b) & s.notna(),
            Operator.GREATER_THAN: lambda s, v: _compare(s, v, lambda a, b: a > b),
            Operator.LESS_THAN: lambda s, v: _compare(s, v, lambda a, b: a < b),
            Operator.GREATER_EQUAL: lambda s, v: _compare(s, v, lambda a, b: a >= b),
            Operator.LESS_EQUAL: lambda s, v: _compare(s, v, lambda a, b: a <= b),
            Operator.IN: lambda s, v: s.isin(_as_list(v)),
            Operator.NOT_IN: lambda s, v: ~s.isin(_as_list(v)) & s.notna(),
            Operator.CONTAINS: lambda s, v: _text(s).str.contains(str(v).lower(), regex=False).fillna(False),
            Operator.STARTS_WITH: lambda s, v: _text(s).str.startswith(str(v).lower()).fillna(False),
            Operator.ENDS_WITH: lambda s, v: _text(s).str.endswith(str(v).lower()).fillna(False),
            Operator.IS_NULL: lambda s, v: s.isna() | (_text(s) == "").fillna(False),
            Operator.IS_NOT_NULL: lambda s, v: s.notna() & (_text(s) != "").fillna(False),
        }

    @classmethod
    async def from_file(cls, file_path: str) -> "LocalMatchingService":
        """Load a customer snapshot (.csv, .json or .jsonl)"""
        path = Path(file_path)
        if not path.exists():
            raise ValueError(f"File not found: {file_path}")

        async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
            content = await f.read()

        suffix = path.suffix.lower()
        try:
            if suffix == ".csv":
                df = pd.read_csv(io.StringIO(content))
            elif suffix == ".jsonl":
                df = pd.DataFrame([json.loads(line) for line in content.splitlines() if line.strip()])
            elif suffix == ".json":
                records = json.loads(content)
                if isinstance(records, dict):
                    records = records.get("customers", [])
                df = pd.DataFrame(records)
            else:
                raise ValueError(f"Unsupported file format: {file_path}")
        except (ValueError, pd.errors.ParserError) as e:
            logger.error(f"Error reading customer snapshot {file_path}: {str(e)}", exc_info=True)
            raise ValueError(f"Error reading file: {str(e)}") from e

        logger.info(f"Loaded {len(df)} customers from {file_path}")
        return cls(df)

    def _prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        """Derive the computed fields the backend exposes when the snapshot lacks them"""
        df = df.copy()

        if "avgOrderValue" not in df.columns and {"totalSpent", "ordersCount"} <= set(df.columns):
            orders = pd.to_numeric(df["ordersCount"], errors="coerce").replace(0, np.nan)
            df["avgOrderValue"] = (pd.to_numeric(df["totalSpent"], errors="coerce") / orders).round(2)

        if "daysSinceLastOrder" not in df.columns and "lastOrderDate" in df.columns:
            last_order = pd.to_datetime(df["lastOrderDate"], errors="coerce", utc=True)
            now = pd.Timestamp(self.now)
            if now.tzinfo is None:
                now = now.tz_localize("UTC")
            df["daysSinceLastOrder"] = (now - last_order).dt.days

        return df

    def _condition_mask(self, frame: pd.DataFrame, condition: WireCondition) -> pd.Series:
        if condition.field not in frame.columns:
            logger.warning(f"Field {condition.field} not found in customer snapshot")
            return pd.Series(False, index=frame.index)

        handler = self.operator_handlers[Operator(condition.operator)]
        return handler(frame[condition.field], condition.value).astype(bool)

    def match(self, query: WireQuery, shop: Optional[str] = None) -> pd.DataFrame:
        """Return the customers matching `query`"""
        frame = self.customers
        if shop is not None and "shop" in frame.columns:
            frame = frame[frame["shop"] == shop]

        if not query.conditions:
            return frame.iloc[0:0]

        masks = [self._condition_mask(frame, c).to_numpy() for c in query.conditions]
        if Logic(query.logic) == Logic.OR:
            combined = np.logical_or.reduce(masks)
        else:
            combined = np.logical_and.reduce(masks)
        return frame[combined]

    async def evaluate(self, query: WireQuery, shop: str, limit: int) -> PreviewResult:
        try:
            matched = self.match(query, shop)
        except Exception as e:
            logger.error(f"Error evaluating query for {shop}: {str(e)}", exc_info=True)
            raise MatchingServiceError(f"Failed to evaluate segment: {str(e)}", error_code="evaluation") from e

        if "totalSpent" in matched.columns:
            matched = matched.sort_values("totalSpent", ascending=False)

        columns = [c for c in SUMMARY_COLUMNS if c in matched.columns]
        sample = matched[columns].head(limit)
        records = sample.astype(object).where(sample.notna(), None).to_dict("records")

        return PreviewResult(
            count=len(matched),
            sample=[CustomerSummary.model_validate(record) for record in records],
        )
