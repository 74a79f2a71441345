"""
Module: pattern_analyzer.py
Description: Builds per-category spending baselines from expense history.

Baselines (per category):
    1. weekly_average: mean of Sunday-started weekly sums
    2. monthly_average: mean of calendar-month sums
    3. standard_deviation: population std of the raw amounts
    4. current_week_spend / last_week_spend: trailing 7-day windows

The analyzer is a pure function of its transactions and "now". The caller
picks the history window (HISTORY_WINDOW_DAYS by reference).

Usage:
    analyzer = PatternAnalyzer(transactions, now=datetime.utcnow())
    patterns = analyzer.analyze()
"""

import numpy as np
import pandas as pd
from datetime import datetime, date, timedelta
from typing import Optional

from schemas import SpendingPattern


HISTORY_WINDOW_DAYS = 90
DEFAULT_CATEGORY = "Other"

FRAME_COLUMNS = ['category', 'amount', 'week', 'month', 'in_current_week', 'in_last_week']


def week_start(moment: datetime) -> date:
    """Sunday on or before the given moment."""
    day = moment.date() if isinstance(moment, datetime) else moment
    return day - timedelta(days=(day.weekday() + 1) % 7)


def month_key(moment: datetime) -> str:
    """Calendar month bucket key, e.g. '2025-03'."""
    return f"{moment.year}-{moment.month:02d}"


class PatternAnalyzer:
    """
    Aggregates expense transactions into SpendingPattern baselines.

    Transactions are any objects exposing amount, category and occurred_at
    (ORM rows or test doubles).
    """

    def __init__(self, transactions: list, now: Optional[datetime] = None):
        """
        Initialize pattern analyzer.

        Args:
            transactions: Expense transactions of one user.
            now: Reference instant for the weekly windows.
        """
        self.transactions = transactions
        self.now = now or datetime.utcnow()
        self._frame: Optional[pd.DataFrame] = None

    @property
    def frame(self) -> pd.DataFrame:
        """Lazy build of the bucketed amount frame."""
        if self._frame is None:
            self._frame = self._build_frame()
        return self._frame

    def _build_frame(self) -> pd.DataFrame:
        week_ago = self.now - timedelta(days=7)
        two_weeks_ago = self.now - timedelta(days=14)

        rows = []
        for t in self.transactions:
            occurred = t.occurred_at
            rows.append({
                'category': t.category or DEFAULT_CATEGORY,
                'amount': float(t.amount),
                'week': week_start(occurred),
                'month': month_key(occurred),
                'in_current_week': week_ago <= occurred < self.now,
                'in_last_week': two_weeks_ago <= occurred < week_ago,
            })

        return pd.DataFrame(rows, columns=FRAME_COLUMNS)

    def analyze(self) -> dict[str, SpendingPattern]:
        """
        Compute baselines for every category present in the history.

        Returns:
            Mapping of category name to pattern, in first-seen order.
        """
        df = self.frame
        if df.empty:
            return {}

        patterns = {}
        for category, cat_df in df.groupby('category', sort=False):
            patterns[category] = self._category_pattern(category, cat_df)

        return patterns

    def _category_pattern(self, category: str, cat_df: pd.DataFrame) -> SpendingPattern:
        """Baseline for a single category."""
        weekly = cat_df.groupby('week', sort=False)['amount'].sum()
        monthly = cat_df.groupby('month', sort=False)['amount'].sum()

        # Empty bucket sets yield 0, never NaN
        weekly_average = float(weekly.mean()) if len(weekly) > 0 else 0.0
        monthly_average = float(monthly.mean()) if len(monthly) > 0 else 0.0

        amounts = cat_df['amount'].to_numpy(dtype=float)
        # Identical amounts must give exactly 0, not float noise from the mean
        if len(amounts) == 0 or np.ptp(amounts) == 0:
            standard_deviation = 0.0
        else:
            standard_deviation = float(np.std(amounts))

        current_week_spend = float(cat_df.loc[cat_df['in_current_week'].astype(bool), 'amount'].sum())
        last_week_spend = float(cat_df.loc[cat_df['in_last_week'].astype(bool), 'amount'].sum())

        return SpendingPattern(
            category=category,
            weekly_average=weekly_average,
            monthly_average=monthly_average,
            standard_deviation=standard_deviation,
            current_week_spend=current_week_spend,
            last_week_spend=last_week_spend,
        )


def analyze_spending_patterns(transactions: list, now: Optional[datetime] = None) -> dict[str, SpendingPattern]:
    """Convenience function to compute baselines."""
    return PatternAnalyzer(transactions, now=now).analyze()
