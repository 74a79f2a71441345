"""
Module: anomaly_detector.py
Description: Spending anomaly detection against per-category baselines.

Detection Methods:
    1. Weekly spike: this week's category spend far above its weekly average
    2. Large transaction: a single new expense big relative to the baseline
       and above an absolute floor

Both checks run per category and may fire in the same run. Baselines come
from PatternAnalyzer over history that excludes the batch under test.

Persistence is not idempotent: each run inserts one alert per anomaly, so
re-running a batch duplicates its alerts. Callers run detection once per
unchecked batch.
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from schemas import Anomaly, SpendingPattern, DetectResponse
from .pattern_analyzer import (
    analyze_spending_patterns, HISTORY_WINDOW_DAYS, DEFAULT_CATEGORY
)
from .observability import (
    logger, timed, log_detection_start, log_detection_complete, log_anomaly_detected
)


# =============================================================================
# Detection Thresholds
# =============================================================================

SPIKE_STD_MULTIPLE = 2          # threshold = average + 2 std
SPIKE_MIN_MULTIPLIER = 2.0      # medium
SPIKE_HIGH_MULTIPLIER = 3.0     # high
SPIKE_URGENT_MULTIPLIER = 4.0   # high, urgent wording

LARGE_TRANSACTION_RATIO = 0.5   # of the weekly average
LARGE_TRANSACTION_FLOOR = 1000  # absolute, whole currency units


# =============================================================================
# Display Rounding
# =============================================================================

def half_up(value: float, places: int = 0) -> Decimal:
    """Round for display with ties away from zero (2.25 -> 2.3, 500.5 -> 501)."""
    return Decimal(str(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


# =============================================================================
# Checks
# =============================================================================

def check_weekly_spike(pattern: SpendingPattern, currency_symbol: str = "₹") -> Optional[Anomaly]:
    """
    Flag a category whose current-week spend is a statistical and relative outlier.

    Fires only if current spend exceeds average + 2 std AND is at least
    twice the average (average floored at 1 for the ratio).
    """
    average = pattern.weekly_average
    std = pattern.standard_deviation
    current = pattern.current_week_spend
    category = pattern.category

    threshold = average + SPIKE_STD_MULTIPLE * std
    multiplier = current / max(average, 1)
    shown_multiplier = half_up(multiplier, 1)

    if not (current > threshold and multiplier >= SPIKE_MIN_MULTIPLIER):
        return None

    if multiplier >= SPIKE_URGENT_MULTIPLIER:
        severity = "high"
        message = (
            f"🚨 You spent {shown_multiplier}x more on {category} this week "
            f"({currency_symbol}{half_up(current):,}) compared to your average "
            f"({currency_symbol}{half_up(average):,}). What happened?"
        )
    elif multiplier >= SPIKE_HIGH_MULTIPLIER:
        severity = "high"
        message = (
            f"⚠️ Unusual {category} spending detected! You spent "
            f"{shown_multiplier}x more than usual this week."
        )
    else:
        severity = "medium"
        message = (
            f"📊 Your {category} spending is {shown_multiplier}x higher than normal "
            f"this week. Consider reviewing your budget."
        )

    return Anomaly(
        category=category,
        amount=current,
        normal_range=(
            f"{currency_symbol}{half_up(average - std)} - {currency_symbol}{half_up(average + std)}"
        ),
        severity=severity,
        message=message,
        kind="spending_spike",
        multiplier=float(shown_multiplier),
    )


def check_large_transaction(
    transaction, pattern: SpendingPattern, currency_symbol: str = "₹"
) -> Optional[Anomaly]:
    """Flag one new expense above half the weekly average and the absolute floor."""
    limit = pattern.weekly_average * LARGE_TRANSACTION_RATIO
    amount = float(transaction.amount)

    if not (amount > limit and amount > LARGE_TRANSACTION_FLOOR):
        return None

    return Anomaly(
        category=pattern.category,
        amount=amount,
        normal_range=f"Usually under {currency_symbol}{half_up(limit)}",
        severity="medium",
        message=(
            f"💳 Large {pattern.category} transaction detected: "
            f"{currency_symbol}{half_up(amount):,} for \"{transaction.description}\". "
            f"This is unusually high for you."
        ),
        kind="large_transaction",
        transaction=transaction.description,
    )


def detect_anomalies(
    new_transactions: list,
    patterns: dict[str, SpendingPattern],
    currency_symbol: str = "₹",
) -> list[Anomaly]:
    """
    Run both checks for every category that has a baseline.

    Returns:
        Anomalies in pattern order; within a category the spike record
        comes before per-transaction records.
    """
    anomalies = []

    for category, pattern in patterns.items():
        spike = check_weekly_spike(pattern, currency_symbol)
        if spike is not None:
            anomalies.append(spike)

        for txn in new_transactions:
            if txn.kind != "expense":
                continue
            if (txn.category or DEFAULT_CATEGORY) != category:
                continue
            large = check_large_transaction(txn, pattern, currency_symbol)
            if large is not None:
                anomalies.append(large)

    return anomalies


# =============================================================================
# Detector (Orchestrator)
# =============================================================================

class AnomalyDetector:
    """
    Reads history, builds baselines, detects, and persists alerts.

    Ordering: history is read before the batch is marked processed.
    """

    def __init__(
        self,
        store,
        currency_symbol: str = "₹",
        history_days: int = HISTORY_WINDOW_DAYS,
    ):
        """
        Args:
            store: TransactionStore (or any object with the same methods).
            currency_symbol: Prefix used in messages and normal ranges.
            history_days: Trailing window for baselines.
        """
        self.store = store
        self.currency_symbol = currency_symbol
        self.history_days = history_days

    @timed("anomaly_detection")
    def detect(
        self, user_id: str, new_transactions: list, now: Optional[datetime] = None
    ) -> DetectResponse:
        """
        Detect anomalies for a batch of new transactions.

        Args:
            user_id: Owner of the transactions.
            new_transactions: Batch under test (may be empty).
            now: Reference instant; defaults to utcnow.

        Returns:
            DetectResponse with baselines and anomalies.
        """
        now = now or datetime.utcnow()
        batch_ids = {t.id for t in new_transactions if getattr(t, "id", None) is not None}

        with logger.user_scope(user_id):
            # Baselines reflect established behaviour, so the batch is excluded
            since = now - timedelta(days=self.history_days)
            history = [
                t for t in self.store.find_transactions(user_id, since, kind="expense")
                if t.id not in batch_ids
            ]
            log_detection_start(len(new_transactions), len(history))

            patterns = analyze_spending_patterns(history, now=now)
            anomalies = detect_anomalies(new_transactions, patterns, self.currency_symbol)

            for anomaly in anomalies:
                log_anomaly_detected(anomaly)

            if anomalies:
                self.store.insert_alerts(user_id, anomalies, created_at=now)

            # A failure here leaves alerts without the processed flag; not compensated
            if batch_ids:
                self.store.mark_processed(sorted(batch_ids), now)

            log_detection_complete(len(anomalies))

        return DetectResponse(
            anomalies_detected=len(anomalies),
            patterns=patterns,
            anomalies=anomalies,
        )
