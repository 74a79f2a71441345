"""
Test Module: test_anomaly_detector.py
Description: Unit tests for spending anomaly detection.

Tests:
    - Weekly spike thresholds and severity tiers
    - Large transaction rule and absolute floor
    - Category matching for new transactions
    - Orchestration: batch exclusion, alert persistence, processed flags
    - Non-idempotent re-runs
"""

import pytest
from datetime import timedelta

from schemas import SpendingPattern, TransactionIn
from services.anomaly_detector import (
    AnomalyDetector,
    check_weekly_spike,
    check_large_transaction,
    detect_anomalies,
    LARGE_TRANSACTION_FLOOR,
)
from services.store import TransactionStore
from services.observability import metrics
from conftest import MockTransaction, NOW, assert_valid_severity


def make_pattern(category="Food", average=1000.0, std=0.0, current=0.0):
    return SpendingPattern(
        category=category,
        weekly_average=average,
        monthly_average=average * 4,
        standard_deviation=std,
        current_week_spend=current,
        last_week_spend=0.0,
    )


# =============================================================================
# Weekly Spike
# =============================================================================

class TestWeeklySpike:
    """Tests for check_weekly_spike."""

    def test_fires_at_exactly_double(self):
        """Multiplier 2.0 above the std threshold is a medium anomaly."""
        anomaly = check_weekly_spike(make_pattern(current=2000))

        assert anomaly is not None
        assert anomaly.kind == "spending_spike"
        assert anomaly.severity == "medium"
        assert anomaly.multiplier == 2.0
        assert anomaly.amount == 2000
        assert anomaly.message.startswith("📊")

    def test_just_below_double_does_not_fire(self):
        """Multiplier 1.99 is not enough even above the std threshold."""
        assert check_weekly_spike(make_pattern(current=1990)) is None

    def test_std_threshold_blocks_noisy_category(self):
        """A 2.1x week within average + 2 std is normal for a volatile category."""
        assert check_weekly_spike(make_pattern(std=600, current=2100)) is None

    def test_high_severity_at_triple(self):
        """Multiplier 3 escalates to high with the warning wording."""
        anomaly = check_weekly_spike(make_pattern(current=3000))

        assert anomaly.severity == "high"
        assert anomaly.message.startswith("⚠️")
        assert "3.0x" in anomaly.message

    def test_urgent_wording_at_quadruple(self):
        """Multiplier 4 keeps high severity and asks what happened."""
        anomaly = check_weekly_spike(make_pattern(current=4500))

        assert anomaly.severity == "high"
        assert anomaly.message.startswith("🚨")
        assert "4.5x" in anomaly.message
        assert "₹4,500" in anomaly.message
        assert "₹1,000" in anomaly.message

    def test_normal_range_is_one_std_around_average(self):
        """The displayed range spans average minus and plus one std."""
        anomaly = check_weekly_spike(make_pattern(std=100, current=3000))
        assert anomaly.normal_range == "₹900 - ₹1100"

    def test_multiplier_rounds_half_up(self):
        """A 2.25x week displays as 2.3x, not the banker's 2.2x."""
        anomaly = check_weekly_spike(make_pattern(current=2250))

        assert anomaly.multiplier == 2.3
        assert "2.3x" in anomaly.message

    def test_average_floored_at_one_for_ratio(self):
        """A sub-unit average does not blow up the multiplier."""
        anomaly = check_weekly_spike(make_pattern(average=0.5, current=2))
        assert anomaly is not None
        assert anomaly.multiplier == 2.0

    def test_no_spend_this_week(self):
        """Zero current spend never fires."""
        assert check_weekly_spike(make_pattern(current=0)) is None

    def test_currency_symbol_is_configurable(self):
        """Messages and ranges use the given symbol."""
        anomaly = check_weekly_spike(make_pattern(current=4000), currency_symbol="$")
        assert "$" in anomaly.message
        assert anomaly.normal_range.startswith("$")


# =============================================================================
# Large Transaction
# =============================================================================

class TestLargeTransaction:
    """Tests for check_large_transaction."""

    def test_fires_above_half_average_and_floor(self):
        """A 1200 expense against a 1000 weekly average is large."""
        txn = MockTransaction(10, 1200, "Food", NOW, "Party supplies")
        anomaly = check_large_transaction(txn, make_pattern())

        assert anomaly is not None
        assert anomaly.kind == "large_transaction"
        assert anomaly.severity == "medium"
        assert anomaly.normal_range == "Usually under ₹500"
        assert anomaly.transaction == "Party supplies"
        assert anomaly.message.startswith("💳")
        assert "Party supplies" in anomaly.message

    def test_floor_blocks_small_amounts(self):
        """Amounts at or below the absolute floor never fire."""
        txn = MockTransaction(10, LARGE_TRANSACTION_FLOOR, "Food", NOW, "Dinner")
        assert check_large_transaction(txn, make_pattern(average=100)) is None

    def test_below_half_average(self):
        """1500 against a 4000 weekly average is ordinary."""
        txn = MockTransaction(10, 1500, "Food", NOW, "Groceries")
        assert check_large_transaction(txn, make_pattern(average=4000)) is None

    def test_limit_rounds_half_up(self):
        """Half of a 1001 weekly average displays as 501."""
        txn = MockTransaction(10, 1200, "Food", NOW, "Party supplies")
        anomaly = check_large_transaction(txn, make_pattern(average=1001))
        assert anomaly.normal_range == "Usually under ₹501"


class TestDetectAnomalies:
    """Tests for the combined per-category pass."""

    def test_both_checks_fire_spike_first(self):
        """Spike and large transaction records can coexist, spike first."""
        patterns = {"Food": make_pattern(current=3000)}
        new = [MockTransaction(10, 2500, "Food", NOW, "Banquet")]

        anomalies = detect_anomalies(new, patterns)

        assert [a.kind for a in anomalies] == ["spending_spike", "large_transaction"]
        for a in anomalies:
            assert_valid_severity(a.severity)

    def test_category_without_history_is_not_checked(self):
        """New categories have no baseline and raise nothing."""
        patterns = {"Food": make_pattern()}
        new = [MockTransaction(10, 50000, "Travel", NOW, "Flights")]
        assert detect_anomalies(new, patterns) == []

    def test_income_is_ignored(self):
        """Only expenses are compared against spending baselines."""
        patterns = {"Food": make_pattern()}
        new = [MockTransaction(10, 5000, "Food", NOW, "Refund", kind="income")]
        assert detect_anomalies(new, patterns) == []

    def test_uncategorized_matches_other(self):
        """A new expense without a category is compared against Other."""
        patterns = {"Other": make_pattern(category="Other")}
        new = [MockTransaction(10, 1500, None, NOW, "Misc")]

        anomalies = detect_anomalies(new, patterns)
        assert len(anomalies) == 1
        assert anomalies[0].category == "Other"

    def test_empty_inputs(self):
        """No patterns or no transactions produce no anomalies."""
        assert detect_anomalies([], {}) == []
        assert detect_anomalies([MockTransaction(1, 5000, "Food", NOW)], {}) == []


# =============================================================================
# Orchestrator
# =============================================================================

class RecordingStore:
    """Store double that records the order of calls."""

    def __init__(self, history):
        self.history = history
        self.calls = []
        self.alerts = []

    def find_transactions(self, user_id, since, kind=None):
        self.calls.append(("find_transactions", user_id, kind))
        return list(self.history)

    def insert_alerts(self, user_id, anomalies, created_at=None):
        self.calls.append(("insert_alerts", len(anomalies)))
        self.alerts.extend(anomalies)
        return anomalies

    def mark_processed(self, ids, timestamp):
        self.calls.append(("mark_processed", list(ids)))
        return len(ids)


class TestAnomalyDetector:
    """Tests for AnomalyDetector.detect with a recording store."""

    def test_batch_excluded_from_baseline(self, food_history):
        """The batch under test does not shape its own baseline."""
        batch = [MockTransaction(99, 2500, "Food", NOW - timedelta(days=1), "Banquet")]
        store = RecordingStore(food_history + batch)

        result = AnomalyDetector(store).detect("user-1", batch, now=NOW)

        food = result.patterns["Food"]
        assert food.weekly_average == 1000
        assert food.current_week_spend == 0
        assert result.anomalies_detected == 1
        assert result.anomalies[0].kind == "large_transaction"

    def test_history_read_before_marking(self, food_history):
        """History is queried first, then alerts, then processed flags."""
        batch = [MockTransaction(99, 2500, "Food", NOW, "Banquet")]
        store = RecordingStore(food_history)

        AnomalyDetector(store).detect("user-1", batch, now=NOW)

        assert [c[0] for c in store.calls] == [
            "find_transactions", "insert_alerts", "mark_processed"
        ]
        assert store.calls[0] == ("find_transactions", "user-1", "expense")
        assert store.calls[-1] == ("mark_processed", [99])

    def test_no_alerts_written_without_anomalies(self, food_history):
        """A quiet batch is still marked processed."""
        batch = [MockTransaction(99, 100, "Food", NOW, "Snack")]
        store = RecordingStore(food_history)

        result = AnomalyDetector(store).detect("user-1", batch, now=NOW)

        assert result.anomalies_detected == 0
        assert [c[0] for c in store.calls] == ["find_transactions", "mark_processed"]

    def test_empty_history(self):
        """With no history there are no baselines and no anomalies."""
        batch = [MockTransaction(1, 100000, "Food", NOW, "Huge")]
        result = AnomalyDetector(RecordingStore([])).detect("user-1", batch, now=NOW)

        assert result.patterns == {}
        assert result.anomalies == []

    def test_metrics_recorded(self, food_history):
        """Each run records its duration and anomaly counts."""
        batch = [MockTransaction(99, 2500, "Food", NOW, "Banquet")]
        AnomalyDetector(RecordingStore(food_history)).detect("user-1", batch, now=NOW)

        summary = metrics.get_summary()
        assert "anomaly_detection" in summary["timings"]


class TestAnomalyDetectorWithDatabase:
    """End-to-end detection against an in-memory database."""

    def _seed_history(self, store, weeks=8, amount=1000):
        rows = [
            TransactionIn(
                amount=amount,
                category="Food",
                description="Groceries",
                occurred_at=NOW - timedelta(days=8 + 7 * i),
            )
            for i in range(weeks)
        ]
        records = store.add_transactions("user-1", rows, now=NOW)
        store.mark_processed([r.id for r in records], NOW)
        return records

    def test_large_transaction_persisted_and_batch_marked(self, db_session):
        """A large expense yields one alert and flips the processed flag."""
        store = TransactionStore(db_session)
        self._seed_history(store, weeks=4)
        batch = store.add_transactions(
            "user-1",
            [TransactionIn(amount=2500, category="Food", description="Banquet",
                           occurred_at=NOW - timedelta(days=1))],
            now=NOW,
        )

        result = AnomalyDetector(store).detect("user-1", batch, now=NOW)

        assert result.anomalies_detected == 1
        alerts = store.list_alerts("user-1", NOW - timedelta(days=30))
        assert len(alerts) == 1
        assert alerts[0].kind == "large_transaction"
        assert alerts[0].read is False
        assert store.find_unchecked_transactions("user-1") == []

    def test_spike_sees_previously_recorded_spend(self, db_session):
        """Earlier spend this week drives the spike, not the batch itself."""
        store = TransactionStore(db_session)
        self._seed_history(store, weeks=8)
        earlier = store.add_transactions(
            "user-1",
            [TransactionIn(amount=5000, category="Food", description="Catering",
                           occurred_at=NOW - timedelta(days=2))],
            now=NOW,
        )
        store.mark_processed([r.id for r in earlier], NOW)
        batch = store.add_transactions(
            "user-1",
            [TransactionIn(amount=100, category="Food", description="Snack",
                           occurred_at=NOW - timedelta(hours=1))],
            now=NOW,
        )

        result = AnomalyDetector(store).detect("user-1", batch, now=NOW)

        assert [a.kind for a in result.anomalies] == ["spending_spike"]
        assert result.anomalies[0].severity == "high"
        assert result.patterns["Food"].current_week_spend == 5000

    def test_rerun_duplicates_alerts(self, db_session):
        """Detecting the same batch twice writes the alerts twice."""
        store = TransactionStore(db_session)
        self._seed_history(store, weeks=4)
        batch = store.add_transactions(
            "user-1",
            [TransactionIn(amount=2500, category="Food", description="Banquet",
                           occurred_at=NOW - timedelta(days=1))],
            now=NOW,
        )
        detector = AnomalyDetector(store)

        detector.detect("user-1", batch, now=NOW)
        detector.detect("user-1", batch, now=NOW)

        assert len(store.list_alerts("user-1", NOW - timedelta(days=30))) == 2

    def test_other_users_history_is_ignored(self, db_session):
        """Baselines are scoped to the user."""
        store = TransactionStore(db_session)
        self._seed_history(store, weeks=4)
        batch = store.add_transactions(
            "user-2",
            [TransactionIn(amount=2500, category="Food", description="Banquet",
                           occurred_at=NOW - timedelta(days=1))],
            now=NOW,
        )

        result = AnomalyDetector(store).detect("user-2", batch, now=NOW)

        assert result.patterns == {}
        assert result.anomalies_detected == 0
