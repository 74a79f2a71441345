"""
Test Module: test_cashflow_simulator.py
Description: Unit tests for the month-by-month cash-flow projection.

Tests:
    - Baseline projection and summary
    - One-time expense placement
    - Income change duration vs. unconditional expense change
    - Rounding, dates and edge timeframes
"""

import pytest
from datetime import date

from schemas import FinancialSnapshot, ScenarioImpact, ScenarioAnalysis
from services.cashflow_simulator import CashFlowSimulator, simulate_cash_flow, round_half_up


TODAY = date(2025, 3, 12)


@pytest.fixture
def snapshot():
    return FinancialSnapshot(monthly_income=50000, monthly_expenses=35000, current_savings=200000)


def run(snapshot, timeframe=12, risk_level="medium", **impact):
    simulator = CashFlowSimulator(snapshot)
    return simulator.simulate(ScenarioImpact(**impact), timeframe, risk_level=risk_level, today=TODAY)


class TestBaselineProjection:
    """Projection with no scenario impact."""

    def test_produces_timeframe_plus_one_points(self, snapshot):
        """Months 0 through timeframe inclusive."""
        result = run(snapshot, timeframe=12)
        assert [m.month for m in result.monthly_data] == list(range(13))

    def test_surplus_accumulates_every_month(self, snapshot):
        """Month 0 already carries one month of surplus."""
        result = run(snapshot, timeframe=12)

        assert result.monthly_data[0].balance == 215000
        assert result.monthly_data[-1].balance == 395000
        assert result.summary.final_balance == 395000
        assert result.summary.initial_balance == 200000
        assert result.summary.total_change == 195000
        assert result.summary.average_monthly_change == 16250
        assert result.summary.feasible is True

    def test_final_balance_matches_last_record(self, snapshot):
        """The summary is derived from the last data point."""
        result = run(snapshot, timeframe=7, monthly_expense_change=1234.5)
        assert result.summary.final_balance == result.monthly_data[-1].balance

    def test_dates_step_thirty_days(self, snapshot):
        """Dates use a 30-day month approximation."""
        result = run(snapshot, timeframe=2)
        assert [m.date for m in result.monthly_data] == ["2025-03-12", "2025-04-11", "2025-05-11"]

    def test_risk_level_copied_into_summary(self, snapshot):
        result = run(snapshot, risk_level="high")
        assert result.summary.risk_level == "high"


class TestOneTimeExpense:
    """Placement of the one-time expense."""

    def test_not_applied_at_month_zero(self, snapshot):
        """Month 0 is the plain surplus; month 1 takes the hit."""
        result = run(snapshot, one_time_expense=100000)

        assert result.monthly_data[0].balance == 200000 + 15000
        assert result.monthly_data[0].expenses == 35000
        assert result.monthly_data[1].balance == 200000 + 15000 + 15000 - 100000
        assert result.monthly_data[1].expenses == 135000
        assert result.monthly_data[1].net_change == -85000

    def test_applied_exactly_once(self, snapshot):
        """Later months are unaffected."""
        result = run(snapshot, one_time_expense=100000)
        assert all(m.expenses == 35000 for m in result.monthly_data[2:])
        assert result.summary.final_balance == 295000

    def test_unaffordable_purchase_is_infeasible(self, snapshot):
        """A purchase larger than savings plus surplus ends negative."""
        result = run(snapshot, timeframe=3, one_time_expense=1000000)
        assert result.summary.final_balance < 0
        assert result.summary.feasible is False


class TestDurations:
    """Income change duration vs. expense change."""

    def test_income_change_stops_after_duration(self, snapshot):
        """Months 0..duration get the change, later months do not."""
        result = run(snapshot, monthly_income_change=-50000, duration=6)

        incomes = [m.income for m in result.monthly_data]
        assert incomes[:7] == [0] * 7
        assert incomes[7:] == [50000] * 6

    def test_career_break_balance(self, snapshot):
        """Seven months at -35000, then six at +15000."""
        result = run(snapshot, monthly_income_change=-50000, duration=6)
        assert result.summary.final_balance == 200000 - 7 * 35000 + 6 * 15000

    def test_missing_duration_lasts_whole_timeframe(self, snapshot):
        """No duration means every month is affected."""
        result = run(snapshot, timeframe=5, monthly_income_change=10000)
        assert all(m.income == 60000 for m in result.monthly_data)

    def test_zero_duration_lasts_whole_timeframe(self, snapshot):
        """Zero is treated like a missing duration."""
        result = run(snapshot, timeframe=5, monthly_income_change=10000, duration=0)
        assert all(m.income == 60000 for m in result.monthly_data)

    def test_expense_change_ignores_duration(self, snapshot):
        """Expense changes apply every month regardless of duration."""
        result = run(snapshot, monthly_expense_change=-5000, duration=2)
        assert all(m.expenses == 30000 for m in result.monthly_data)


class TestEdgeCases:
    """Rounding and degenerate timeframes."""

    def test_zero_timeframe(self, snapshot):
        """A single data point and no average."""
        result = run(snapshot, timeframe=0)

        assert len(result.monthly_data) == 1
        assert result.summary.average_monthly_change == 0

    def test_negative_timeframe_rejected(self, snapshot):
        with pytest.raises(ValueError):
            run(snapshot, timeframe=-1)

    def test_balance_rounds_half_up(self):
        """Half values round toward +inf."""
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -2
        assert round_half_up(1.49) == 1

    def test_fractional_balances_are_integers(self):
        """Stored balances are whole numbers."""
        snapshot = FinancialSnapshot(monthly_income=100.5, monthly_expenses=0, current_savings=0)
        result = run(snapshot, timeframe=1)
        assert [m.balance for m in result.monthly_data] == [101, 201]

    def test_simulate_cash_flow_uses_analysis(self, snapshot):
        """The convenience wrapper takes impact and risk from the analysis."""
        analysis = ScenarioAnalysis(
            scenario_type="expense",
            impact=ScenarioImpact(one_time_expense=100000, duration=1),
            risk_level="low",
        )
        result = simulate_cash_flow(snapshot, analysis, 12, today=TODAY)

        assert result.summary.risk_level == "low"
        assert result.summary.final_balance == 295000
