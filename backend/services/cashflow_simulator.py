"""
Module: cashflow_simulator.py
Description: Month-by-month balance projection for a what-if scenario.

Rules per month index (0..timeframe inclusive):
    - income change applies while month <= duration
    - expense change applies every month, regardless of duration
    - the one-time expense lands at month 1, never at month 0
    - dates step 30 days per month (approximation, not calendar months)

Usage:
    simulator = CashFlowSimulator(snapshot)
    result = simulator.simulate(analysis.impact, timeframe=12, risk_level="high")
"""

import math
from datetime import date, timedelta
from typing import Optional

from schemas import (
    FinancialSnapshot, ScenarioImpact, ScenarioAnalysis,
    MonthlyProjection, SimulationSummary, SimulationResult
)
from .observability import timed


DAYS_PER_MONTH = 30
ONE_TIME_EXPENSE_MONTH = 1


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from -inf (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


class CashFlowSimulator:
    """Projects savings forward under a ScenarioImpact."""

    def __init__(self, snapshot: FinancialSnapshot):
        """
        Args:
            snapshot: Current monthly income, monthly expenses and savings.
        """
        self.snapshot = snapshot

    @timed("cashflow_simulation")
    def simulate(
        self,
        impact: ScenarioImpact,
        timeframe: int,
        risk_level: str = "medium",
        today: Optional[date] = None,
    ) -> SimulationResult:
        """
        Run the projection.

        Args:
            impact: Structured scenario impact.
            timeframe: Months to project; produces timeframe + 1 data points.
            risk_level: Copied into the summary.
            today: Start date for the 30-day steps (defaults to today).

        Returns:
            SimulationResult with monthly data and summary.
        """
        if timeframe < 0:
            raise ValueError("timeframe must not be negative")

        today = today or date.today()
        # Missing or zero duration means the income change lasts the whole projection
        income_months = impact.duration if impact.duration else timeframe

        balance = float(self.snapshot.current_savings)
        monthly_data = []

        for month in range(timeframe + 1):
            income = self.snapshot.monthly_income
            if month <= income_months:
                income += impact.monthly_income_change

            expenses = self.snapshot.monthly_expenses + impact.monthly_expense_change
            one_time = impact.one_time_expense if month == ONE_TIME_EXPENSE_MONTH else 0

            net_change = income - expenses - one_time
            balance += net_change

            monthly_data.append(MonthlyProjection(
                month=month,
                balance=round_half_up(balance),
                income=income,
                expenses=expenses + one_time,
                net_change=net_change,
                date=(today + timedelta(days=month * DAYS_PER_MONTH)).isoformat(),
            ))

        initial_balance = self.snapshot.current_savings
        final_balance = monthly_data[-1].balance
        total_change = final_balance - initial_balance
        average_monthly_change = round_half_up(total_change / timeframe) if timeframe > 0 else 0

        return SimulationResult(
            monthly_data=monthly_data,
            summary=SimulationSummary(
                initial_balance=initial_balance,
                final_balance=final_balance,
                total_change=total_change,
                average_monthly_change=average_monthly_change,
                risk_level=risk_level,
                feasible=final_balance > 0,
            ),
        )


def simulate_cash_flow(
    snapshot: FinancialSnapshot,
    analysis: ScenarioAnalysis,
    timeframe: int,
    today: Optional[date] = None,
) -> SimulationResult:
    """Convenience function to simulate an interpreted scenario."""
    simulator = CashFlowSimulator(snapshot)
    return simulator.simulate(
        analysis.impact, timeframe, risk_level=analysis.risk_level, today=today
    )
