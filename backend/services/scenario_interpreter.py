"""
Module: scenario_interpreter.py
Description: Turns a free-text "what if" into a structured ScenarioAnalysis.

Strategies:
    1. AIScenarioInterpreter: asks the text-generation service for JSON
    2. RuleBasedScenarioInterpreter: deterministic keyword matcher

interpret_scenario() is the single decision point: it tries the AI strategy
under a timeout when a service is configured and answers with the
rule-based strategy on any failure. Collaborator failures never reach the
caller.

Usage:
    analysis = await interpret_scenario(text, snapshot, timeframe=12, ai_service=ai)
"""

import re
import json
import asyncio
from abc import ABC, abstractmethod
from typing import Optional
from pydantic import ValidationError

from schemas import FinancialSnapshot, ScenarioAnalysis, ScenarioImpact
from .observability import logger, log_scenario_fallback


LAKH = 100000
DEFAULT_BREAK_MONTHS = 6
DEFAULT_DURATION_MONTHS = 12


class ScenarioParseError(ValueError):
    """The AI response could not be read as a ScenarioAnalysis."""


class ScenarioInterpreter(ABC):
    """Common interface of both interpretation strategies."""

    @abstractmethod
    async def interpret(
        self, scenario: str, snapshot: FinancialSnapshot, timeframe: int
    ) -> ScenarioAnalysis:
        ...


# =============================================================================
# Deterministic Fallback
# =============================================================================

class RuleBasedScenarioInterpreter(ScenarioInterpreter):
    """
    Keyword matcher with exactly reproducible output.

    Rules are checked in order on the lowercased text; the first match wins:
        1. "car" + "<N>l" (lakh)   -> one-time expense of N lakh
        2. "quit" or "job"         -> income drops to zero for N months
        3. "rent" + a number       -> monthly expense change (+/-)
        4. anything else           -> general scenario, no impact
    """

    CAR_PRICE = re.compile(r"₹?(\d+)l")
    LAKH_AMOUNT = re.compile(r"(\d+)l")
    MONTHS = re.compile(r"(\d+)\s*month")
    ANY_AMOUNT = re.compile(r"₹?(\d+)")

    def __init__(self, currency_symbol: str = "₹"):
        self.currency_symbol = currency_symbol

    async def interpret(
        self, scenario: str, snapshot: FinancialSnapshot, timeframe: int
    ) -> ScenarioAnalysis:
        return self.analyze(scenario, snapshot)

    def analyze(self, scenario: str, snapshot: FinancialSnapshot) -> ScenarioAnalysis:
        text = scenario.lower()

        if "car" in text and self.CAR_PRICE.search(text):
            return self._car_purchase(text, snapshot)

        if "quit" in text or "job" in text:
            return self._career_break(text, snapshot)

        if "rent" in text and self.ANY_AMOUNT.search(text):
            return self._rent_change(text)

        return self._general()

    def _car_purchase(self, text: str, snapshot: FinancialSnapshot) -> ScenarioAnalysis:
        amount = int(self.LAKH_AMOUNT.search(text).group(1)) * LAKH
        return ScenarioAnalysis(
            scenario_type="expense",
            impact=ScenarioImpact(
                one_time_expense=amount,
                monthly_income_change=0,
                monthly_expense_change=0,
                duration=1,
            ),
            description=f"Purchasing a car worth {self.currency_symbol}{amount / LAKH:.1f}L",
            risk_level="high" if amount > snapshot.current_savings else "medium",
            recommendations=[
                "Consider the impact on your emergency fund",
                "Explore financing options to preserve cash flow",
                "Factor in ongoing maintenance and insurance costs",
            ],
            source="fallback",
        )

    def _career_break(self, text: str, snapshot: FinancialSnapshot) -> ScenarioAnalysis:
        match = self.MONTHS.search(text)
        months = int(match.group(1)) if match else DEFAULT_BREAK_MONTHS
        return ScenarioAnalysis(
            scenario_type="income_change",
            impact=ScenarioImpact(
                one_time_expense=0,
                monthly_income_change=-snapshot.monthly_income,
                monthly_expense_change=0,
                duration=months,
            ),
            description=f"Taking a career break for {months} months",
            risk_level="high",
            recommendations=[
                "Build an emergency fund covering 6-12 months of expenses",
                "Consider part-time or freelance income during the break",
                "Plan for health insurance and other benefits",
            ],
            source="fallback",
        )

    def _rent_change(self, text: str) -> ScenarioAnalysis:
        amount = int(self.ANY_AMOUNT.search(text).group(1))
        is_reduction = "reduce" in text or "save" in text
        return ScenarioAnalysis(
            scenario_type="expense",
            impact=ScenarioImpact(
                one_time_expense=0,
                monthly_income_change=0,
                monthly_expense_change=-amount if is_reduction else amount,
                duration=DEFAULT_DURATION_MONTHS,
            ),
            description=(
                f"{'Reducing' if is_reduction else 'Increasing'} monthly rent by "
                f"{self.currency_symbol}{amount}"
            ),
            risk_level="low",
            recommendations=[
                "Use the savings to boost your emergency fund" if is_reduction
                else "Ensure the increase fits your budget",
                "Consider the long-term impact on your savings goals",
                "Factor in any moving costs if relocating",
            ],
            source="fallback",
        )

    def _general(self) -> ScenarioAnalysis:
        return ScenarioAnalysis(
            scenario_type="general",
            impact=ScenarioImpact(
                one_time_expense=0,
                monthly_income_change=0,
                monthly_expense_change=0,
                duration=DEFAULT_DURATION_MONTHS,
            ),
            description="Custom financial scenario analysis",
            risk_level="medium",
            recommendations=[
                "Review your current budget and savings rate",
                "Consider the long-term impact on your financial goals",
                "Monitor your progress and adjust as needed",
            ],
            source="fallback",
        )


# =============================================================================
# AI Strategy
# =============================================================================

SYSTEM_PROMPT = (
    "You are a financial advisor AI. Analyze financial scenarios and provide "
    "structured data for simulation. Respond only with valid JSON."
)


class AIScenarioInterpreter(ScenarioInterpreter):
    """Asks the text-generation service for a JSON ScenarioAnalysis."""

    def __init__(self, ai_service, currency_symbol: str = "₹"):
        self.ai_service = ai_service
        self.currency_symbol = currency_symbol

    async def interpret(
        self, scenario: str, snapshot: FinancialSnapshot, timeframe: int
    ) -> ScenarioAnalysis:
        prompt = self.build_prompt(scenario, snapshot, timeframe)
        text = await self.ai_service.generate(prompt, system=SYSTEM_PROMPT, json_mode=True)
        return parse_analysis(text)

    def build_prompt(self, scenario: str, snapshot: FinancialSnapshot, timeframe: int) -> str:
        sym = self.currency_symbol
        surplus = snapshot.monthly_income - snapshot.monthly_expenses
        return f"""User's Current Financial Status:
- Monthly Income: {sym}{snapshot.monthly_income:.0f}
- Monthly Expenses: {sym}{snapshot.monthly_expenses:.0f}
- Current Savings: {sym}{snapshot.current_savings:.0f}
- Monthly Surplus: {sym}{surplus:.0f}

Scenario: "{scenario}"
Timeframe: {timeframe} months

Analyze this scenario and respond with a JSON object containing:
{{
  "scenarioType": "expense" | "income_change" | "investment" | "goal" | "general",
  "impact": {{
    "oneTimeExpense": number,
    "monthlyIncomeChange": number,
    "monthlyExpenseChange": number,
    "duration": number (months the change lasts)
  }},
  "description": "Brief description of the scenario",
  "riskLevel": "low" | "medium" | "high",
  "recommendations": ["recommendation1", "recommendation2", "recommendation3"]
}}

Examples:
- "Buy a car worth {sym}10L" -> oneTimeExpense: 1000000
- "Quit job for 6 months" -> monthlyIncomeChange: -{snapshot.monthly_income:.0f}, duration: 6
- "Reduce rent by {sym}5000" -> monthlyExpenseChange: -5000"""


_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_analysis(text: str) -> ScenarioAnalysis:
    """
    Read an AI response as a ScenarioAnalysis.

    Raises:
        ScenarioParseError: Not JSON, not an object, no impact, or wrong shape.
    """
    cleaned = (text or "").strip()
    fenced = _CODE_FENCE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1)

    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ScenarioParseError(f"response is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ScenarioParseError("response is not a JSON object")
    if not isinstance(payload.get("impact"), dict):
        raise ScenarioParseError("response has no impact object")

    payload.pop("source", None)
    try:
        analysis = ScenarioAnalysis.model_validate(payload)
    except ValidationError as e:
        raise ScenarioParseError(f"response does not match schema: {e.error_count()} errors") from e

    return analysis.model_copy(update={"source": "ai"})


# =============================================================================
# Decision Point
# =============================================================================

async def interpret_scenario(
    scenario: str,
    snapshot: FinancialSnapshot,
    timeframe: int = 12,
    ai_service=None,
    timeout: float = 20.0,
    currency_symbol: str = "₹",
) -> ScenarioAnalysis:
    """
    Interpret a scenario, preferring the AI strategy when available.

    Args:
        scenario: Free-text what-if.
        snapshot: Current income, expenses and savings.
        timeframe: Projection horizon in months (context for the AI).
        ai_service: Optional AIService; unconfigured or None means fallback.
        timeout: Seconds allowed for the AI strategy.

    Returns:
        ScenarioAnalysis with source "ai" or "fallback".
    """
    fallback = RuleBasedScenarioInterpreter(currency_symbol)

    if ai_service is None or not getattr(ai_service, "is_configured", False):
        log_scenario_fallback("not_configured")
        return await fallback.interpret(scenario, snapshot, timeframe)

    interpreter = AIScenarioInterpreter(ai_service, currency_symbol)
    try:
        analysis = await asyncio.wait_for(
            interpreter.interpret(scenario, snapshot, timeframe), timeout=timeout
        )
        logger.info("Scenario interpreted by AI", scenario_type=analysis.scenario_type)
        return analysis
    except asyncio.TimeoutError:
        log_scenario_fallback("timeout")
    except ScenarioParseError as e:
        log_scenario_fallback(f"unparsable: {e}")
    except Exception as e:
        log_scenario_fallback(f"error: {e}")

    return await fallback.interpret(scenario, snapshot, timeframe)
