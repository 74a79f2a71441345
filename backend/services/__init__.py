"""Backend services for spending analysis and scenario projection."""

from .ai_service import AIService, AIServiceUnavailable
from .store import TransactionStore
from .pattern_analyzer import PatternAnalyzer, analyze_spending_patterns
from .anomaly_detector import AnomalyDetector, detect_anomalies
from .scenario_interpreter import (
    ScenarioInterpreter,
    AIScenarioInterpreter,
    RuleBasedScenarioInterpreter,
    ScenarioParseError,
    interpret_scenario,
)
from .cashflow_simulator import CashFlowSimulator, simulate_cash_flow

__all__ = [
    "AIService",
    "AIServiceUnavailable",
    "TransactionStore",
    "PatternAnalyzer",
    "analyze_spending_patterns",
    "AnomalyDetector",
    "detect_anomalies",
    "ScenarioInterpreter",
    "AIScenarioInterpreter",
    "RuleBasedScenarioInterpreter",
    "ScenarioParseError",
    "interpret_scenario",
    "CashFlowSimulator",
    "simulate_cash_flow",
]
