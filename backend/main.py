"""
Module: main.py
Description: FastAPI application entry point for the FinPersona analysis backend.

This module provides REST API endpoints for:
    - Transaction intake and history
    - Spending anomaly detection and alert management
    - What-if scenario interpretation and cash-flow projection

Dependencies:
    - FastAPI for REST API framework
    - SQLAlchemy for database operations
    - OpenAI for AI-powered scenario interpretation

Usage:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000
"""

from datetime import datetime, timedelta
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from database import get_db, init_db
from settings import settings
from schemas import (
    TransactionBatchRequest, AddTransactionsResponse,
    TransactionOut, TransactionHistoryResponse,
    DetectRequest, DetectResponse,
    AlertOut, AlertListResponse, AlertUpdateRequest, MessageResponse,
    FinancialSnapshot, ScenarioRequest, ScenarioResponse,
    ScenarioHistoryItem, ScenarioHistoryResponse,
    HealthResponse,
)
from services import (
    AIService, TransactionStore, AnomalyDetector,
    interpret_scenario, simulate_cash_flow,
)
from services.observability import logger, metrics, timed_block


# =============================================================================
# Application Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    logger.info("Starting FinPersona API")
    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down FinPersona API")


# =============================================================================
# FastAPI Application Configuration
# =============================================================================

app = FastAPI(
    title="FinPersona API",
    description="""
    Spending anomaly detection and what-if cash-flow projection.

    ## Features
    - Per-category spending baselines
    - Weekly spike and large transaction alerts
    - AI scenario interpretation with deterministic fallback
    - Month-by-month balance simulation
    """,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Dependency Injection
# =============================================================================

def get_ai_service() -> AIService:
    """
    Dependency: Provide AIService instance.

    Returns:
        AIService: OpenAI wrapper configured from settings.
    """
    return AIService(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        timeout=settings.AI_TIMEOUT_SECONDS,
    )


def get_store(db: DBSession = Depends(get_db)) -> TransactionStore:
    """Dependency: Provide the persistence gateway."""
    return TransactionStore(db)


def get_detector(store: TransactionStore = Depends(get_store)) -> AnomalyDetector:
    """Dependency: Provide an anomaly detector bound to the store."""
    return AnomalyDetector(
        store,
        currency_symbol=settings.CURRENCY_SYMBOL,
        history_days=settings.ANOMALY_HISTORY_DAYS,
    )


def default_snapshot() -> FinancialSnapshot:
    return FinancialSnapshot(
        monthly_income=settings.DEFAULT_MONTHLY_INCOME,
        monthly_expenses=settings.DEFAULT_MONTHLY_EXPENSES,
        current_savings=settings.DEFAULT_CURRENT_SAVINGS,
    )


def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"{action} failed", error=str(error))
    metrics.increment(f"{action.lower().replace(' ', '_')}.failed")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error"
    )


# =============================================================================
# System Endpoints
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint",
)
async def health_check(
    db: DBSession = Depends(get_db),
    ai_service: AIService = Depends(get_ai_service)
) -> HealthResponse:
    """
    Check database and OpenAI connectivity.

    Example:
        GET /health
        Response: {"status": "healthy", "database": "connected", "openai": "disconnected"}
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    try:
        openai_connected = await ai_service.check_connection()
        openai_status = "connected" if openai_connected else "disconnected"
    except Exception as e:
        openai_status = f"error: {str(e)}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return HealthResponse(status=overall_status, database=db_status, openai=openai_status)


@app.get("/metrics", tags=["System"], summary="Get application metrics")
async def get_metrics():
    """Counters, gauges and timing summaries."""
    return metrics.get_summary()


# =============================================================================
# Transaction Endpoints
# =============================================================================

@app.post(
    "/transactions/{user_id}",
    response_model=AddTransactionsResponse,
    tags=["Transactions"],
    summary="Add transactions and check them for anomalies",
)
async def add_transactions(
    user_id: str,
    request: TransactionBatchRequest,
    store: TransactionStore = Depends(get_store),
    detector: AnomalyDetector = Depends(get_detector),
) -> AddTransactionsResponse:
    """
    Insert a batch, then run anomaly detection on exactly that batch.

    A failed detection is logged and does not fail the insert; the batch
    stays unchecked and can be picked up by /anomaly/detect later.

    Example:
        POST /transactions/user-1
        Body: {"transactions": [{"amount": 2500, "category": "Food", "kind": "expense"}]}
    """
    try:
        records = store.add_transactions(user_id, request.transactions)
    except SQLAlchemyError as e:
        raise _internal_error("Add transactions", e)

    anomalies_detected = 0
    try:
        result = detector.detect(user_id, records)
        anomalies_detected = result.anomalies_detected
    except Exception as e:
        logger.error("Anomaly detection after insert failed", error=str(e), user_id=user_id[:8])
        metrics.increment("detection.failed")

    return AddTransactionsResponse(
        inserted_count=len(records),
        anomalies_detected=anomalies_detected,
        message="Transactions added successfully",
    )


@app.get(
    "/transactions/{user_id}",
    response_model=TransactionHistoryResponse,
    tags=["Transactions"],
    summary="Transaction history with totals",
)
async def get_transactions(
    user_id: str,
    store: TransactionStore = Depends(get_store),
) -> TransactionHistoryResponse:
    """All transactions newest first, with income/expense totals and category breakdown."""
    try:
        transactions = store.list_transactions(user_id)
    except SQLAlchemyError as e:
        raise _internal_error("Transaction history", e)

    return TransactionHistoryResponse(
        transactions=[TransactionOut.model_validate(t) for t in transactions],
        summary=store.summarize(transactions),
    )


@app.delete(
    "/transactions/{user_id}/{transaction_id}",
    response_model=MessageResponse,
    tags=["Transactions"],
    summary="Delete a transaction",
)
async def delete_transaction(
    user_id: str,
    transaction_id: int,
    store: TransactionStore = Depends(get_store),
) -> MessageResponse:
    """Remove one transaction. Alerts it already produced are kept."""
    try:
        deleted = store.delete_transaction(user_id, transaction_id)
    except SQLAlchemyError as e:
        raise _internal_error("Delete transaction", e)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found."
        )

    return MessageResponse(message="Transaction deleted successfully")


# =============================================================================
# Anomaly & Alert Endpoints
# =============================================================================

@app.post(
    "/anomaly/detect/{user_id}",
    response_model=DetectResponse,
    tags=["Anomalies"],
    summary="Run anomaly detection on a batch",
)
async def detect_anomalies_for_user(
    user_id: str,
    request: DetectRequest = DetectRequest(),
    store: TransactionStore = Depends(get_store),
    detector: AnomalyDetector = Depends(get_detector),
) -> DetectResponse:
    """
    Detect anomalies for the given transaction ids, or for every unchecked
    transaction of the user when no ids are given.

    Re-running on already checked ids creates duplicate alerts.
    """
    try:
        if request.transaction_ids is not None:
            batch = store.find_transactions_by_ids(user_id, request.transaction_ids)
        else:
            batch = store.find_unchecked_transactions(user_id)

        return detector.detect(user_id, batch)
    except SQLAlchemyError as e:
        raise _internal_error("Anomaly detection", e)


@app.get(
    "/alerts/{user_id}",
    response_model=AlertListResponse,
    tags=["Anomalies"],
    summary="Recent alerts",
)
async def get_alerts(
    user_id: str,
    store: TransactionStore = Depends(get_store),
) -> AlertListResponse:
    """Alerts from the lookback window, newest first."""
    since = datetime.utcnow() - timedelta(days=settings.ALERT_LOOKBACK_DAYS)
    try:
        alerts = store.list_alerts(user_id, since)
    except SQLAlchemyError as e:
        raise _internal_error("List alerts", e)

    return AlertListResponse(alerts=[AlertOut.model_validate(a) for a in alerts])


@app.patch(
    "/alerts/{user_id}/{alert_id}",
    response_model=MessageResponse,
    tags=["Anomalies"],
    summary="Mark an alert read or dismissed",
)
async def update_alert(
    user_id: str,
    alert_id: int,
    request: AlertUpdateRequest,
    store: TransactionStore = Depends(get_store),
) -> MessageResponse:
    """
    Example:
        PATCH /alerts/user-1/7
        Body: {"action": "dismiss"}
    """
    try:
        alert = store.update_alert(user_id, alert_id, request.action)
    except SQLAlchemyError as e:
        raise _internal_error("Update alert", e)

    if alert is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found."
        )

    verb = "read" if request.action == "read" else "dismissed"
    return MessageResponse(message=f"Alert {verb} successfully")


# =============================================================================
# Scenario Endpoints
# =============================================================================

@app.post(
    "/scenarios/simulate/{user_id}",
    response_model=ScenarioResponse,
    tags=["Scenarios"],
    summary="Interpret a what-if scenario and project cash flow",
)
async def simulate_scenario(
    user_id: str,
    request: ScenarioRequest,
    store: TransactionStore = Depends(get_store),
    ai_service: AIService = Depends(get_ai_service),
) -> ScenarioResponse:
    """
    Interpret the scenario (AI with deterministic fallback), simulate the
    projection, and store the result.

    Example:
        POST /scenarios/simulate/user-1
        Body: {"scenario": "What if I quit my job for 6 months?", "timeframe": 12}
    """
    snapshot = request.snapshot or default_snapshot()

    with timed_block("scenario_interpretation"):
        analysis = await interpret_scenario(
            request.scenario,
            snapshot,
            timeframe=request.timeframe,
            ai_service=ai_service,
            timeout=settings.AI_TIMEOUT_SECONDS,
            currency_symbol=settings.CURRENCY_SYMBOL,
        )

    simulation = simulate_cash_flow(snapshot, analysis, request.timeframe)

    try:
        record = store.insert_scenario_record(
            user_id,
            request.scenario,
            request.timeframe,
            analysis.model_dump(mode="json", by_alias=True),
            simulation.model_dump(mode="json", by_alias=True),
        )
    except SQLAlchemyError as e:
        raise _internal_error("Save scenario", e)

    logger.info(
        "Scenario simulated",
        user_id=user_id[:8],
        scenario_type=analysis.scenario_type,
        source=analysis.source,
        feasible=simulation.summary.feasible,
    )
    metrics.increment("scenario.simulated", tags={"source": analysis.source})

    return ScenarioResponse(analysis=analysis, simulation=simulation, scenario_id=record.id)


@app.get(
    "/scenarios/history/{user_id}",
    response_model=ScenarioHistoryResponse,
    tags=["Scenarios"],
    summary="Recent scenarios",
)
async def get_scenario_history(
    user_id: str,
    store: TransactionStore = Depends(get_store),
) -> ScenarioHistoryResponse:
    """The ten most recent scenarios with their headline outcome."""
    try:
        records = store.list_scenarios(user_id, limit=10)
    except SQLAlchemyError as e:
        raise _internal_error("Scenario history", e)

    items = []
    for s in records:
        analysis = s.analysis or {}
        summary = (s.simulation or {}).get("summary", {})
        items.append(ScenarioHistoryItem(
            id=s.id,
            scenario=s.scenario,
            risk_level=analysis.get("riskLevel") or "medium",
            feasible=summary.get("feasible") or False,
            total_change=summary.get("totalChange") or 0,
            created_at=s.created_at,
        ))

    return ScenarioHistoryResponse(scenarios=items)
