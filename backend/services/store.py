"""
Module: store.py
Description: SQLAlchemy-backed persistence for transactions, alerts and scenarios.

All queries are scoped by user id. Database errors are not caught here;
they propagate to the route layer.

Usage:
    store = TransactionStore(db)
    history = store.find_transactions(user_id, since, kind="expense")
"""

from datetime import datetime
from typing import Optional, Iterable
from collections import defaultdict
from sqlalchemy.orm import Session as DBSession

from models import Transaction, Alert, Scenario
from schemas import Anomaly, TransactionIn, TransactionSummary


class TransactionStore:
    """Persistence gateway used by the detector and the routes."""

    def __init__(self, db: DBSession):
        self.db = db

    # =========================================================================
    # Transactions
    # =========================================================================

    def add_transactions(
        self, user_id: str, transactions: list[TransactionIn], now: Optional[datetime] = None
    ) -> list[Transaction]:
        """Insert a batch as unchecked transactions."""
        now = now or datetime.utcnow()
        records = [
            Transaction(
                user_id=user_id,
                amount=t.amount,
                category=t.category,
                description=t.description,
                occurred_at=t.occurred_at or now,
                kind=t.kind,
                anomaly_checked=False,
                created_at=now,
            )
            for t in transactions
        ]
        self.db.add_all(records)
        self.db.commit()
        for record in records:
            self.db.refresh(record)
        return records

    def find_transactions(
        self, user_id: str, since: datetime, kind: Optional[str] = None
    ) -> list[Transaction]:
        """Transactions that occurred on or after `since`, oldest first."""
        query = (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .filter(Transaction.occurred_at >= since)
        )
        if kind:
            query = query.filter(Transaction.kind == kind)
        return query.order_by(Transaction.occurred_at).all()

    def find_transactions_by_ids(self, user_id: str, ids: Iterable[int]) -> list[Transaction]:
        ids = list(ids)
        if not ids:
            return []
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .filter(Transaction.id.in_(ids))
            .order_by(Transaction.occurred_at)
            .all()
        )

    def find_unchecked_transactions(self, user_id: str) -> list[Transaction]:
        """Transactions not yet seen by the anomaly detector."""
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .filter(Transaction.anomaly_checked.is_(False))
            .order_by(Transaction.occurred_at)
            .all()
        )

    def list_transactions(self, user_id: str) -> list[Transaction]:
        """Full history, newest first."""
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.occurred_at.desc())
            .all()
        )

    def delete_transaction(self, user_id: str, transaction_id: int) -> bool:
        """Delete one of the user's transactions. Returns False if none matched."""
        deleted = (
            self.db.query(Transaction)
            .filter(Transaction.id == transaction_id)
            .filter(Transaction.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0

    def mark_processed(self, transaction_ids: Iterable[int], timestamp: datetime) -> int:
        """Flag transactions as anomaly-checked. Returns rows updated."""
        ids = list(transaction_ids)
        if not ids:
            return 0
        updated = (
            self.db.query(Transaction)
            .filter(Transaction.id.in_(ids))
            .update(
                {Transaction.anomaly_checked: True, Transaction.processed_at: timestamp},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated

    @staticmethod
    def summarize(transactions: list[Transaction]) -> TransactionSummary:
        """Totals and per-category expense breakdown."""
        total_expenses = sum(t.amount for t in transactions if t.kind == "expense")
        total_income = sum(t.amount for t in transactions if t.kind == "income")

        breakdown = defaultdict(float)
        for t in transactions:
            if t.kind == "expense":
                breakdown[t.category or "Other"] += t.amount

        return TransactionSummary(
            total_transactions=len(transactions),
            total_expenses=total_expenses,
            total_income=total_income,
            net_amount=total_income - total_expenses,
            category_breakdown=dict(breakdown),
        )

    # =========================================================================
    # Alerts
    # =========================================================================

    def insert_alerts(
        self, user_id: str, anomalies: list[Anomaly], created_at: Optional[datetime] = None
    ) -> list[Alert]:
        """Persist one alert per anomaly. No deduplication against earlier runs."""
        if not anomalies:
            return []
        created_at = created_at or datetime.utcnow()
        records = [
            Alert(
                user_id=user_id,
                kind=a.kind,
                category=a.category,
                amount=a.amount,
                normal_range=a.normal_range,
                severity=a.severity,
                message=a.message,
                created_at=created_at,
                read=False,
                dismissed=False,
            )
            for a in anomalies
        ]
        self.db.add_all(records)
        self.db.commit()
        return records

    def list_alerts(self, user_id: str, since: datetime) -> list[Alert]:
        """Alerts created on or after `since`, newest first."""
        return (
            self.db.query(Alert)
            .filter(Alert.user_id == user_id)
            .filter(Alert.created_at >= since)
            .order_by(Alert.created_at.desc(), Alert.id.desc())
            .all()
        )

    def update_alert(self, user_id: str, alert_id: int, action: str) -> Optional[Alert]:
        """
        Apply a read/dismiss action.

        Returns:
            The updated alert, or None if it does not exist for this user.
        """
        alert = (
            self.db.query(Alert)
            .filter(Alert.id == alert_id)
            .filter(Alert.user_id == user_id)
            .first()
        )
        if alert is None:
            return None

        if action == "read":
            alert.read = True
        elif action == "dismiss":
            alert.dismissed = True
        else:
            raise ValueError(f"Unknown alert action: {action}")

        self.db.commit()
        return alert

    # =========================================================================
    # Scenarios
    # =========================================================================

    def insert_scenario_record(
        self,
        user_id: str,
        scenario: str,
        timeframe: int,
        analysis: dict,
        simulation: dict,
    ) -> Scenario:
        record = Scenario(
            user_id=user_id,
            scenario=scenario,
            timeframe=timeframe,
            analysis=analysis,
            simulation=simulation,
            created_at=datetime.utcnow(),
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def list_scenarios(self, user_id: str, limit: int = 10) -> list[Scenario]:
        """Most recent scenarios first."""
        return (
            self.db.query(Scenario)
            .filter(Scenario.user_id == user_id)
            .order_by(Scenario.created_at.desc(), Scenario.id.desc())
            .limit(limit)
            .all()
        )
