"""
Read-side access to machines, sensor readings and precomputed predictions.

Every public method opens its own short-lived session, so a single
``MachineRepository`` can be shared by concurrent workflow runs.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from statistics import fmean
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from machine_advisor.agent.analysis import detect_window_anomalies, risk_level_from_score
from machine_advisor.agent.schemas import (
    MachineFilters,
    MachineRankEntry,
    PredictionSnapshot,
    SensorDataPoint,
)
from machine_advisor.config import ANOMALY_WINDOW, OVERHEAT_WINDOW, THRESHOLDS, Thresholds
from machine_advisor.data.models import Machine, PredictionResult, SensorReading, utcnow
from machine_advisor.observability.logging_setup import logger

_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

TIME_WINDOWS = {
    "1_day": timedelta(days=1),
    "3_days": timedelta(days=3),
    "1_week": timedelta(days=7),
    "1_month": timedelta(days=30),
}


def window_cutoff(time_window: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    delta = TIME_WINDOWS.get(time_window or "")
    if delta is None:
        return None
    return (now or utcnow()) - delta


def _reading(row: SensorReading) -> SensorDataPoint:
    return SensorDataPoint.model_validate(row, from_attributes=True)


def _prediction(row: PredictionResult) -> PredictionSnapshot:
    return PredictionSnapshot.model_validate(row, from_attributes=True)


class MachineRepository:
    def __init__(self, engine: Engine, thresholds: Thresholds = THRESHOLDS):
        self.engine = engine
        self.thresholds = thresholds

    # ------------------------------------------------------------------
    # Single machine
    # ------------------------------------------------------------------
    def get_machine(self, id_or_product_id: str) -> Optional[Machine]:
        """Look a machine up by uuid, then by product id (case-insensitive)."""
        key = (id_or_product_id or "").strip()
        if not key:
            return None
        with Session(self.engine) as session:
            if _UUID.match(key):
                machine = session.get(Machine, key)
                if machine:
                    return machine
            machine = session.exec(
                select(Machine).where(func.lower(Machine.product_id) == key.lower())
            ).first()
        if machine is None:
            logger.info("machine_not_found", extra={"event": "machine_not_found", "key": key})
        return machine

    def search_machines(
        self,
        product_id: Optional[str] = None,
        name: Optional[str] = None,
        location: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[Machine]:
        filters = MachineFilters(
            product_id=product_id or None,
            name=name or None,
            location=location or None,
            type=type.upper() if type else None,
        )
        with Session(self.engine) as session:
            machines = self._machines(session, filters)
        logger.info(
            "search_machines",
            extra={"event": "search_machines", "criteria": filters.model_dump(exclude_none=True), "found": len(machines)},
        )
        return machines

    def get_sensor_data(self, machine_id: str, limit: int = 10) -> List[SensorDataPoint]:
        """Most recent ``limit`` readings, oldest first."""
        with Session(self.engine) as session:
            rows = self._recent_readings(session, machine_id, limit)
        return [_reading(r) for r in reversed(rows)]

    def get_latest_prediction(self, machine_id: str) -> Optional[PredictionSnapshot]:
        with Session(self.engine) as session:
            row = self._latest_prediction(session, machine_id)
        return _prediction(row) if row else None

    # ------------------------------------------------------------------
    # Fleet aggregates (ordered by product id; callers rank)
    # ------------------------------------------------------------------
    def get_machines_by_risk(
        self,
        time_window: Optional[str] = None,
        risk_threshold: Optional[str] = None,
        filters: Optional[MachineFilters] = None,
    ) -> List[MachineRankEntry]:
        # time_window is accepted for signature parity; risk always uses the latest prediction
        entries = []
        with Session(self.engine) as session:
            for machine in self._machines(session, filters):
                pred = self._latest_prediction(session, machine.id)
                score = pred.risk_score if pred else 0.0
                alerts = [f"Potential failure detected: {pred.failure_type}"] if pred and pred.failure_predicted else []
                entries.append(self._entry(machine, score, risk_level_from_score(score, self.thresholds), alerts))

        threshold = (risk_threshold or "").lower()
        if threshold == "high":
            entries = [e for e in entries if e.risk_level == "HIGH"]
        elif threshold == "moderate":
            entries = [e for e in entries if e.risk_level in ("MODERATE", "HIGH")]
        return entries

    def get_machines_by_prediction(
        self,
        time_window: Optional[str] = None,
        filters: Optional[MachineFilters] = None,
    ) -> List[MachineRankEntry]:
        now = utcnow()
        cutoff = window_cutoff(time_window, now)
        label = f"within {time_window}" if time_window in TIME_WINDOWS else "soon"
        entries = []
        with Session(self.engine) as session:
            for machine in self._machines(session, filters):
                stmt = (
                    select(PredictionResult)
                    .where(PredictionResult.machine_id == machine.id)
                    .where(PredictionResult.failure_predicted == True)  # noqa: E712
                    .where(PredictionResult.timestamp <= now)
                )
                if cutoff is not None:
                    stmt = stmt.where(PredictionResult.timestamp >= cutoff)
                pred = session.exec(stmt.order_by(col(PredictionResult.timestamp).desc())).first()
                if pred is None:
                    continue
                entry = self._entry(
                    machine, pred.risk_score, "HIGH",
                    [f"Failure predicted {label}: {pred.failure_type or 'Unknown type'}"],
                )
                entry.predicted_failure_type = pred.failure_type
                entry.predicted_failure_time = pred.predicted_failure_time
                entries.append(entry)
        return entries

    def get_machines_by_anomaly(self, filters: Optional[MachineFilters] = None) -> List[MachineRankEntry]:
        entries = []
        with Session(self.engine) as session:
            for machine in self._machines(session, filters):
                pred = self._latest_prediction(session, machine.id)
                if pred is None or pred.risk_score <= self.thresholds.anomaly_risk_floor:
                    continue
                readings = [_reading(r) for r in self._recent_readings(session, machine.id, ANOMALY_WINDOW)]
                anomalies = detect_window_anomalies(readings, self.thresholds)
                entry = self._entry(
                    machine, pred.risk_score, risk_level_from_score(pred.risk_score, self.thresholds), anomalies[:2],
                )
                entry.anomalies = anomalies
                entries.append(entry)
        return entries

    def get_machines_by_overheating(
        self,
        time_window: Optional[str] = None,
        filters: Optional[MachineFilters] = None,
    ) -> List[MachineRankEntry]:
        t = self.thresholds
        now = utcnow()
        cutoff = window_cutoff(time_window, now)
        entries = []
        with Session(self.engine) as session:
            for machine in self._machines(session, filters):
                rows = self._recent_readings(session, machine.id, OVERHEAT_WINDOW, since=cutoff, until=now)
                avg_temp = fmean(r.process_temp for r in rows) if rows else 0.0
                overheating = avg_temp > t.overheat_mean_temp
                if overheating:
                    score = t.overheat_risk_score
                    level = "HIGH"
                    alerts = [f"High process temperature: {avg_temp:.2f} - overheating risk"]
                else:
                    pred = self._latest_prediction(session, machine.id)
                    score = pred.risk_score if pred else 0.0
                    level = risk_level_from_score(score, t)
                    alerts = []
                if score <= t.overheat_keep_above:
                    continue
                entry = self._entry(machine, score, level, alerts)
                entry.current_temp = rows[0].process_temp if rows else 0.0
                entry.avg_temp = round(avg_temp, 2)
                entries.append(entry)
        return entries

    def get_all_machines_status(self, filters: Optional[MachineFilters] = None) -> List[MachineRankEntry]:
        entries = []
        with Session(self.engine) as session:
            for machine in self._machines(session, filters):
                pred = self._latest_prediction(session, machine.id)
                latest = self._recent_readings(session, machine.id, 1)
                score = pred.risk_score if pred else 0.0
                alerts = [f"Failure predicted: {pred.failure_type}"] if pred and pred.failure_predicted else []
                entry = self._entry(machine, score, risk_level_from_score(score, self.thresholds), alerts)
                entry.status = machine.status
                entry.current_temp = latest[0].process_temp if latest else 0.0
                entry.last_update = latest[0].timestamp if latest else machine.created_at
                entries.append(entry)
        return entries

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _machines(session: Session, filters: Optional[MachineFilters]) -> List[Machine]:
        stmt = select(Machine)
        if filters is not None:
            if filters.product_id:
                stmt = stmt.where(func.lower(Machine.product_id) == filters.product_id.lower())
            if filters.name:
                stmt = stmt.where(col(Machine.name).ilike(f"%{filters.name}%"))
            if filters.location:
                stmt = stmt.where(col(Machine.location).ilike(f"%{filters.location}%"))
            if filters.type:
                stmt = stmt.where(Machine.type == filters.type.upper())
        return list(session.exec(stmt.order_by(Machine.product_id)).all())

    @staticmethod
    def _latest_prediction(session: Session, machine_id: str) -> Optional[PredictionResult]:
        return session.exec(
            select(PredictionResult)
            .where(PredictionResult.machine_id == machine_id)
            .order_by(col(PredictionResult.timestamp).desc())
        ).first()

    @staticmethod
    def _recent_readings(
        session: Session,
        machine_id: str,
        limit: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[SensorReading]:
        """Newest first."""
        stmt = select(SensorReading).where(SensorReading.machine_id == machine_id)
        if since is not None:
            stmt = stmt.where(SensorReading.timestamp >= since)
        if until is not None:
            stmt = stmt.where(SensorReading.timestamp <= until)
        return list(session.exec(stmt.order_by(col(SensorReading.timestamp).desc()).limit(limit)).all())

    @staticmethod
    def _entry(machine: Machine, score: float, level: str, alerts: List[str]) -> MachineRankEntry:
        return MachineRankEntry(
            id=machine.id,
            product_id=machine.product_id,
            name=machine.name,
            type=machine.type,
            location=machine.location,
            risk_score=score,
            risk_level=level,
            critical_alerts=alerts,
        )


def machine_summary(machine: Machine) -> Dict[str, Optional[str]]:
    """Plain dict used for clarification candidates."""
    return {
        "id": machine.id,
        "product_id": machine.product_id,
        "name": machine.name,
        "type": machine.type,
        "status": machine.status,
        "location": machine.location,
    }
