"""
Load an AI4I-style CSV into the machine tables and attach one prediction per machine.

    python -m machine_advisor.data.seed data/ai4i2020.csv --readings 20 --seed 7

Each distinct ``Product ID`` becomes a machine; its rows (in file order) become
sensor readings spaced one minute apart and ending now.
"""

import argparse
import random
from datetime import timedelta
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from machine_advisor.data.database import build_engine, init_db
from machine_advisor.data.models import Machine, PredictionResult, SensorReading, utcnow
from machine_advisor.observability.logging_setup import logger

COLUMNS = {
    "Product ID": "product_id",
    "Type": "type",
    "Air temperature [K]": "air_temp",
    "Process temperature [K]": "process_temp",
    "Rotational speed [rpm]": "rotational_speed",
    "Torque [Nm]": "torque",
    "Tool wear [min]": "tool_wear",
}

FAILURE_TYPES = [
    "Heat Dissipation Failure",
    "Power Failure",
    "Overstrain Failure",
    "Tool Wear Failure",
    "Random Failures",
]

# type -> (base risk low, base risk span, chance of a predicted failure)
RISK_PROFILE = {
    "L": (0.15, 0.30, 0.15),
    "M": (0.25, 0.40, 0.25),
    "H": (0.40, 0.45, 0.35),
}


def load_sensor_frame(path: str) -> pd.DataFrame:
    df = pd.read_csv(path)
    missing = set(COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"CSV is missing columns: {sorted(missing)}")
    df = df[list(COLUMNS)].rename(columns=COLUMNS)
    df["product_id"] = df["product_id"].astype("string").str.strip()
    df["type"] = df["type"].astype("string").str.strip().str.upper()
    return df.dropna()


def generate_prediction(machine: Machine, rng: random.Random) -> PredictionResult:
    low, span, failure_chance = RISK_PROFILE.get(machine.type, (0.30, 0.30, 0.20))
    base = low + rng.random() * span
    trend = (rng.random() - 0.5) * 0.15
    risk = max(0.05, min(0.95, base + trend))

    failure_predicted = risk > 0.7 or rng.random() < failure_chance
    failure_type: Optional[str] = None
    predicted_at = None
    timestamp = utcnow()
    if failure_predicted:
        if risk > 0.8:
            failure_type = rng.choice(FAILURE_TYPES)
            hours = 6 + rng.random() * 18
        else:
            failure_type = rng.choice(["Tool Wear Failure", "Random Failures"]) if risk > 0.6 else "Random Failures"
            hours = 24 + rng.random() * 72
        predicted_at = timestamp + timedelta(hours=int(hours))

    return PredictionResult(
        machine_id=machine.id,
        timestamp=timestamp,
        risk_score=round(risk, 3),
        failure_predicted=failure_predicted,
        failure_type=failure_type,
        anomaly_detected=rng.random() < 0.1,
        predicted_failure_time=predicted_at,
        confidence=round(0.7 + rng.random() * 0.25, 3),
    )


def seed_from_frame(
    engine: Engine,
    df: pd.DataFrame,
    readings_per_machine: int = 20,
    max_machines: Optional[int] = None,
    rng: Optional[random.Random] = None,
    location: Optional[str] = None,
) -> Dict[str, int]:
    rng = rng or random.Random()
    counts = {"machines": 0, "readings": 0, "predictions": 0}
    now = utcnow()

    with Session(engine) as session:
        for i, (product_id, rows) in enumerate(df.groupby("product_id", sort=False)):
            if max_machines is not None and i >= max_machines:
                break
            machine = session.exec(select(Machine).where(Machine.product_id == product_id)).first()
            if machine is None:
                machine = Machine(product_id=str(product_id), type=str(rows["type"].iloc[0]), location=location)
                session.add(machine)
                session.flush()
                counts["machines"] += 1

            tail = rows.tail(readings_per_machine)
            n = len(tail)
            readings: List[SensorReading] = [
                SensorReading(
                    machine_id=machine.id,
                    air_temp=float(r.air_temp),
                    process_temp=float(r.process_temp),
                    rotational_speed=float(r.rotational_speed),
                    torque=float(r.torque),
                    tool_wear=float(r.tool_wear),
                    timestamp=now - timedelta(minutes=n - 1 - j),
                )
                for j, r in enumerate(tail.itertuples(index=False))
            ]
            session.add_all(readings)
            counts["readings"] += len(readings)

            session.add(generate_prediction(machine, rng))
            counts["predictions"] += 1
        session.commit()

    logger.info("seed_complete", extra={"event": "seed_complete", **counts})
    return counts


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Seed machines, readings and predictions from a CSV")
    parser.add_argument("csv_path")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--readings", type=int, default=20, help="readings kept per machine")
    parser.add_argument("--machines", type=int, default=None, help="cap on machines created")
    parser.add_argument("--location", default=None)
    parser.add_argument("--seed", type=int, default=None, help="RNG seed for reproducible predictions")
    args = parser.parse_args(argv)

    engine = build_engine(args.database_url) if args.database_url else build_engine()
    init_db(engine)
    counts = seed_from_frame(
        engine,
        load_sensor_frame(args.csv_path),
        readings_per_machine=args.readings,
        max_machines=args.machines,
        rng=random.Random(args.seed),
        location=args.location,
    )
    print(f"Seeded {counts['machines']} machines, {counts['readings']} readings, {counts['predictions']} predictions")


if __name__ == "__main__":
    main()
