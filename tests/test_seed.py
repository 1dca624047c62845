"""Tests for the CSV seeder."""

import random

import pandas as pd
import pytest
from sqlmodel import Session, select

from machine_advisor.data.models import Machine, PredictionResult, SensorReading
from machine_advisor.data.seed import generate_prediction, load_sensor_frame, main, seed_from_frame


def _write_csv(path, product_ids):
    rows = []
    for i, pid in enumerate(product_ids):
        rows.append({
            "UDI": i + 1,
            "Product ID": pid,
            "Type": pid[0],
            "Air temperature [K]": 298.0 + i,
            "Process temperature [K]": 308.0 + i,
            "Rotational speed [rpm]": 1500 + i,
            "Torque [Nm]": 40.0 + i,
            "Tool wear [min]": 10 * i,
            "Machine failure": 0,
        })
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def test_load_sensor_frame_renames_columns(tmp_path):
    df = load_sensor_frame(_write_csv(tmp_path / "ai4i.csv", ["L47181", "M14860"]))

    assert list(df.columns) == ["product_id", "type", "air_temp", "process_temp", "rotational_speed", "torque", "tool_wear"]
    assert list(df["type"]) == ["L", "M"]


def test_load_sensor_frame_missing_columns(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame([{"Product ID": "L1", "Type": "L"}]).to_csv(path, index=False)

    with pytest.raises(ValueError, match="missing columns"):
        load_sensor_frame(path)


def test_seed_groups_rows_by_product(engine, tmp_path):
    df = load_sensor_frame(_write_csv(tmp_path / "ai4i.csv", ["L47181", "L47181", "M14860"]))

    counts = seed_from_frame(engine, df, rng=random.Random(7), location="Line A")

    assert counts == {"machines": 2, "readings": 3, "predictions": 2}
    with Session(engine) as session:
        machines = session.exec(select(Machine).order_by(Machine.product_id)).all()
        assert [(m.product_id, m.type, m.location) for m in machines] == [("L47181", "L", "Line A"), ("M14860", "M", "Line A")]
        readings = session.exec(
            select(SensorReading).where(SensorReading.machine_id == machines[0].id).order_by(SensorReading.timestamp)
        ).all()
        assert [r.torque for r in readings] == [40.0, 41.0]
        assert len(session.exec(select(PredictionResult)).all()) == 2


def test_seed_again_reuses_machines(engine, tmp_path):
    df = load_sensor_frame(_write_csv(tmp_path / "ai4i.csv", ["H29424"]))

    seed_from_frame(engine, df, rng=random.Random(1))
    counts = seed_from_frame(engine, df, rng=random.Random(2))

    assert counts["machines"] == 0
    assert counts["readings"] == 1


def test_seed_caps_readings_and_machines(engine, tmp_path):
    df = load_sensor_frame(_write_csv(tmp_path / "ai4i.csv", ["L1"] * 5 + ["M1", "H1"]))

    counts = seed_from_frame(engine, df, readings_per_machine=2, max_machines=2, rng=random.Random(0))

    assert counts == {"machines": 2, "readings": 3, "predictions": 2}


@pytest.mark.parametrize("machine_type", ["L", "M", "H"])
def test_generated_predictions_stay_in_range(machine_type):
    rng = random.Random(42)
    machine = Machine(product_id=f"{machine_type}0001", type=machine_type)

    for _ in range(200):
        pred = generate_prediction(machine, rng)
        assert 0.05 <= pred.risk_score <= 0.95
        assert 0.7 <= pred.confidence <= 0.95
        if pred.risk_score > 0.7:
            assert pred.failure_predicted
        if pred.failure_predicted:
            assert pred.failure_type
            assert pred.predicted_failure_time > pred.timestamp
        else:
            assert pred.predicted_failure_time is None


def test_seeded_predictions_are_reproducible():
    machine = Machine(product_id="M0001", type="M")

    first = generate_prediction(machine, random.Random(5))
    second = generate_prediction(machine, random.Random(5))

    assert (first.risk_score, first.failure_predicted, first.failure_type) == (
        second.risk_score, second.failure_predicted, second.failure_type,
    )


def test_main_seeds_database_file(tmp_path, capsys):
    csv = _write_csv(tmp_path / "ai4i.csv", ["L47181", "M14860"])
    url = f"sqlite:///{tmp_path / 'seed.db'}"

    main([str(csv), "--database-url", url, "--seed", "3"])

    assert "Seeded 2 machines, 2 readings, 2 predictions" in capsys.readouterr().out


def test_generated_prediction_times_are_timezone_aware():
    rng = random.Random(11)
    machine = Machine(product_id="H0001", type="H")

    preds = [generate_prediction(machine, rng) for _ in range(50)]

    assert all(p.timestamp.tzinfo is not None for p in preds)
    assert all(p.predicted_failure_time.tzinfo is not None for p in preds if p.failure_predicted)
