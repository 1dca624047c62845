import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()  # load once at import; no printing secrets

# ------------------------------------------------------------------
# LLM
# ------------------------------------------------------------------
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").lower()     # "openai" | "ollama"
LLM_MODEL    = os.getenv("LLM_MODEL", "gpt-4o-mini")           # or ollama model
LLM_TEMP     = float(os.getenv("LLM_TEMPERATURE", "0.1"))
LLM_TIMEOUT  = float(os.getenv("LLM_TIMEOUT_SECS", "30"))
MAX_RETRIES  = int(os.getenv("LLM_MAX_RETRIES", "2"))

# ------------------------------------------------------------------
# Data
# ------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./machine_advisor.db")

# ------------------------------------------------------------------
# Workflow sizes
# ------------------------------------------------------------------
SENSOR_WINDOW   = int(os.getenv("SENSOR_WINDOW", "10"))    # readings per single-machine query
ANOMALY_WINDOW  = int(os.getenv("ANOMALY_WINDOW", "5"))    # readings per machine for anomaly scan
OVERHEAT_WINDOW = int(os.getenv("OVERHEAT_WINDOW", "10"))
HISTORY_TURNS   = int(os.getenv("HISTORY_TURNS", "5"))
ALERT_CAP       = int(os.getenv("ALERT_CAP", "5"))


def _f(name: str, default: str) -> float:
    return float(os.getenv(name, default))


@dataclass(frozen=True)
class Thresholds:
    """Domain-tuned cut-offs for risk levels and anomaly flags.

    Defaults reproduce the values the maintenance team has been running with;
    every field can be overridden through the environment.
    """

    # risk level bins
    risk_high: float = 0.7
    risk_moderate: float = 0.4

    # single-machine sensor means
    process_temp_k: float = 310.0
    air_temp_k: float = 30.0
    torque_nm: float = 50.0
    tool_wear_min: float = 150.0

    # fleet anomaly scan
    anomaly_risk_floor: float = 0.5
    anomaly_max_process_temp: float = 90.0
    anomaly_speed_variance: float = 10000.0
    anomaly_max_torque: float = 80.0

    # fleet overheating scan
    overheat_mean_temp: float = 80.0
    overheat_risk_score: float = 0.8
    overheat_keep_above: float = 0.5

    @classmethod
    def from_env(cls) -> "Thresholds":
        return cls(
            risk_high=_f("RISK_HIGH", "0.7"),
            risk_moderate=_f("RISK_MODERATE", "0.4"),
            process_temp_k=_f("PROCESS_TEMP_K", "310"),
            air_temp_k=_f("AIR_TEMP_K", "30"),
            torque_nm=_f("TORQUE_NM", "50"),
            tool_wear_min=_f("TOOL_WEAR_MIN", "150"),
            anomaly_risk_floor=_f("ANOMALY_RISK_FLOOR", "0.5"),
            anomaly_max_process_temp=_f("ANOMALY_MAX_PROCESS_TEMP", "90"),
            anomaly_speed_variance=_f("ANOMALY_SPEED_VARIANCE", "10000"),
            anomaly_max_torque=_f("ANOMALY_MAX_TORQUE", "80"),
            overheat_mean_temp=_f("OVERHEAT_MEAN_TEMP", "80"),
            overheat_risk_score=_f("OVERHEAT_RISK_SCORE", "0.8"),
            overheat_keep_above=_f("OVERHEAT_KEEP_ABOVE", "0.5"),
        )


THRESHOLDS = Thresholds.from_env()
