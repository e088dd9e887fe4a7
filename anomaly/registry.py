from anomaly.base import Scenario

from typing import Dict, List, Tuple


_ANOMALIES: Dict[str, Tuple[Scenario, str]] = dict()


def register(anomaly_key: str, scenario: Scenario, description: str | None = None) -> None:
    if anomaly_key in _ANOMALIES:
        raise ValueError(f"Anomaly {anomaly_key} already registered")

    description = description.strip() if description else ""

    _ANOMALIES[anomaly_key] = (scenario, description)


def resolve(anomaly_key: str) -> Tuple[Scenario, str]:
    anomaly = _ANOMALIES.get(anomaly_key, None)
    if anomaly is None:
        raise ValueError(f"Unknown anomaly: {anomaly_key}.")

    return anomaly


def get_registered() -> List[str]:
    return list(_ANOMALIES.keys())
