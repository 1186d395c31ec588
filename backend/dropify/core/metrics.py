from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_drop_issued(kind: str) -> None:
    _inc(f"drops_issued.{kind}")


def record_drop_rejected(reason: str) -> None:
    _inc(f"drops_rejected.{reason}")


def record_drop_failed(cause: str) -> None:
    _inc(f"drops_failed.{cause}")


def record_admission_conflict() -> None:
    _inc("admission_conflicts")


def record_redemption() -> None:
    _inc("redemptions_recorded")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
