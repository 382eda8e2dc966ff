from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_asset_ingested() -> None:
    _inc("assets_ingested")


def record_deliverables_marked(count: int) -> None:
    if count > 0:
        _inc("deliverables_marked", count)


def record_approval() -> None:
    _inc("approvals")


def record_revision_request() -> None:
    _inc("revision_requests")


def record_expired(count: int = 1) -> None:
    if count > 0:
        _inc("deliverables_expired", count)


def record_access(operation: str) -> None:
    _inc(f"access_{operation}")


def record_access_denied(reason: str) -> None:
    _inc(f"access_denied_{reason}")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
