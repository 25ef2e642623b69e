from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict


@dataclass
class TimerStat:
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0


_lock = Lock()
_counters: Dict[str, int] = {}
_timers: Dict[str, TimerStat] = {}


def _make_key(name: str, labels: Dict[str, Any]) -> str:
    if not labels:
        return name
    parts = [f"{k}={labels[k]}" for k in sorted(labels.keys())]
    return f"{name}|{'|'.join(parts)}"


def inc_counter(name: str, value: int = 1, **labels: Any) -> None:
    key = _make_key(name, labels)
    with _lock:
        _counters[key] = _counters.get(key, 0) + int(value)


def observe_ms(name: str, value_ms: float, **labels: Any) -> None:
    key = _make_key(name, labels)
    with _lock:
        stat = _timers.get(key)
        if stat is None:
            stat = TimerStat()
            _timers[key] = stat
        stat.count += 1
        stat.total_ms += float(value_ms)
        if float(value_ms) > stat.max_ms:
            stat.max_ms = float(value_ms)


def get_counter(name: str, **labels: Any) -> int:
    key = _make_key(name, labels)
    with _lock:
        return _counters.get(key, 0)


def snapshot_metrics() -> Dict[str, Dict[str, Any]]:
    with _lock:
        counters = dict(_counters)
        timers = {
            k: {
                "count": v.count,
                "total_ms": round(v.total_ms, 3),
                "avg_ms": round((v.total_ms / v.count), 3) if v.count else 0.0,
                "max_ms": round(v.max_ms, 3),
            }
            for k, v in _timers.items()
        }
    return {"counters": counters, "timers": timers}


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _timers.clear()
