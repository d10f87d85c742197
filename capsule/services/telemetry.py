# FILE: capsule/services/telemetry.py
"""
Telemetry and debug event channel (rotated JSONL)

- Stores summary-only lifecycle events to disk (append-only JSONL).
- Rotates daily based on the configured timezone.
- Keeps a small in-memory tail exposed by GET /metrics/telemetry.

Events never carry secret keys; callers pass codes, counts and reasons only.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Deque, Dict

from capsule.config import get_settings

logger = logging.getLogger(__name__)


_MAX_IN_MEMORY_EVENTS = 200
_recent_events: Deque[Dict[str, Any]] = deque(maxlen=_MAX_IN_MEMORY_EVENTS)
_counters: Dict[str, int] = defaultdict(int)


@dataclass(frozen=True)
class TelemetryConfig:
    enabled: bool
    tz_name: str
    retention_days: int
    logs_dir: Path


def _get_config() -> TelemetryConfig:
    settings = get_settings()
    return TelemetryConfig(
        enabled=settings.telemetry_enabled,
        tz_name=settings.telemetry_timezone.strip(),
        retention_days=settings.telemetry_retention_days,
        logs_dir=Path(settings.logs_dir),
    )


def _resolve_tz(tz_name: str):
    """Resolve timezone from IANA name, falling back to UTC if invalid."""
    try:
        from zoneinfo import ZoneInfo

        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid TELEMETRY_TIMEZONE=%s; falling back to UTC", tz_name)
        return timezone.utc


def _telemetry_dir(cfg: TelemetryConfig) -> Path:
    d = cfg.logs_dir / "telemetry"
    d.mkdir(parents=True, exist_ok=True)
    return d


def _event_file_path(cfg: TelemetryConfig, now_utc: datetime) -> Path:
    """Rotation follows the local date in the configured timezone; timestamps stay UTC."""
    local_dt = now_utc.astimezone(_resolve_tz(cfg.tz_name))
    return _telemetry_dir(cfg) / f"events-{local_dt.date().isoformat()}.jsonl"


def _prune_old_files(cfg: TelemetryConfig) -> None:
    """Delete rotated telemetry files older than retention_days (best effort)."""
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(days=max(cfg.retention_days, 1))
        for p in _telemetry_dir(cfg).glob("events-*.jsonl"):
            date_part = p.name.replace("events-", "").replace(".jsonl", "")
            try:
                file_date = datetime.fromisoformat(date_part).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            if file_date < cutoff:
                p.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Telemetry prune skipped: %s", e)


def init_telemetry() -> None:
    """Initialize telemetry (create dirs + retention prune)."""
    cfg = _get_config()
    if not cfg.enabled:
        logger.info("Telemetry disabled")
        return

    _telemetry_dir(cfg)
    _prune_old_files(cfg)
    logger.info(
        "Telemetry initialized (tz=%s retention_days=%s dir=%s)",
        cfg.tz_name,
        cfg.retention_days,
        str(cfg.logs_dir),
    )


def record_event(event: str, **fields: Any) -> None:
    """Record a telemetry event. Failures to persist are logged, never raised."""
    cfg = _get_config()
    if not cfg.enabled:
        return

    now_utc = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {"ts": now_utc.isoformat(), "event": event, **fields}

    _recent_events.append(payload)
    _counters[event] += 1

    path = _event_file_path(cfg, now_utc)
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.warning("Failed to write telemetry event to %s: %s", str(path), e)


def get_telemetry_summary(limit: int = 20) -> Dict[str, Any]:
    """Lightweight summary from the in-memory tail (does not scan JSONL files)."""
    cfg = _get_config()
    return {
        "enabled": cfg.enabled,
        "timezone": cfg.tz_name,
        "retention_days": cfg.retention_days,
        "total_events_in_memory": len(_recent_events),
        "counters_in_memory": dict(_counters),
        "recent_events": list(_recent_events)[-limit:],
    }


def reset_telemetry() -> None:
    """Clear the in-memory tail and counters"""
    _recent_events.clear()
    _counters.clear()
