# FILE: tests/test_config_and_telemetry.py
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from capsule.config import Settings
from capsule.services.telemetry import get_telemetry_summary, record_event


def test_code_length_is_bounded(tmp_path):
    with pytest.raises(ValidationError):
        Settings(code_length=21, data_dir=str(tmp_path), metadata_dir=str(tmp_path), logs_dir=str(tmp_path))


def test_upload_ttl_stays_short(tmp_path):
    with pytest.raises(ValidationError):
        Settings(upload_url_ttl_seconds=7200, data_dir=str(tmp_path), metadata_dir=str(tmp_path), logs_dir=str(tmp_path))


def test_r2_endpoint_is_derived_from_account(tmp_path):
    settings = Settings(
        r2_account_id="abc123",
        data_dir=str(tmp_path),
        metadata_dir=str(tmp_path),
        logs_dir=str(tmp_path),
    )
    assert settings.resolved_s3_endpoint == "https://abc123.r2.cloudflarestorage.com"

    explicit = Settings(
        r2_account_id="abc123",
        s3_endpoint_url="http://localhost:9000",
        data_dir=str(tmp_path),
        metadata_dir=str(tmp_path),
        logs_dir=str(tmp_path),
    )
    assert explicit.resolved_s3_endpoint == "http://localhost:9000"


def test_record_event_writes_jsonl_and_tail(telemetry_enabled, settings):
    record_event("memory_created", code="12345678", images=2)

    summary = get_telemetry_summary()
    assert summary["counters_in_memory"] == {"memory_created": 1}
    assert summary["recent_events"][-1]["code"] == "12345678"

    files = list((Path(settings.logs_dir) / "telemetry").glob("events-*.jsonl"))
    assert len(files) == 1
    lines = files[0].read_text().splitlines()
    assert json.loads(lines[-1])["event"] == "memory_created"


def test_record_event_is_noop_when_disabled(settings):
    assert settings.telemetry_enabled is False
    before = get_telemetry_summary()["total_events_in_memory"]

    record_event("memory_deleted", code="12345678")

    assert get_telemetry_summary()["total_events_in_memory"] == before
