"""
Medlink Triage - Structured Logging Tests

Run with: pytest tests/test_logging.py -v
"""

import json
import logging

import pytest

from medlink.core.logging import (
    HumanReadableFormatter,
    LogContext,
    StructuredFormatter,
    call_id_var,
    mask_call_id,
    mask_sensitive_data,
    request_id_var,
)


def make_record(message: str = "hello", data=None) -> logging.LogRecord:
    record = logging.LogRecord("medlink.test", logging.INFO, __file__, 1, message, None, None)
    if data is not None:
        record.data = data
    return record


class TestMasking:

    def test_mask_call_id(self):
        assert mask_call_id("CA1234567") == "***4567"
        assert mask_call_id("abc") == "***"
        assert mask_call_id(None) is None

    def test_mask_sensitive_data(self):
        masked = mask_sensitive_data({
            "address": "25 rue Victor Hugo",
            "tier": "immediate",
            "nested": {"utterance": "il ne respire plus", "count": 3},
        })
        assert masked["address"] == "[REDACTED, 18 chars]"
        assert masked["tier"] == "immediate"
        assert masked["nested"]["utterance"] == "[REDACTED, 18 chars]"
        assert masked["nested"]["count"] == 3


class TestLogContext:

    def test_context_set_and_reset(self):
        with LogContext(call_id="CA1234567", request_id="utt_1"):
            assert call_id_var.get() == "CA1234567"
            assert request_id_var.get() == "utt_1"
        assert call_id_var.get() is None
        assert request_id_var.get() is None

    def test_json_formatter_includes_masked_context(self):
        with LogContext(call_id="CA1234567", request_id="utt_1"):
            line = StructuredFormatter().format(make_record(data={"address": "10 rue X"}))

        entry = json.loads(line)
        assert entry["call_id"] == "***4567"
        assert entry["request_id"] == "utt_1"
        assert entry["message"] == "hello"
        assert entry["data"]["address"] == "[REDACTED, 8 chars]"

    def test_human_formatter(self):
        with LogContext(call_id="CA1234567"):
            line = HumanReadableFormatter().format(make_record())
        assert "[call=***4567]" in line
        assert line.endswith("| hello")


class TestOrchestratorPayloads:
    """Structured payloads emitted while handling calls."""

    @pytest.mark.asyncio
    async def test_immediate_tier_logged_with_data(self, orchestrator, caplog):
        with caplog.at_level(logging.WARNING, logger="medlink.core.orchestrator"):
            await orchestrator.handle("CA1234567", "Ma femme est inconsciente et ne respire plus")

        records = [r for r in caplog.records if getattr(r, "data", None)]
        assert records
        data = records[0].data
        assert data["tier"] == "immediate"
        assert data["priority"] == "P0"
        assert data["resource"] == "smur+vsav"

        entry = json.loads(StructuredFormatter().format(records[0]))
        assert entry["data"]["score"] == data["score"]

    def test_sensitive_keys_redacted_in_payload(self):
        line = StructuredFormatter().format(make_record(data={
            "medical_history": ["diabétique"],
            "transcript": "il ne respire plus",
            "smart_tier": "immediate",
        }))
        data = json.loads(line)["data"]
        assert data["medical_history"] == "[REDACTED]"
        assert data["transcript"] == "[REDACTED, 18 chars]"
        assert data["smart_tier"] == "immediate"
