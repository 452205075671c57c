# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.
"""Unit tests for Metrics and the structured log formatter."""

import json
import logging
import sys

from tenantry.core.logging import StructuredFormatter, setup_logging
from tenantry.core.metrics import HISTOGRAM_WINDOW, Metrics


class TestMetrics:
    def test_counter_increment(self):
        m = Metrics()
        m.inc("guard:allow")
        m.inc("guard:allow")
        assert m.get_counter("guard:allow") == 2

    def test_counter_default_zero(self):
        m = Metrics()
        assert m.get_counter("nonexistent") == 0

    def test_gauge(self):
        m = Metrics()
        m.set_gauge("membership_contexts", 5.0)
        assert m.get_gauge("membership_contexts") == 5.0

    def test_observe(self):
        m = Metrics()
        m.observe("guard_latency", 100)
        m.observe("guard_latency", 200)
        snap = m.snapshot()
        assert snap["histogram_guard_latency"]["avg"] == 150.0
        assert snap["histogram_guard_latency"]["count"] == 2

    def test_histogram_window_is_bounded(self):
        m = Metrics()
        for i in range(HISTOGRAM_WINDOW + 10):
            m.observe("latency", i)
        assert m.snapshot()["histogram_latency"]["count"] == HISTOGRAM_WINDOW

    def test_reset(self):
        m = Metrics()
        m.inc("cache:hit")
        m.reset()
        assert m.get_counter("cache:hit") == 0

    def test_snapshot_has_uptime(self):
        m = Metrics()
        snap = m.snapshot()
        assert snap["uptime_seconds"] >= 0


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("tenantry.guards", logging.INFO, __file__, 1, "Access %s", ("allow",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_json_with_context(self):
        line = StructuredFormatter().format(make_record(trace_id="tr1", tenant_id="t_acme", principal_id="p_1"))
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["module"] == "tenantry.guards"
        assert entry["message"] == "Access allow"
        assert entry["tenant_id"] == "t_acme"
        assert entry["principal_id"] == "p_1"
        assert entry["trace_id"] == "tr1"

    def test_empty_context_omitted(self):
        entry = json.loads(StructuredFormatter().format(make_record(tenant_id=None)))
        assert "tenant_id" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record()
            record.exc_info = sys.exc_info()
        entry = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]

    def test_setup_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("debug")
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
