import unittest
from unittest.mock import MagicMock, patch

from reconciler.observability import otel


class ObservabilityDisabledTests(unittest.TestCase):
    def test_helpers_are_noops_when_disabled(self) -> None:
        with patch.object(otel, "_enabled", False), patch.object(otel, "_prom_enabled", False):
            with otel.start_span("registry.load_entries", {"entries": 3}) as span:
                self.assertIsNone(span)
            otel.record_event("assistant", "applied")
            otel.record_ingestion("load", 5, 1.5)
            otel.record_parser_failure("event:result")

    def test_endpoint_normalization(self) -> None:
        self.assertEqual(otel._normalize_otlp_endpoint("http://collector:4318", "/v1/traces"), "http://collector:4318/v1/traces")
        self.assertEqual(otel._normalize_otlp_endpoint("http://collector:4318/v1/", "/v1/metrics"), "http://collector:4318/v1/metrics")
        self.assertEqual(otel._normalize_otlp_endpoint("", "/v1/traces"), "")


class ObservabilityEnabledTests(unittest.TestCase):
    def test_counters_receive_normalized_labels(self) -> None:
        counter = MagicMock()
        with patch.object(otel, "_enabled", True), patch.object(otel, "_events_counter", counter):
            otel.record_event("", "noop")
        counter.add.assert_called_once_with(1, {"event_type": "unknown", "result": "noop"})

    def test_empty_ingestion_skips_counter_but_records_latency(self) -> None:
        counter = MagicMock()
        hist = MagicMock()
        with patch.object(otel, "_enabled", True), patch.object(otel, "_ingestion_counter", counter), patch.object(
            otel, "_ingestion_latency_hist", hist
        ):
            otel.record_ingestion("append", 0, 2.0)
        counter.add.assert_not_called()
        hist.record.assert_called_once_with(2.0, {"mode": "append"})


if __name__ == "__main__":
    unittest.main()
