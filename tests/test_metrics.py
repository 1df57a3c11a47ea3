"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from src.services.metrics import MetricsClient


def _dims(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestMetricsRecording:
    """Verify that each recorder buffers the right data points."""

    def _make_client(self, *, enabled: bool = False) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
            return MetricsClient()

    def test_successful_tool_call_appends_two_data_points(self):
        client = self._make_client()
        client.record_tool_call("check_calendar", success=True, latency_ms=212.0)
        names = [m["MetricName"] for m in client._buffer]
        assert names == ["Tool/ExecutionCount", "Tool/Latency"]

    def test_failed_tool_call_adds_error_count(self):
        client = self._make_client()
        client.record_tool_call(
            "send_email", success=False, latency_ms=80.0, error_type="GoogleAPIError",
        )
        error_metric = next(m for m in client._buffer if m["MetricName"] == "Tool/ErrorCount")
        assert _dims(error_metric) == {"Capability": "send_email", "ErrorType": "GoogleAPIError"}

    def test_tool_dimensions_include_capability_and_status(self):
        client = self._make_client()
        client.record_tool_call("get_team_members", success=True, latency_ms=5.0)
        count_metric = client._buffer[0]
        assert _dims(count_metric) == {"Capability": "get_team_members", "Status": "success"}

    def test_model_failure_without_error_type(self):
        client = self._make_client()
        client.record_model_call(success=False, latency_ms=1500.0)
        error_metric = next(m for m in client._buffer if m["MetricName"] == "Model/ErrorCount")
        assert _dims(error_metric) == {"ErrorType": "unknown"}

    def test_model_success(self):
        client = self._make_client()
        client.record_model_call(success=True, latency_ms=900.0)
        latency = next(m for m in client._buffer if m["MetricName"] == "Model/Latency")
        assert latency["Value"] == 900.0
        assert latency["Unit"] == "Milliseconds"

    def test_action_transition(self):
        client = self._make_client()
        client.record_action_transition("executed")
        (metric,) = client._buffer
        assert metric["MetricName"] == "Action/Transition"
        assert _dims(metric) == {"Status": "executed"}


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_does_not_call_boto3(self):
        client = MetricsClient(enabled=False)
        client.record_action_transition("pending")
        with patch("boto3.client") as mock_boto:
            assert client.flush() == 0
        mock_boto.assert_not_called()

    def test_flush_clears_buffer(self):
        client = MetricsClient(enabled=False)
        client.record_tool_call("check_calendar", success=True, latency_ms=100.0)
        assert len(client._buffer) == 2
        client.flush()
        assert len(client._buffer) == 0

    @patch.object(MetricsClient, "_start_flush_thread")
    def test_flush_when_enabled_calls_put_metric_data(self, _thread):
        client = MetricsClient(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_tool_call("check_calendar", success=True, latency_ms=100.0)
        sent = client.flush()

        assert sent == 2
        mock_cw.put_metric_data.assert_called_once()
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "NovaAgent"
        assert len(call_args[1]["MetricData"]) == 2

    @patch.object(MetricsClient, "_start_flush_thread")
    def test_flush_batches_at_api_limit(self, _thread):
        client = MetricsClient(enabled=True)
        client._cw_client = MagicMock()
        for _ in range(1_200):
            client.record_action_transition("executed")

        assert client.flush() == 1_200
        batches = [c[1]["MetricData"] for c in client._cw_client.put_metric_data.call_args_list]
        assert [len(b) for b in batches] == [1_000, 200]

    @patch.object(MetricsClient, "_start_flush_thread")
    def test_cloudwatch_failure_is_logged_not_raised(self, _thread):
        client = MetricsClient(enabled=True)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")
        client.record_action_transition("executed")
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            with patch.object(MetricsClient, "_start_flush_thread"):
                client = MetricsClient()
        assert client.flush() == 0
