"""指标探针与指标源测试"""

from unittest.mock import MagicMock

import pytest
import requests

from kanary.kanary_probe import MetricsProbe, PrometheusSource, StaticSource
from kanary.kanary_utils.errors import ProbeUnavailable
from kanary.models import Health, RolloutPlan


def prom_response(value, status="success"):
    response = MagicMock()
    response.raise_for_status.return_value = None
    result = [] if value is None else [{"metric": {}, "value": [1700000000.0, str(value)]}]
    response.json.return_value = {"status": status, "data": {"result": result}}
    return response


@pytest.fixture
def small_plan():
    return RolloutPlan(
        service="checkout",
        stable_revision="v1",
        canary_revision="v2",
        namespace="shop",
        probe_failure_threshold=2,
    )


class TestStaticSource:
    """静态指标源测试"""

    def test_default_value(self, small_plan) -> None:
        source = StaticSource()
        assert source.query(small_plan, "v2") == (1.0, 50.0)

    def test_script_consumed_then_repeats(self, small_plan) -> None:
        source = StaticSource({"v2": [(0.9, 10), (0.8, 20)]})
        assert source.query(small_plan, "v2") == (0.9, 10.0)
        assert source.query(small_plan, "v2") == (0.8, 20.0)
        assert source.query(small_plan, "v2") == (0.8, 20.0)
        assert source.calls == ["v2", "v2", "v2"]

    def test_exception_values_are_raised(self, small_plan) -> None:
        source = StaticSource()
        source.set("v2", [ProbeUnavailable("down"), (1.0, 5.0)])
        with pytest.raises(ProbeUnavailable):
            source.query(small_plan, "v2")
        assert source.query(small_plan, "v2") == (1.0, 5.0)

    def test_no_default(self, small_plan) -> None:
        source = StaticSource(default=None)
        with pytest.raises(ProbeUnavailable):
            source.query(small_plan, "v3")


class TestPrometheusSource:
    """Prometheus指标源测试"""

    def test_query_renders_revision_and_converts_latency(self, small_plan) -> None:
        session = MagicMock()
        session.headers = {}
        session.get.side_effect = [prom_response(0.995), prom_response(0.12)]
        source = PrometheusSource("http://prom:9090/", session=session)

        ratio, latency = source.query(small_plan, "v2")

        assert ratio == pytest.approx(0.995)
        assert latency == pytest.approx(120.0)
        url = session.get.call_args_list[0].args[0]
        promql = session.get.call_args_list[0].kwargs["params"]["query"]
        assert url == "http://prom:9090/api/v1/query"
        assert 'service="checkout-v2"' in promql
        assert 'namespace="shop"' in promql
        assert "[60s]" in promql

    def test_custom_query_template(self, small_plan) -> None:
        source = PrometheusSource(
            "http://prom", success_query="ratio{svc='$service',rev='$revision'}"
        )
        rendered = source.render(source.success_query, small_plan, "v1")
        assert rendered == "ratio{svc='checkout',rev='v1'}"

    def test_empty_result_is_unavailable(self, small_plan) -> None:
        session = MagicMock()
        session.headers = {}
        session.get.return_value = prom_response(None)
        source = PrometheusSource("http://prom", session=session)
        with pytest.raises(ProbeUnavailable, match="no data"):
            source.query(small_plan, "v2")

    def test_nan_is_unavailable(self, small_plan) -> None:
        session = MagicMock()
        session.headers = {}
        session.get.return_value = prom_response("NaN")
        source = PrometheusSource("http://prom", session=session)
        with pytest.raises(ProbeUnavailable, match="non-finite"):
            source.query(small_plan, "v2")

    def test_error_status(self, small_plan) -> None:
        session = MagicMock()
        session.headers = {}
        session.get.return_value = prom_response(1.0, status="error")
        source = PrometheusSource("http://prom", session=session)
        with pytest.raises(ProbeUnavailable, match="query failed"):
            source.query(small_plan, "v2")

    def test_connection_error(self, small_plan) -> None:
        session = MagicMock()
        session.headers = {}
        session.get.side_effect = requests.ConnectionError("refused")
        source = PrometheusSource("http://prom", session=session)
        with pytest.raises(ProbeUnavailable, match="request failed"):
            source.query(small_plan, "v2")


class TestMetricsProbe:
    """指标探针测试"""

    @pytest.mark.asyncio
    async def test_sample(self, small_plan) -> None:
        probe = MetricsProbe(StaticSource({"v2": (0.97, 80.0)}), clock=lambda: 42.0)
        sample = await probe.sample(small_plan, "v2", key="r1")
        assert sample.timestamp == 42.0
        assert sample.revision == "v2"
        assert sample.success_ratio == 0.97
        assert sample.latency_ms == 80.0

    @pytest.mark.asyncio
    async def test_health_unknown_after_threshold(self, small_plan) -> None:
        source = StaticSource({"v2": [ProbeUnavailable("down"), ProbeUnavailable("down"), (1.0, 1.0)]})
        probe = MetricsProbe(source)

        with pytest.raises(ProbeUnavailable):
            await probe.sample(small_plan, "v2", key="r1")
        assert probe.health("r1", "v2") is Health.HEALTHY

        with pytest.raises(ProbeUnavailable):
            await probe.sample(small_plan, "v2", key="r1")
        assert probe.failures("r1", "v2") == 2
        assert probe.health("r1", "v2") is Health.UNKNOWN

        await probe.sample(small_plan, "v2", key="r1")
        assert probe.health("r1", "v2") is Health.HEALTHY

    @pytest.mark.asyncio
    async def test_out_of_range_ratio(self, small_plan) -> None:
        probe = MetricsProbe(StaticSource({"v2": (1.5, 10.0)}))
        with pytest.raises(ProbeUnavailable, match="invalid reading"):
            await probe.sample(small_plan, "v2", key="r1")
        assert probe.failures("r1", "v2") == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, small_plan) -> None:
        probe = MetricsProbe(StaticSource({"v2": RuntimeError("boom")}))
        with pytest.raises(ProbeUnavailable, match="boom"):
            await probe.sample(small_plan, "v2", key="r1")

    @pytest.mark.asyncio
    async def test_reset(self, small_plan) -> None:
        probe = MetricsProbe(StaticSource({"v2": ProbeUnavailable("down")}))
        for _ in range(2):
            with pytest.raises(ProbeUnavailable):
                await probe.sample(small_plan, "v2", key="r1")
        probe.reset("r1")
        assert probe.failures("r1", "v2") == 0
        assert probe.health("r1", "v2") is Health.HEALTHY
