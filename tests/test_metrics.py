import asyncio

from readrise.services.metrics import MetricsStore, metrics, record_dependency_call, record_dependency_call_async


class _Response:
    def __init__(self, status_code: int):
        self.status_code = status_code


def test_metrics_store_percentiles_and_prometheus_output():
    store = MetricsStore(max_samples=10)
    for value in [10, 20, 30, 40, 50]:
        store.observe_ms("achievements.check_latency", value)
    store.inc("achievements.check_count")
    store.set_gauge_callback("process.rss_mb", lambda: 12.5)

    assert store.percentile_ms("achievements.check_latency", 50) == 30
    assert store.percentile_ms("achievements.check_latency", 95) == 50

    output = store.render_prometheus()
    assert "achievements_check_count 1" in output
    assert 'achievements_check_latency_milliseconds{quantile="0.95"}' in output
    assert "achievements_check_latency_milliseconds_count 5" in output
    assert "process_rss_mb 12.500" in output


def test_failing_gauge_renders_zero():
    store = MetricsStore()

    def broken():
        raise RuntimeError("no procfs")

    store.set_gauge_callback("process.rss_mb", broken)

    assert "process_rss_mb 0.000" in store.render_prometheus()


def test_record_dependency_call_tracks_failures_from_status_codes():
    before = metrics.counter("dependency.supabase.failure_count")

    result = record_dependency_call("supabase", lambda: _Response(500))

    assert result.status_code == 500
    assert metrics.counter("dependency.supabase.failure_count") == before + 1


async def _ok_async_call():
    return _Response(200)


async def _bad_async_call():
    raise RuntimeError("boom")


def test_record_dependency_call_async_success_and_exception_paths():
    ok = asyncio.run(record_dependency_call_async("supabase", _ok_async_call))
    assert ok.status_code == 200

    try:
        asyncio.run(record_dependency_call_async("supabase", _bad_async_call))
    except RuntimeError as exc:
        assert str(exc) == "boom"
    else:
        raise AssertionError("Expected RuntimeError")
