import threading

import mock
import pytest

from ltsupgrade.monitor import Monitor
from ltsupgrade.system import MemoryInfo

M_PATH = "ltsupgrade.monitor."


@pytest.fixture
def monitor():
    return Monitor(
        interval=0.01,
        disk_threshold=85,
        memory_threshold=90,
        load_threshold=8,
        critical_services=["postgresql"],
        network_targets=["8.8.8.8"],
        restart_delay=0,
    )


@mock.patch(M_PATH + "system.get_disk_usage_percent", return_value=40)
@mock.patch(
    M_PATH + "system.get_memory_info",
    return_value=MemoryInfo(total_mb=8000, available_mb=4000, used_percent=50),
)
@mock.patch(M_PATH + "system.get_load_average", return_value=0.5)
class TestCollectMetrics:
    @pytest.mark.parametrize("caplog_text", [21], indirect=True)
    def test_logs_a_metrics_sample(
        self, _m_load, _m_memory, _m_disk, monitor, caplog_text
    ):
        assert monitor.collect_metrics()

        assert (
            "METRICS cpu_load=0.50,mem_used=50%,disk_used=40%" in caplog_text()
        )
        assert "critical" not in caplog_text()

    def test_threshold_breaches_are_errors(
        self, m_load, _m_memory, m_disk, monitor, caplog_text
    ):
        m_disk.return_value = 92
        m_load.return_value = 12.0

        assert not monitor.collect_metrics()

        assert "Disk usage critical: 92%" in caplog_text()
        assert "System load critical: 12.00" in caplog_text()
        assert "Memory usage critical" not in caplog_text()


class TestCheckNetwork:
    @mock.patch(M_PATH + "time.sleep")
    @mock.patch(M_PATH + "services.restart")
    @mock.patch(M_PATH + "system.is_host_reachable", return_value=True)
    def test_reachable_targets_need_nothing(
        self, _m_reachable, m_restart, _m_sleep, monitor
    ):
        assert monitor.check_network()

        assert 0 == m_restart.call_count

    @mock.patch(M_PATH + "time.sleep")
    @mock.patch(M_PATH + "services.restart")
    @mock.patch(M_PATH + "system.is_host_reachable")
    def test_restarts_networking_once(
        self, m_reachable, m_restart, m_sleep, monitor, caplog_text
    ):
        m_reachable.side_effect = [False, True]

        assert monitor.check_network()

        assert [mock.call("networking")] == m_restart.call_args_list
        assert [mock.call(10)] == m_sleep.call_args_list
        assert "Network connectivity failed to 8.8.8.8" in caplog_text()

    @mock.patch(M_PATH + "time.sleep")
    @mock.patch(M_PATH + "services.restart")
    @mock.patch(M_PATH + "system.is_host_reachable", return_value=False)
    def test_reports_unrecovered_network(
        self, _m_reachable, _m_restart, _m_sleep, monitor, caplog_text
    ):
        assert not monitor.check_network()

        assert "still failed to 8.8.8.8 after recovery" in caplog_text()


class TestCheckServices:
    @mock.patch(M_PATH + "services.restart_service_with_retry")
    @mock.patch(M_PATH + "services.is_active", return_value=True)
    def test_active_service_is_left_alone(
        self, _m_is_active, m_restart, monitor
    ):
        assert monitor.check_services()

        assert 0 == m_restart.call_count

    @pytest.mark.parametrize("restarted", (True, False))
    @mock.patch(M_PATH + "services.restart_service_with_retry")
    @mock.patch(M_PATH + "services.is_active", return_value=False)
    def test_inactive_service_is_restarted(
        self, _m_is_active, m_restart, restarted, monitor, caplog_text
    ):
        m_restart.return_value = restarted

        assert restarted == monitor.check_services()

        assert [mock.call("postgresql", 3, 0)] == m_restart.call_args_list
        assert "Critical service postgresql is not running" in caplog_text()


class TestMonitorThread:
    @mock.patch.object(Monitor, "sample")
    def test_start_and_stop(self, m_sample, monitor):
        sampled = threading.Event()
        m_sample.side_effect = sampled.set

        monitor.start()
        assert monitor.is_running
        assert sampled.wait(5)
        monitor.stop()

        assert not monitor.is_running

    @mock.patch.object(Monitor, "sample")
    def test_sample_errors_do_not_kill_the_thread(
        self, m_sample, monitor, caplog_text
    ):
        sampled = threading.Semaphore(0)

        def failing_sample():
            sampled.release()
            raise OSError("no /proc")

        m_sample.side_effect = failing_sample

        monitor.start()
        # a second sample proves the loop survived the first failure
        assert sampled.acquire(timeout=5)
        assert sampled.acquire(timeout=5)
        monitor.stop()

        assert "Monitoring sample failed: no /proc" in caplog_text()

    @mock.patch.object(Monitor, "sample")
    def test_disabled_monitor_never_starts(self, m_sample):
        monitor = Monitor(enabled=False)

        monitor.start()
        monitor.stop()

        assert not monitor.is_running
        assert 0 == m_sample.call_count

    def test_stop_without_start(self, monitor):
        monitor.stop()

        assert not monitor.is_running


class TestFromConfig:
    def test_uses_configured_section(self, FakeConfig):
        cfg = FakeConfig(
            {
                "monitor": {
                    "interval": 60,
                    "critical_services": ["nginx"],
                    "enabled": False,
                }
            }
        )

        monitor = Monitor.from_config(cfg.monitor)

        assert 60 == monitor.interval
        assert ["nginx"] == monitor.critical_services
        assert not monitor.enabled
        assert "/" == monitor.disk_path

    @mock.patch(M_PATH + "system.get_load_average", return_value=0.5)
    @mock.patch(
        M_PATH + "system.get_memory_info",
        return_value=MemoryInfo(
            total_mb=8000, available_mb=4000, used_percent=50
        ),
    )
    @mock.patch(M_PATH + "system.get_disk_usage_percent", return_value=40)
    def test_samples_the_configured_disk(
        self, m_disk, _m_memory, _m_load, FakeConfig
    ):
        cfg = FakeConfig({"monitor": {"disk_path": "/var/lib/postgresql"}})

        monitor = Monitor.from_config(cfg.monitor)
        monitor.collect_metrics()

        assert "/var/lib/postgresql" == monitor.disk_path
        assert [mock.call("/var/lib/postgresql")] == m_disk.call_args_list
