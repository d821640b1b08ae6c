import logging
import threading
import time
from typing import Any, Dict, List, Optional  # noqa: F401

from ltsupgrade import log, services, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

WATCHED_PROCESSES = ("apt", "apt-get", "dpkg", "do-release-upgr")
NETWORK_SERVICE = "networking"
NETWORK_SETTLE_TIME = 10


class Monitor:
    """Background health sampler running alongside a stage.

    Every interval it logs load, memory and disk usage at STAT level, reports
    threshold breaches at ERROR level, and tries to bring critical services
    and the network back. It shares nothing with the orchestrator but the log.
    """

    def __init__(
        self,
        enabled: bool = True,
        interval: float = 300,
        disk_path: str = "/",
        disk_threshold: int = 85,
        memory_threshold: int = 90,
        load_threshold: float = 8,
        critical_services: Optional[List[str]] = None,
        network_targets: Optional[List[str]] = None,
        restart_attempts: int = 3,
        restart_delay: float = 30,
    ) -> None:
        self.enabled = enabled
        self.interval = interval
        self.disk_path = disk_path
        self.disk_threshold = disk_threshold
        self.memory_threshold = memory_threshold
        self.load_threshold = load_threshold
        self.critical_services = critical_services or []
        self.network_targets = network_targets or []
        self.restart_attempts = restart_attempts
        self.restart_delay = restart_delay
        self._stop_event = threading.Event()
        self._thread = None  # type: Optional[threading.Thread]

    @classmethod
    def from_config(cls, monitor_cfg: Dict[str, Any]) -> "Monitor":
        return cls(
            enabled=monitor_cfg.get("enabled", True),
            interval=monitor_cfg.get("interval", 300),
            disk_path=monitor_cfg.get("disk_path", "/"),
            disk_threshold=monitor_cfg.get("disk_threshold", 85),
            memory_threshold=monitor_cfg.get("memory_threshold", 90),
            load_threshold=monitor_cfg.get("load_threshold", 8),
            critical_services=monitor_cfg.get("critical_services"),
            network_targets=monitor_cfg.get("network_targets"),
            restart_attempts=monitor_cfg.get("restart_attempts", 3),
            restart_delay=monitor_cfg.get("restart_delay", 30),
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if not self.enabled or self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="ltsupgrade-monitor", daemon=True
        )
        self._thread.start()
        LOG.info("Monitoring started")

    def stop(self, timeout: float = 5.0):
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            # a restart in progress; the daemon thread dies with us
            LOG.warning("Monitor still busy, leaving it behind")
        else:
            LOG.info("Monitoring stopped")
        self._thread = None

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.sample()
            except Exception as e:
                LOG.warning("Monitoring sample failed: %s", e, exc_info=e)
            self._stop_event.wait(self.interval)

    def sample(self):
        self.collect_metrics()
        self.check_processes()
        self.check_network()
        self.check_services()

    def collect_metrics(self) -> bool:
        """Log one metrics sample, returning False on a threshold breach."""
        load = system.get_load_average()
        memory = system.get_memory_info()
        disk_percent = system.get_disk_usage_percent(self.disk_path)
        log.stat(
            LOG,
            "METRICS cpu_load=%.2f,mem_used=%d%%,disk_used=%d%%",
            load,
            memory.used_percent,
            disk_percent,
        )
        healthy = True
        if disk_percent > self.disk_threshold:
            LOG.error("Disk usage critical: %d%%", disk_percent)
            healthy = False
        if memory.used_percent > self.memory_threshold:
            LOG.error("Memory usage critical: %d%%", memory.used_percent)
            healthy = False
        if load > self.load_threshold:
            LOG.error("System load critical: %.2f", load)
            healthy = False
        return healthy

    def check_processes(self):
        for process in system.find_processes(WATCHED_PROCESSES):
            LOG.debug(
                "Process %s running (PID: %d)", process.name, process.pid
            )

    def _unreachable_targets(self) -> List[str]:
        return [
            target
            for target in self.network_targets
            if not system.is_host_reachable(target)
        ]

    def check_network(self) -> bool:
        if not self.network_targets:
            return True
        failed = self._unreachable_targets()
        if not failed:
            return True
        for target in failed:
            LOG.error("Network connectivity failed to %s", target)
        LOG.warning(
            "Network connectivity issues detected, restarting %s",
            NETWORK_SERVICE,
        )
        services.restart(NETWORK_SERVICE)
        time.sleep(NETWORK_SETTLE_TIME)
        failed = self._unreachable_targets()
        for target in failed:
            LOG.error(
                "Network connectivity still failed to %s after recovery",
                target,
            )
        return not failed

    def check_services(self) -> bool:
        healthy = True
        for service in self.critical_services:
            if services.is_active(service):
                continue
            LOG.error("Critical service %s is not running", service)
            if not services.restart_service_with_retry(
                service, self.restart_attempts, self.restart_delay
            ):
                healthy = False
        return healthy
