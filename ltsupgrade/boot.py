import logging
import os
import shlex
from subprocess import TimeoutExpired
from typing import List

from ltsupgrade import defaults, exceptions, log, services, system, util

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

UNIT_TEMPLATE = """\
[Unit]
Description=Ubuntu LTS upgrade continuation
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
ExecStart={exec_start}
RemainAfterExit=yes
TimeoutStartSec={timeout}
WorkingDirectory={working_directory}
KillMode=process
Restart=no
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
"""


def render_unit(
    command: List[str], timeout: int, working_directory: str
) -> str:
    return UNIT_TEMPLATE.format(
        exec_start=" ".join(shlex.quote(part) for part in command),
        timeout=timeout,
        working_directory=working_directory,
    )


class BootScheduler:
    """Install and remove the one-shot unit resuming the upgrade at boot.

    The unit always runs the same command without arguments. What to do next
    is read from the state file by the resumed run.
    """

    def __init__(
        self,
        working_directory: str,
        start_timeout: int,
        unit_dir: str = defaults.SYSTEMD_UNIT_DIR,
        unit_name: str = defaults.BOOT_UNIT_NAME,
    ) -> None:
        self.working_directory = working_directory
        self.start_timeout = start_timeout
        self.unit_name = unit_name
        self.unit_path = os.path.join(unit_dir, unit_name)

    @property
    def is_armed(self) -> bool:
        return os.path.exists(self.unit_path)

    def arm(self, command: List[str]):
        """(Re)install the boot hook running command on next boot."""
        content = render_unit(
            command, self.start_timeout, self.working_directory
        )
        try:
            system.write_file(
                self.unit_path, content, defaults.WORLD_READABLE_MODE
            )
            services.daemon_reload()
            services.systemctl("enable", self.unit_name)
        except (
            OSError,
            exceptions.ProcessExecutionError,
            TimeoutExpired,
        ) as e:
            raise exceptions.SchedulingFailedError(
                action="arm", unit=self.unit_name, error=str(e)
            )
        log.audit(LOG, "Boot hook %s armed: %s", self.unit_name, command)

    def disarm(self):
        """Remove the boot hook so it cannot fire on an unrelated boot."""
        try:
            system.subp(
                ["systemctl", "disable", self.unit_name],
                rcs=[0, 1, 5],
                timeout=services.SYSTEMCTL_TIMEOUT,
            )
            system.ensure_file_absent(self.unit_path)
            services.daemon_reload()
        except (
            OSError,
            exceptions.ProcessExecutionError,
            TimeoutExpired,
        ) as e:
            raise exceptions.SchedulingFailedError(
                action="disarm", unit=self.unit_name, error=str(e)
            )
        log.audit(LOG, "Boot hook %s disarmed", self.unit_name)
