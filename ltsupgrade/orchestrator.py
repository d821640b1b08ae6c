"""The upgrade state machine.

Each invocation runs at most one stage: the one matching the persisted
state. A successful non-terminal stage arms the boot hook, persists the next
state and reboots; the boot hook then starts the next invocation. Any
failure leaves the state file as it was, so a later invocation retries the
same stage.
"""

import logging
from subprocess import TimeoutExpired
from typing import Callable, Dict, NamedTuple, Optional

from ltsupgrade import exceptions, log, messages, system, util
from ltsupgrade.boot import BootScheduler
from ltsupgrade.config import UpgradeConfig
from ltsupgrade.lock import UpgradeLock
from ltsupgrade.monitor import Monitor
from ltsupgrade.preconditions import SystemPreconditions
from ltsupgrade.stages import (
    CleanupStage,
    PostSetupStage,
    ReleaseUpgradeStage,
    Stage,
)
from ltsupgrade.state import StateStore, UpgradeState

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

# next_state None marks the terminal transition: clear state, no reboot
Transition = NamedTuple(
    "Transition",
    [
        ("stage", Stage),
        ("next_state", Optional[UpgradeState]),
    ],
)


def build_transitions(cfg: UpgradeConfig) -> Dict[UpgradeState, Transition]:
    first_target, second_target = cfg.target_versions
    return {
        UpgradeState.INITIAL: Transition(
            CleanupStage(cfg), UpgradeState.PENDING_22_04
        ),
        UpgradeState.PENDING_22_04: Transition(
            ReleaseUpgradeStage(cfg, first_target), UpgradeState.PENDING_24_04
        ),
        UpgradeState.PENDING_24_04: Transition(
            ReleaseUpgradeStage(cfg, second_target), UpgradeState.POST_SETUP
        ),
        UpgradeState.POST_SETUP: Transition(PostSetupStage(cfg), None),
    }


class Orchestrator:
    def __init__(
        self,
        cfg: UpgradeConfig,
        lock: UpgradeLock,
        state_store: StateStore,
        boot_scheduler: BootScheduler,
        monitor: Monitor,
        transitions: Dict[UpgradeState, Transition],
        preconditions: SystemPreconditions,
        reboot: Callable[[int, str], None] = system.schedule_reboot,
    ) -> None:
        missing = [s.value for s in UpgradeState if s not in transitions]
        if missing:
            raise ValueError(
                "No transition for state(s): {}".format(", ".join(missing))
            )
        self.cfg = cfg
        self.lock = lock
        self.state_store = state_store
        self.boot_scheduler = boot_scheduler
        self.monitor = monitor
        self.transitions = transitions
        self.preconditions = preconditions
        self.reboot = reboot

    @classmethod
    def from_config(cls, cfg: UpgradeConfig) -> "Orchestrator":
        return cls(
            cfg=cfg,
            lock=UpgradeLock(cfg.lock_dir),
            state_store=StateStore(cfg.base_dir),
            boot_scheduler=BootScheduler(
                working_directory=cfg.base_dir,
                start_timeout=cfg.boot_start_timeout,
            ),
            monitor=Monitor.from_config(cfg.monitor),
            transitions=build_transitions(cfg),
            preconditions=SystemPreconditions.from_config(cfg),
        )

    def run(self) -> Optional[UpgradeState]:
        """Run the stage of the current state and move past it.

        :return: the state the next invocation starts from, None once the
            upgrade is complete.
        """
        with self.lock:
            state = self.state_store.read()
            LOG.info(messages.CURRENT_STATE.format(state=state.value))

            self.preconditions.check()

            transition = self.transitions[state]
            self._run_stage(state, transition.stage)

            if transition.next_state is None:
                self._complete(state)
            else:
                self._advance(state, transition.next_state)
            return transition.next_state

    def _run_stage(self, state: UpgradeState, stage: Stage):
        LOG.info(
            messages.STAGE_STARTING.format(stage=stage.name, state=state.value)
        )
        self.monitor.start()
        try:
            stage.run()
        except exceptions.StageFailedError as e:
            LOG.error(
                "Stage %s failed in state %s, state left unchanged: %s",
                stage.name,
                state.value,
                e.cause,
            )
            raise
        finally:
            self.monitor.stop()
        LOG.info(messages.STAGE_SUCCEEDED.format(stage=stage.name))

    def _advance(self, state: UpgradeState, next_state: UpgradeState):
        # no reboot without a way back in: arm before anything else
        self.boot_scheduler.arm(self.cfg.invocation_command)
        self.state_store.write(next_state)
        log.audit(
            LOG,
            messages.STATE_TRANSITION.format(
                old=state.value, new=next_state.value
            ),
        )

        delay = self.cfg.reboot_delay_minutes
        try:
            self.reboot(
                delay, messages.REBOOT_MESSAGE.format(state=next_state.value)
            )
        except (exceptions.ProcessExecutionError, TimeoutExpired) as e:
            raise exceptions.RebootFailedError(error=str(e))
        log.audit(LOG, messages.REBOOT_SCHEDULED.format(minutes=delay))

    def _complete(self, state: UpgradeState):
        self.boot_scheduler.disarm()
        self.state_store.clear()
        log.audit(
            LOG, messages.STATE_TRANSITION.format(old=state.value, new="done")
        )
        LOG.info(messages.UPGRADE_COMPLETE)
