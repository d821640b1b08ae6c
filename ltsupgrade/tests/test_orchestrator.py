import mock
import pytest

from ltsupgrade import exceptions
from ltsupgrade.lock import UpgradeLock
from ltsupgrade.orchestrator import Orchestrator, Transition
from ltsupgrade.state import StateStore, UpgradeState

INVOCATION = ["/usr/bin/ubuntu-lts-upgrade"]


@pytest.fixture
def machine():
    """A mock recording calls to every collaborator in order."""
    m_machine = mock.MagicMock()
    for attribute, name in (
        ("cleanup", "cleanup"),
        ("upgrade_22_04", "upgrade-22.04"),
        ("upgrade_24_04", "upgrade-24.04"),
        ("setup", "setup"),
    ):
        stage = mock.MagicMock()
        stage.name = name
        m_machine.attach_mock(stage, attribute)
    return m_machine


@pytest.fixture
def orchestrator_factory(machine, FakeConfig, tmpdir):
    def factory(transitions=None):
        cfg = FakeConfig({"invocation_command": INVOCATION})
        if transitions is None:
            transitions = {
                UpgradeState.INITIAL: Transition(
                    machine.cleanup, UpgradeState.PENDING_22_04
                ),
                UpgradeState.PENDING_22_04: Transition(
                    machine.upgrade_22_04, UpgradeState.PENDING_24_04
                ),
                UpgradeState.PENDING_24_04: Transition(
                    machine.upgrade_24_04, UpgradeState.POST_SETUP
                ),
                UpgradeState.POST_SETUP: Transition(machine.setup, None),
            }
        return Orchestrator(
            cfg=cfg,
            lock=UpgradeLock(tmpdir.join("locks").strpath),
            state_store=StateStore(tmpdir.strpath),
            boot_scheduler=machine.boot,
            monitor=machine.monitor,
            transitions=transitions,
            preconditions=machine.preconditions,
            reboot=machine.reboot,
        )

    return factory


def state_on_disk(tmpdir):
    state_file = tmpdir.join(".upgrade_state")
    if not state_file.exists():
        return None
    return state_file.read()


class TestOrchestratorRun:
    def test_fresh_system_runs_cleanup_and_reboots(
        self, machine, orchestrator_factory, tmpdir
    ):
        orchestrator = orchestrator_factory()

        assert UpgradeState.PENDING_22_04 == orchestrator.run()

        assert "22.04\n" == state_on_disk(tmpdir)
        assert [
            mock.call.preconditions.check(),
            mock.call.monitor.start(),
            mock.call.cleanup.run(),
            mock.call.monitor.stop(),
            mock.call.boot.arm(INVOCATION),
            mock.call.reboot(1, mock.ANY),
        ] == machine.mock_calls
        # the lock is released once the invocation is over
        assert [] == tmpdir.join("locks").listdir()

    def test_pending_22_04_runs_first_release_upgrade(
        self, machine, orchestrator_factory, tmpdir
    ):
        tmpdir.join(".upgrade_state").write("22.04\n")

        assert UpgradeState.PENDING_24_04 == orchestrator_factory().run()

        assert "24.04\n" == state_on_disk(tmpdir)
        assert 1 == machine.upgrade_22_04.run.call_count
        assert 0 == machine.cleanup.run.call_count
        assert 0 == machine.upgrade_24_04.run.call_count
        assert [mock.call(INVOCATION)] == machine.boot.arm.call_args_list
        assert 1 == machine.reboot.call_count

    def test_post_setup_completes_without_reboot(
        self, machine, orchestrator_factory, tmpdir, caplog_text
    ):
        tmpdir.join(".upgrade_state").write("setup\n")

        assert orchestrator_factory().run() is None

        assert state_on_disk(tmpdir) is None
        assert [
            mock.call.preconditions.check(),
            mock.call.monitor.start(),
            mock.call.setup.run(),
            mock.call.monitor.stop(),
            mock.call.boot.disarm(),
        ] == machine.mock_calls
        assert "Upgrade pipeline completed successfully" in caplog_text()

    @mock.patch("ltsupgrade.system.is_pid_alive", return_value=True)
    def test_live_lock_owner_prevents_any_work(
        self, _m_is_pid_alive, machine, orchestrator_factory, tmpdir
    ):
        lock_file = tmpdir.join("locks", "upgrade.lock")
        lock_file.write("4242\n", ensure=True)
        tmpdir.join(".upgrade_state").write("22.04\n")

        with pytest.raises(exceptions.LockHeldError) as excinfo:
            orchestrator_factory().run()

        assert 4242 == excinfo.value.pid
        assert [] == machine.mock_calls
        assert "22.04\n" == state_on_disk(tmpdir)
        assert lock_file.exists()

    def test_corrupt_state_prevents_any_work(
        self, machine, orchestrator_factory, tmpdir
    ):
        tmpdir.join(".upgrade_state").write("banana\n")

        with pytest.raises(exceptions.StateCorruptError):
            orchestrator_factory().run()

        assert [] == machine.mock_calls
        assert "banana\n" == state_on_disk(tmpdir)
        assert [] == tmpdir.join("locks").listdir()

    def test_failed_precondition_runs_no_stage(
        self, machine, orchestrator_factory, tmpdir
    ):
        machine.preconditions.check.side_effect = (
            exceptions.InsufficientDiskSpaceError(
                path="/usr", available_mb=10, required_mb=10240
            )
        )

        with pytest.raises(exceptions.InsufficientDiskSpaceError):
            orchestrator_factory().run()

        assert [mock.call.preconditions.check()] == machine.mock_calls
        assert state_on_disk(tmpdir) is None

    def test_stage_failure_leaves_state_unchanged(
        self, machine, orchestrator_factory, tmpdir, caplog_text
    ):
        tmpdir.join(".upgrade_state").write("22.04\n")
        machine.upgrade_22_04.run.side_effect = exceptions.StageFailedError(
            stage="upgrade-22.04",
            cause="do-release-upgrade failed",
            diagnostic_tail="E: broken",
        )

        with pytest.raises(exceptions.StageFailedError):
            orchestrator_factory().run()

        assert "22.04\n" == state_on_disk(tmpdir)
        assert 0 == machine.boot.arm.call_count
        assert 0 == machine.reboot.call_count
        # the monitor never outlives the stage
        assert 1 == machine.monitor.stop.call_count
        assert [] == tmpdir.join("locks").listdir()
        assert "state left unchanged" in caplog_text()

    def test_unexpected_stage_error_still_stops_monitor(
        self, machine, orchestrator_factory, tmpdir
    ):
        machine.cleanup.run.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            orchestrator_factory().run()

        assert 1 == machine.monitor.stop.call_count
        assert state_on_disk(tmpdir) is None
        assert [] == tmpdir.join("locks").listdir()

    def test_boot_hook_is_armed_before_state_advances(
        self, machine, orchestrator_factory, tmpdir
    ):
        tmpdir.join(".upgrade_state").write("24.04\n")
        seen = []
        machine.boot.arm.side_effect = lambda _cmd: seen.append(
            state_on_disk(tmpdir)
        )

        orchestrator_factory().run()

        assert ["24.04\n"] == seen
        assert "setup\n" == state_on_disk(tmpdir)

    def test_arm_failure_keeps_state_and_skips_reboot(
        self, machine, orchestrator_factory, tmpdir
    ):
        tmpdir.join(".upgrade_state").write("22.04\n")
        machine.boot.arm.side_effect = exceptions.SchedulingFailedError(
            action="arm", unit="ubuntu-lts-upgrade.service", error="boom"
        )

        with pytest.raises(exceptions.SchedulingFailedError):
            orchestrator_factory().run()

        assert "22.04\n" == state_on_disk(tmpdir)
        assert 0 == machine.reboot.call_count

    def test_reboot_failure_is_reported_after_state_advanced(
        self, machine, orchestrator_factory, tmpdir
    ):
        machine.reboot.side_effect = exceptions.ProcessExecutionError(
            cmd="shutdown -r +1", exit_code=1, stderr="denied"
        )

        with pytest.raises(exceptions.RebootFailedError) as excinfo:
            orchestrator_factory().run()

        assert "denied" in excinfo.value.msg
        # the armed hook resumes from 22.04 after a manual reboot
        assert "22.04\n" == state_on_disk(tmpdir)
        assert 1 == machine.boot.arm.call_count

    def test_state_write_failure_skips_reboot(
        self, machine, orchestrator_factory, tmpdir
    ):
        with mock.patch("os.rename", side_effect=OSError("disk full")):
            with pytest.raises(exceptions.StateWriteError):
                orchestrator_factory().run()

        assert state_on_disk(tmpdir) is None
        assert 0 == machine.reboot.call_count

    def test_full_sequence_visits_each_stage_once(
        self, machine, orchestrator_factory, tmpdir
    ):
        states = []
        while True:
            next_state = orchestrator_factory().run()
            states.append(next_state)
            if next_state is None:
                break

        assert [
            UpgradeState.PENDING_22_04,
            UpgradeState.PENDING_24_04,
            UpgradeState.POST_SETUP,
            None,
        ] == states
        for stage in (
            machine.cleanup,
            machine.upgrade_22_04,
            machine.upgrade_24_04,
            machine.setup,
        ):
            assert 1 == stage.run.call_count
        assert 3 == machine.reboot.call_count
        assert 1 == machine.boot.disarm.call_count
        assert state_on_disk(tmpdir) is None


class TestOrchestratorInit:
    def test_every_state_needs_a_transition(
        self, machine, orchestrator_factory
    ):
        with pytest.raises(ValueError) as excinfo:
            orchestrator_factory(
                {
                    UpgradeState.INITIAL: Transition(
                        machine.cleanup, UpgradeState.PENDING_22_04
                    )
                }
            )

        assert "22.04, 24.04, setup" in str(excinfo.value)

    @mock.patch("ltsupgrade.orchestrator.SystemPreconditions.from_config")
    @mock.patch("ltsupgrade.orchestrator.Monitor.from_config")
    def test_from_config_wires_paths(
        self, _m_monitor, _m_preconditions, FakeConfig, tmpdir
    ):
        orchestrator = Orchestrator.from_config(FakeConfig())

        assert (
            tmpdir.join("locks", "upgrade.lock").strpath
            == orchestrator.lock.path
        )
        assert (
            tmpdir.join(".upgrade_state").strpath
            == orchestrator.state_store.path
        )
        assert [
            "cleanup",
            "upgrade-22.04",
            "upgrade-24.04",
            "setup",
        ] == [
            orchestrator.transitions[state].stage.name
            for state in UpgradeState
        ]
