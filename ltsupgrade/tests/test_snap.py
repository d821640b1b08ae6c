import mock

from ltsupgrade import exceptions, snap

M_PATH = "ltsupgrade.snap."

SNAP_LIST = """\
Name    Version   Rev    Tracking       Publisher   Notes
core20  20240111  2182   latest/stable  canonical** base
lxd     5.0.3     27037  5.0/stable     canonical** -
snapd   2.61.2    21184  latest/stable  canonical** snapd
"""


class TestGetInstalledSnaps:
    @mock.patch(M_PATH + "system.subp", return_value=(SNAP_LIST, ""))
    def test_skips_header(self, _m_subp):
        assert ["core20", "lxd", "snapd"] == snap.get_installed_snaps()


class TestRemoveAllSnaps:
    @mock.patch(M_PATH + "system.subp")
    @mock.patch(M_PATH + "get_installed_snaps")
    @mock.patch(M_PATH + "is_snapd_installed", return_value=True)
    def test_applications_before_bases_and_snapd_last(
        self, _m_installed, m_get_installed_snaps, m_subp
    ):
        m_get_installed_snaps.return_value = ["snapd", "core20", "lxd"]

        snap.remove_all_snaps()

        assert [
            mock.call(["snap", "remove", "--purge", "lxd"], timeout=600.0),
            mock.call(["snap", "remove", "--purge", "core20"], timeout=600.0),
            mock.call(["snap", "remove", "--purge", "snapd"], timeout=600.0),
        ] == m_subp.call_args_list

    @mock.patch(M_PATH + "system.subp")
    @mock.patch(M_PATH + "get_installed_snaps", return_value=["lxd", "core"])
    @mock.patch(M_PATH + "is_snapd_installed", return_value=True)
    def test_failed_removal_continues(
        self, _m_installed, _m_get_installed_snaps, m_subp, caplog_text
    ):
        m_subp.side_effect = [
            exceptions.ProcessExecutionError(
                cmd="snap remove", exit_code=1, stderr="snap lxd is busy"
            ),
            ("", ""),
        ]

        snap.remove_all_snaps()

        assert 2 == m_subp.call_count
        assert "Unable to remove snap lxd" in caplog_text()
        assert "Removed snap core" in caplog_text()

    @mock.patch(M_PATH + "get_installed_snaps")
    @mock.patch(M_PATH + "is_snapd_installed", return_value=False)
    def test_nothing_without_snapd(self, _m_installed, m_get_installed_snaps):
        snap.remove_all_snaps()

        assert 0 == m_get_installed_snaps.call_count


class TestRemoveSnapDirectories:
    @mock.patch(M_PATH + "system.ensure_folder_absent")
    def test_failure_only_warns(self, m_ensure_folder_absent, caplog_text):
        m_ensure_folder_absent.side_effect = [
            None,
            PermissionError("busy"),
            None,
        ]

        snap.remove_snap_directories()

        assert [
            mock.call("/snap"),
            mock.call("/var/snap"),
            mock.call("/var/lib/snapd"),
        ] == m_ensure_folder_absent.call_args_list
        assert "Unable to remove /var/snap: busy" in caplog_text()
