import io
import logging

import mock
import pytest

from ltsupgrade.config import UpgradeConfig


@pytest.fixture(scope="session", autouse=True)
def _subp():
    """
    A fixture that mocks system._subp for all tests.
    If a test needs the actual _subp, this fixture yields it,
    so just add an argument to the test named "_subp".
    """
    from ltsupgrade.system import _subp

    original = _subp
    with mock.patch(
        "ltsupgrade.system._subp", return_value=("mockstdout", "mockstderr")
    ):
        yield original


@pytest.fixture(scope="session", autouse=True)
def util_we_are_currently_root():
    """
    A fixture that mocks util.we_are_currently_root for all tests.
    Default to true as most tests need it to be true.
    """
    from ltsupgrade.util import we_are_currently_root

    original = we_are_currently_root
    with mock.patch(
        "ltsupgrade.util.we_are_currently_root", return_value=True
    ):
        yield original


@pytest.fixture
def caplog_text(request):
    """
    A fixture that returns a function that returns caplog.text

    (It returns a function so that the requester can decide when to examine the
    logs; if it returned caplog.text directly, that would always be empty.)
    """
    log_level = getattr(request, "param", logging.INFO)
    try:
        caplog = request.getfixturevalue("caplog")
        caplog.set_level(log_level)

        def _func():
            return caplog.text

    except LookupError:
        # If the caplog fixture isn't available, shim something in ourselves
        root = logging.getLogger()
        root.setLevel(log_level)
        handler = logging.StreamHandler(io.StringIO())
        handler.setFormatter(
            logging.Formatter(
                "%(filename)-25s %(lineno)4d %(levelname)-8s %(message)s"
            )
        )
        root.addHandler(handler)

        def _func():
            return handler.stream.getvalue()

        def clear_handlers():
            logging.root.handlers = []

        request.addfinalizer(clear_handlers)
    return _func


@pytest.fixture
def logging_sandbox():
    # Monkeypatch a replacement root logger, so that our changes to logging
    # configuration don't persist outside of the test
    root_logger = logging.RootLogger(logging.WARNING)

    with mock.patch.object(logging, "root", root_logger):
        with mock.patch.object(logging.Logger, "root", root_logger):
            with mock.patch.object(
                logging.Logger, "manager", logging.Manager(root_logger)
            ):
                yield


@pytest.fixture
def FakeConfig(tmpdir):
    class _FakeConfig(UpgradeConfig):
        def __init__(self, cfg_overrides=None) -> None:
            cfg_overrides = dict(cfg_overrides or {})
            if not cfg_overrides.get("base_dir"):
                cfg_overrides["base_dir"] = tmpdir.strpath
            cfg_overrides.setdefault("retry_base_delay", 1)
            super().__init__(cfg_overrides)

    return _FakeConfig
