"""Entry point of the upgrader, run by the operator and by the boot hook."""

import argparse
import logging
import os
import sys

from ltsupgrade import defaults, exceptions, log, messages, system, util
from ltsupgrade.config import UpgradeConfig
from ltsupgrade.orchestrator import Orchestrator

NAME = "ubuntu-lts-upgrade"

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

INTERRUPTED_EXIT_CODE = 130


def main_error_handler(func):
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            LOG.error("KeyboardInterrupt")
            print(messages.CLI_INTERRUPT_RECEIVED, file=sys.stderr)
            sys.exit(INTERRUPTED_EXIT_CODE)
        except exceptions.UpgraderError as exc:
            LOG.error("%s: %s", exc.msg_code, exc.msg)
            print(exc.msg, file=sys.stderr)
            sys.exit(exc.exit_code)
        except Exception as e:
            LOG.exception("Unhandled exception")
            print(
                messages.E_UNEXPECTED_ERROR.format(
                    error_msg=str(e),
                    log_dir=os.path.join(
                        defaults.DEFAULT_BASE_DIR, defaults.LOGS_SUBDIR
                    ),
                ).msg,
                file=sys.stderr,
            )
            sys.exit(1)

    return wrapper


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=NAME,
        description=(
            "Upgrade this host from Ubuntu 20.04 to 24.04 through 22.04, "
            "rebooting between stages. Run it again after fixing a failure "
            "to retry the failed stage."
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="show all debug log messages on the console",
    )
    return parser


def setup_secure_environment(cfg: UpgradeConfig):
    """Keep everything the upgrader creates private to root."""
    os.umask(0o077)
    for directory in (
        cfg.base_dir,
        cfg.log_dir,
        cfg.lock_dir,
        cfg.backup_dir,
    ):
        system.ensure_dir(directory, defaults.PRIVATE_DIR_MODE)


@main_error_handler
def main(sys_argv=None):
    if not sys_argv:
        sys_argv = sys.argv

    args = get_parser().parse_args(args=sys_argv[1:])

    if not util.we_are_currently_root():
        raise exceptions.NonRootUserError()

    cfg = UpgradeConfig()
    setup_secure_environment(cfg)
    log.setup_logging(cfg.log_level, cfg.log_dir, console=args.debug)

    LOG.debug("Executed with sys.argv: %r", sys_argv)
    cfg.warn_about_invalid_keys()

    upgrader_environment = [
        "{}={}".format(k, v)
        for k, v in sorted(util.get_upgrader_environment().items())
    ]
    if upgrader_environment:
        LOG.debug(
            "Executed with environment variables: %r", upgrader_environment
        )

    next_state = Orchestrator.from_config(cfg).run()
    if next_state is None:
        print(messages.UPGRADE_COMPLETE)
    else:
        print(
            messages.REBOOT_SCHEDULED.format(
                minutes=cfg.reboot_delay_minutes
            )
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
