"""elpm - package manager for Emacs Lisp package archives.

    Returns:
        int: Exit code
"""
import logging
import sys

from args import parse_args
from cli_config import apply_cli_overrides
from common.errors import (
    ActivationError,
    ConfigError,
    DescriptorError,
    ElpmError,
    FetchError,
    InstallError,
    PackageInUseError,
    SignatureError,
    TransactionInProgressError,
    UnsatisfiableError,
)
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from config import load_settings
from constants import ExitCodes
from manager import InstallReport, PackageManager

logger = logging.getLogger(__name__)

_ERROR_EXIT_CODES = (
    (ConfigError, ExitCodes.FILE_ERROR),
    (DescriptorError, ExitCodes.FILE_ERROR),
    (FetchError, ExitCodes.CONNECTION_ERROR),
    (TransactionInProgressError, ExitCodes.CONNECTION_ERROR),
    (UnsatisfiableError, ExitCodes.RESOLUTION_ERROR),
    (SignatureError, ExitCodes.SIGNATURE_ERROR),
    (PackageInUseError, ExitCodes.INSTALL_ERROR),
    (InstallError, ExitCodes.INSTALL_ERROR),
    (ActivationError, ExitCodes.INSTALL_ERROR),
)


def exit_code_for(exc: ElpmError) -> ExitCodes:
    """Map an error to the process exit code."""
    for kind, code in _ERROR_EXIT_CODES:
        if isinstance(exc, kind):
            return code
    return ExitCodes.FILE_ERROR


def _report_exit_code(report: InstallReport) -> ExitCodes:
    for name, exc in report.failures.items():
        logger.error("%s: %s", name, exc)
    if report.failures:
        return exit_code_for(next(iter(report.failures.values())))
    if report.activation_failures or report.compile_errors:
        return ExitCodes.EXIT_WARNINGS
    return ExitCodes.SUCCESS


def _print_report(report: InstallReport) -> None:
    for desc in report.installed:
        print(f"Installed {desc.full_name}")
    for name in report.already_installed:
        print(f"Already installed: {name}")
    for name, failures in report.compile_errors.items():
        for failure in failures:
            print(f"Compile warning in {name}: {failure}")


def run_command(args, manager: PackageManager) -> ExitCodes:
    """Run the selected subcommand against an initialized manager."""
    command = args.COMMAND
    if command == "init":
        activated = manager.activator.activated
        print(f"Activated {len(activated)} package(s)")
        return ExitCodes.SUCCESS

    if command == "refresh":
        result = manager.refresh()
        for name, descs in sorted(result.indexes.items()):
            print(f"{name}: {len(descs)} package(s)")
        for name, exc in sorted(result.errors.items()):
            print(f"{name}: failed ({exc})")
        if result.errors and not result.indexes:
            return exit_code_for(next(iter(result.errors.values())))
        return ExitCodes.EXIT_WARNINGS if result.errors else ExitCodes.SUCCESS

    if command == "install":
        report = manager.install(args.NAMES, select=not args.NO_SELECT)
        _print_report(report)
        return _report_exit_code(report)

    if command == "install-file":
        report = manager.install_file(args.PATH)
        _print_report(report)
        return _report_exit_code(report)

    if command == "delete":
        desc = manager.delete(args.NAME, force=args.FORCE)
        print(f"Deleted {desc.full_name}")
        return ExitCodes.SUCCESS

    if command == "upgrade":
        if args.NAMES:
            code = ExitCodes.SUCCESS
            for name in args.NAMES:
                report = manager.upgrade(name)
                if report is None:
                    print(f"{name} is up to date")
                    continue
                _print_report(report)
                result = _report_exit_code(report)
                if result is not ExitCodes.SUCCESS:
                    code = result
            return code
        report = manager.upgrade_all()
        if not report.installed and not report.failures:
            print("All packages are up to date")
        _print_report(report)
        return _report_exit_code(report)

    if command == "autoremove":
        removed = manager.autoremove()
        for desc in removed:
            print(f"Deleted {desc.full_name}")
        if not removed:
            print("Nothing to remove")
        return ExitCodes.SUCCESS

    if command == "resolve":
        transaction = manager.resolve(args.NAMES)
        for desc in transaction:
            origin = desc.archive or "local"
            print(f"{desc.full_name} ({origin})")
        for message in transaction.cycles:
            print(f"warning: {message}")
        return ExitCodes.SUCCESS

    logger.error("Unknown command: %s", command)
    return ExitCodes.USAGE_ERROR


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    configure_logging(args.LOG_LEVEL, getattr(args, "LOG_FILE", None))

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action=args.COMMAND)
        )

    try:
        settings = apply_cli_overrides(args, load_settings(args.CONFIG))
        manager = PackageManager(settings)
        # Only the init command activates; others just need the indexes.
        manager.initialize(activate=args.COMMAND == "init")
        code = run_command(args, manager)
    except ElpmError as exc:
        logger.error("%s", exc)
        code = exit_code_for(exc)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(
                event="function_exit",
                component="cli",
                action=args.COMMAND,
                outcome="success" if code is ExitCodes.SUCCESS else "failure",
            )
        )
    sys.exit(code.value)


if __name__ == "__main__":
    main()
