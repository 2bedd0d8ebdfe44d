"""Argument parsing functionality for elpm."""

import argparse

from constants import SignaturePolicy


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="elpm",
        description=(
            "elpm - resolve, install and activate Emacs Lisp packages"
        ),
        add_help=True,
    )

    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to YAML configuration file",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default=None)
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("--package-dir",
                        dest="PACKAGE_DIR",
                        help="Directory packages are installed into",
                        action="store",
                        type=str)
    parser.add_argument("--cache-dir",
                        dest="CACHE_DIR",
                        help="Directory for cached archive indexes",
                        action="store",
                        type=str)
    parser.add_argument("--signature-policy",
                        dest="SIGNATURE_POLICY",
                        help="Signature checking mode for indexes and packages",
                        action="store",
                        type=str.lower,
                        choices=[p.value for p in SignaturePolicy])
    parser.add_argument("--offline",
                        dest="OFFLINE",
                        help="Never contact remote archives; use cached indexes only.",
                        action="store_true")

    sub = parser.add_subparsers(dest="COMMAND", metavar="COMMAND")
    sub.required = True

    sub.add_parser("init", help="Load installed packages and activate them")
    sub.add_parser("refresh", help="Download fresh archive indexes")

    install = sub.add_parser("install", help="Install packages and their dependencies")
    install.add_argument("NAMES", nargs="+", help="Package names")
    install.add_argument("--no-select",
                         dest="NO_SELECT",
                         help="Do not mark the packages as explicitly selected.",
                         action="store_true")

    install_file = sub.add_parser("install-file", help="Install a local .el file, .tar bundle or directory")
    install_file.add_argument("PATH", help="Path to the package file or directory")

    delete = sub.add_parser("delete", help="Delete an installed package")
    delete.add_argument("NAME", help="Package name")
    delete.add_argument("-f", "--force",
                        dest="FORCE",
                        help="Delete even when other installed packages depend on it.",
                        action="store_true")

    upgrade = sub.add_parser("upgrade", help="Upgrade named packages, or all upgradeable packages")
    upgrade.add_argument("NAMES", nargs="*", help="Package names (default: all)")

    sub.add_parser("autoremove", help="Delete packages no selected package needs")

    resolve = sub.add_parser("resolve", help="Print the install transaction without installing")
    resolve.add_argument("NAMES", nargs="+", help="Package names")

    return parser.parse_args(argv)
