#!/usr/bin/env python3
"""Manage a private CA: create, init, new, sign, revoke, renew, crl, status, destroy."""

import argparse
import getpass
import os
import sys
from pathlib import Path

from private_ca.lib.cert_utils import format_serial
from private_ca.lib.errors import CAError
from private_ca.lib.layout import CALayout
from private_ca.lib.ledger import format_ledger_time
from private_ca.lib.lifecycle import LifecycleController
from private_ca.lib.logging_config import LOGGER

CA_DIR_ENV = "PRIVATE_CA_DIR"
PASSPHRASE_ENV = "PRIVATE_CA_PASSPHRASE"

COMMANDS = ("create", "init", "new", "sign", "revoke", "renew", "crl", "status", "destroy")


def prompt_passphrase(layout: CALayout) -> bytes:
    """Return the CA passphrase from the environment, or prompt for it."""
    value = os.environ.get(PASSPHRASE_ENV)
    if value is None:
        value = getpass.getpass(f"Passphrase for CA {layout.root}: ")
    if not value:
        LOGGER.warning("Empty passphrase: CA key for %s is not encrypted", layout.root)
    return value.encode()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="private-ca",
        description="Private X.509 CA lifecycle (root and intermediate CAs, host certificates, CRLs)",
    )
    parser.add_argument(
        "--ca-dir",
        type=Path,
        default=Path(os.environ.get(CA_DIR_ENV, ".")),
        help=f"CA root directory (default: ${CA_DIR_ENV} or current directory)",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="command")

    subparsers.add_parser("create", help="Scaffold a new CA directory with default config")

    init = subparsers.add_parser("init", help="Generate CA key, certificate, ledger and CRL")
    init.add_argument(
        "parent",
        nargs="?",
        help="Parent CA reference (ca:<path>) for an intermediate CA; omit for a root CA",
    )

    new = subparsers.add_parser("new", help="Register a host")
    new.add_argument("hostname")
    new.add_argument("alt_names", nargs="*", help="Extra DNS names or IP addresses")

    for name, help_text in (
        ("sign", "Issue a certificate for a host or child CA (ca:<path>)"),
        ("revoke", "Revoke the valid certificate of a host or child CA (ca:<path>)"),
        ("renew", "Revoke then re-issue a host or child CA certificate"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("target")

    subparsers.add_parser("crl", help="Regenerate the CRL")
    subparsers.add_parser("status", help="Mark expired certificates and list the ledger")
    subparsers.add_parser("destroy", help="Irreversibly remove the CA and every host")
    return parser


def _command_name(argv: list[str]) -> str | None:
    """Return the first positional token, skipping the --ca-dir value."""
    tokens = iter(argv)
    for token in tokens:
        if token == "--ca-dir":
            next(tokens, None)
        elif not token.startswith("-"):
            return token
    return None


def run_command(controller: LifecycleController, args: argparse.Namespace) -> int:
    """Run one parsed command against an open controller.

    Returns:
        Exit code (0 for success)
    """
    if args.command == "create":
        root = controller.create()
        LOGGER.info("Created CA at %s; edit ca/ca.json then run init", root)

    elif args.command == "init":
        result = controller.init(args.parent)
        LOGGER.info("%s CA initialized:", result.role.value.capitalize())
        LOGGER.info("  Key: %s", result.key_path)
        LOGGER.info("  Cert: %s", result.cert_path)
        if result.chain_path:
            LOGGER.info("  Chain: %s", result.chain_path)
        LOGGER.info("  CRL: %s", result.crl_path)

    elif args.command == "new":
        host_dir = controller.new(args.hostname, args.alt_names)
        LOGGER.info("Host registered: %s", host_dir)

    elif args.command == "sign":
        issued = controller.sign(args.target)
        LOGGER.info("Certificate issued for %s:", issued.common_name)
        LOGGER.info("  Serial: %s", format_serial(issued.serial))
        LOGGER.info("  Cert: %s", issued.cert_path)

    elif args.command == "revoke":
        revoked = controller.revoke(args.target)
        LOGGER.info("Revoked serial %s (%s)", format_serial(revoked.serial), revoked.common_name)
        LOGGER.info("  CRL: %s", revoked.crl_path)

    elif args.command == "renew":
        renewed = controller.renew(args.target)
        LOGGER.info(
            "Renewed %s: serial %s revoked, serial %s issued",
            renewed.issued.common_name,
            format_serial(renewed.revoked.serial),
            format_serial(renewed.issued.serial),
        )
        LOGGER.info("  Cert: %s", renewed.issued.cert_path)

    elif args.command == "crl":
        LOGGER.info("CRL written: %s", controller.crl())

    elif args.command == "status":
        for record in controller.status():
            revoked = format_ledger_time(record.revoked_at) if record.revoked_at else "-"
            print(
                f"{record.status.value}  {format_serial(record.serial):>6}  "
                f"expires {format_ledger_time(record.expiry)}  revoked {revoked}  {record.subject}"
            )

    elif args.command == "destroy":
        phrase = controller.destroy_phrase()
        try:
            answer = input(f"Type '{phrase}' to permanently remove {controller.layout.root}: ")
        except EOFError:
            answer = ""
        controller.destroy(answer)
        LOGGER.info("CA removed: %s", controller.layout.root)

    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run one lifecycle command.

    Returns:
        Exit code (0 for success or usage, 1 for failure)
    """
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()

    if _command_name(argv) not in COMMANDS:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)

    try:
        with LifecycleController(args.ca_dir, passphrase_source=prompt_passphrase) as controller:
            return run_command(controller, args)
    except (CAError, OSError, ValueError) as e:
        LOGGER.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
