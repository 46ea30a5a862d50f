#!/usr/bin/env python3
"""
HostAuth admin CLI -- manage per-domain JWT signing secrets.

Usage:
  python main.py secret get <domain>       Get or create the secret for domain
  python main.py secret rotate <domain>    Replace the secret for domain
  python main.py secret list               List all domains with secrets
  python main.py secret delete <domain>    Delete the secret for domain

Output contract:
  stdout carries results only (a secret, or one domain per line) so the
  output can be piped straight into a client app's configuration.
  stderr carries human diagnostics. Exit status is 1 on any failure.

Environment variables:
  JWT_SECRETS_DIR   Directory holding one secret file per domain.
                    Default: /var/lib/hostauth/secrets
                    Overridden by --secrets-dir.

A running server caches secrets in memory. After rotate or delete, restart
the server so it stops accepting the old secret.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from auth.secret_store import SecretStore
from core.config import get_settings
from core.domain import LOCALHOST, is_valid_domain


def _err(message: str) -> None:
    print(message, file=sys.stderr)


def _store(args: argparse.Namespace) -> SecretStore:
    secrets_dir = Path(args.secrets_dir) if args.secrets_dir else get_settings().jwt_secrets_dir
    return SecretStore(secrets_dir.resolve())


def _check_domain(domain: str) -> bool:
    if not is_valid_domain(domain):
        _err(f"Error: invalid domain: {domain!r}")
        return False
    if domain == LOCALHOST:
        _err("Note: the server signs localhost tokens with its built-in dev secret; this file is not used.")
    return True


def cmd_get(store: SecretStore, domain: str) -> int:
    if not _check_domain(domain):
        return 1
    existed = domain in store.list()
    secret = store.provision_or_get(domain)
    if not existed:
        _err(f"Created new secret for: {domain}")
    print(secret)
    return 0


def cmd_rotate(store: SecretStore, domain: str) -> int:
    if not _check_domain(domain):
        return 1
    secret = store.rotate(domain)
    _err(f"Rotated secret for: {domain}")
    print(secret)
    return 0


def cmd_list(store: SecretStore) -> int:
    domains = store.list()
    if not domains:
        _err("No secrets configured")
        return 0
    for domain in domains:
        print(domain)
    return 0


def cmd_delete(store: SecretStore, domain: str) -> int:
    if not _check_domain(domain):
        return 1
    if not store.delete(domain):
        _err(f"No secret found for: {domain}")
        return 1
    _err(f"Deleted secret for: {domain}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostauth",
        description="Manage per-domain JWT signing secrets for HostAuth.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hostauth secret get app.example.com
  hostauth secret rotate app.example.com
  hostauth secret list
  hostauth secret delete old.example.com
  JWT_SECRETS_DIR=/srv/secrets hostauth secret list
        """,
    )
    parser.add_argument(
        "--secrets-dir",
        metavar="PATH",
        help="Secrets directory (default: JWT_SECRETS_DIR or /var/lib/hostauth/secrets)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    secret = commands.add_parser("secret", help="Per-domain secret operations")
    actions = secret.add_subparsers(dest="action", required=True)

    get = actions.add_parser("get", help="Print the domain's secret, creating it if absent")
    get.add_argument("domain")
    rotate = actions.add_parser("rotate", help="Replace the domain's secret and print the new one")
    rotate.add_argument("domain")
    actions.add_parser("list", help="Print every domain that has a secret")
    delete = actions.add_parser("delete", help="Delete the domain's secret")
    delete.add_argument("domain")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        store = _store(args)
        if args.action == "get":
            return cmd_get(store, args.domain)
        if args.action == "rotate":
            return cmd_rotate(store, args.domain)
        if args.action == "list":
            return cmd_list(store)
        return cmd_delete(store, args.domain)
    except (OSError, ValueError) as exc:
        # OSError: permissions / missing parent dir. ValueError: bad settings.
        _err(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
