#!/usr/bin/env python
"""Command-line access to the ERP backend.

Usage:
    # Log in once; tokens are written to ERP_TOKEN_PATH
    python scripts/erp_api_cli.py login --email jane@example.com --password secret

    # List a page of a resource
    python scripts/erp_api_cli.py list employees --page 2 --filter is_active=true

    # Fetch one record / resource stats
    python scripts/erp_api_cli.py get invoices 6f1c0e1a-...
    python scripts/erp_api_cli.py stats companies

    # Show who the stored tokens belong to, then forget them
    python scripts/erp_api_cli.py whoami
    python scripts/erp_api_cli.py logout
"""

import argparse
import asyncio
import getpass
import json
import os
import sys
from typing import Any, Dict, List

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from connectors.erp_api import (
    ApiError,
    AuthApi,
    HttpClient,
    StatsCapable,
    build_resources,
)
from core.config import ApiSettings, ConfigurationError
from core.observability.logging import configure_logging


def _parse_filters(filters: List[str]) -> Dict[str, str]:
    params = {}
    for item in filters:
        if "=" not in item:
            raise ValueError(f"Filter must look like key=value, got {item!r}")
        key, value = item.split("=", 1)
        params[key.strip()] = value.strip()
    return params


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run(args: argparse.Namespace, settings: ApiSettings) -> int:
    async with HttpClient(settings) as client:
        auth = AuthApi(client)

        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            await auth.login(args.email, password)
            print("✓ Logged in")
            return 0

        if args.command == "logout":
            auth.logout()
            print("✓ Tokens cleared")
            return 0

        if args.command == "whoami":
            _print_json(await auth.current_user())
            return 0

        resources = build_resources(client).by_name()
        resource = resources.get(args.resource)
        if resource is None:
            print(f"Unknown resource {args.resource!r}. Choose from: {', '.join(sorted(resources))}")
            return 2

        if args.command == "list":
            params = _parse_filters(args.filter)
            params.update({"page": args.page, "page_size": args.page_size, "search": args.search})
            if args.parent:
                page = await resource.list(args.parent, params)
            else:
                page = await resource.list(params)
            _print_json(page.model_dump())
        elif args.command == "get":
            if args.parent:
                _print_json(await resource.get(args.parent, args.id))
            else:
                _print_json(await resource.get(args.id))
        elif args.command == "stats":
            if not isinstance(resource, StatsCapable):
                print(f"Resource {args.resource!r} has no stats endpoint")
                return 2
            _print_json(await resource.stats())
        return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="ERP backend API client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Obtain and store a token pair")
    login.add_argument("--email", required=True)
    login.add_argument("--password", help="Prompted for when omitted")

    subparsers.add_parser("logout", help="Clear stored tokens")
    subparsers.add_parser("whoami", help="Show the current user")

    list_cmd = subparsers.add_parser("list", help="List records of a resource")
    list_cmd.add_argument("resource")
    list_cmd.add_argument("--parent", help="Parent id for nested resources")
    list_cmd.add_argument("--page", type=int)
    list_cmd.add_argument("--page-size", type=int, dest="page_size")
    list_cmd.add_argument("--search")
    list_cmd.add_argument("--filter", action="append", default=[], help="key=value, repeatable")

    get_cmd = subparsers.add_parser("get", help="Fetch one record")
    get_cmd.add_argument("resource")
    get_cmd.add_argument("id")
    get_cmd.add_argument("--parent", help="Parent id for nested resources")

    stats_cmd = subparsers.add_parser("stats", help="Show resource statistics")
    stats_cmd.add_argument("resource")

    args = parser.parse_args()

    try:
        settings = ApiSettings.from_env()
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}")
        return 2

    configure_logging(level=settings.logging_level, json_format=settings.log_json)

    try:
        return asyncio.run(run(args, settings))
    except (ApiError, ValueError) as e:
        print(f"✗ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
