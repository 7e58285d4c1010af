"""
Administrative CLI for TrustPact.

Operates directly on the configured document store with explicit
identities, for support and testing work:
- create: Send a request on behalf of a user
- show: Print one request
- list: List requests by sender or receiver
- set-status: Overwrite a request's status

Usage:
    trustpact-admin create --sender alice --receiver bob --hours 48
    trustpact-admin show 6f1c...
    trustpact-admin list --receiver bob
    trustpact-admin set-status 6f1c... declined

Invariants:
    - Output is JSON on stdout, errors on stderr
    - Exit code 0 on success, 1 on a TrustPact error
    - Store settings come from TRUSTPACT_* environment variables
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Any, Sequence

from ..config import Settings
from ..errors import TrustPactError
from ..models import RequestStatus, TrustRequest, utc_now
from ..repository import RequestRepository
from ..store import DocumentStore, create_document_store

logger = logging.getLogger(__name__)


def request_to_json(request: TrustRequest) -> dict[str, Any]:
    """Document shape plus derived state."""
    data = request.to_document()
    data["isValid"] = request.is_valid()
    data["canBeAccepted"] = request.can_be_accepted()
    return data


class AdminCLI:
    """Command implementations over a RequestRepository.

    Example:
        >>> cli = AdminCLI(repository)
        >>> await cli.create("alice", "bob", hours=24)
    """

    def __init__(self, repository: RequestRepository) -> None:
        self.repository = repository

    async def create(self, sender: str, receiver: str, hours: int | None = None) -> dict[str, Any]:
        expiration = utc_now() + timedelta(hours=hours) if hours is not None else None
        request = await self.repository.create(sender, receiver, expiration)
        return request_to_json(request)

    async def show(self, request_id: str) -> dict[str, Any]:
        return request_to_json(await self.repository.get_by_id(request_id))

    async def list_requests(self, sender: str | None = None, receiver: str | None = None) -> list[dict[str, Any]]:
        if sender is not None:
            requests = await self.repository.list_by_sender(sender)
        else:
            requests = await self.repository.list_by_receiver(receiver)
        return [request_to_json(r) for r in requests]

    async def set_status(self, request_id: str, status: str) -> dict[str, Any]:
        await self.repository.set_status(request_id, RequestStatus(status))
        return await self.show(request_id)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trustpact-admin",
        description="TrustPact administrative tool",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create a trust request")
    create_parser.add_argument("--sender", required=True, help="Sending user id")
    create_parser.add_argument("--receiver", required=True, help="Receiving user id")
    create_parser.add_argument("--hours", type=int, help="Validity window in hours")

    show_parser = subparsers.add_parser("show", help="Show a trust request")
    show_parser.add_argument("request_id", help="Request id")

    list_parser = subparsers.add_parser("list", help="List trust requests")
    group = list_parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--sender", help="Filter by sender")
    group.add_argument("--receiver", help="Filter by receiver")

    status_parser = subparsers.add_parser("set-status", help="Overwrite a request's status")
    status_parser.add_argument("request_id", help="Request id")
    status_parser.add_argument(
        "status",
        choices=[s.value for s in RequestStatus],
        help="New status",
    )

    return parser


async def run(args: argparse.Namespace, store: DocumentStore, settings: Settings) -> Any:
    """Execute one parsed command against a store."""
    await store.connect()
    try:
        cli = AdminCLI(
            RequestRepository(
                store,
                collection=settings.collection,
                default_expiration=settings.default_expiration,
                strict_transitions=settings.strict_transitions,
            )
        )
        if args.command == "create":
            return await cli.create(args.sender, args.receiver, args.hours)
        elif args.command == "show":
            return await cli.show(args.request_id)
        elif args.command == "list":
            return await cli.list_requests(sender=args.sender, receiver=args.receiver)
        elif args.command == "set-status":
            return await cli.set_status(args.request_id, args.status)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await store.close()


def main(argv: Sequence[str] | None = None, store: DocumentStore | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    try:
        settings.validate_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        result = asyncio.run(run(args, store or create_document_store(settings), settings))
    except TrustPactError as e:
        print(json.dumps({"error": e.message, "error_code": e.code}), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
