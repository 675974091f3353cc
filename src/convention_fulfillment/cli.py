"""Operator commands for the convention desk and deployments.

    python -m convention_fulfillment.cli init-db
    python -m convention_fulfillment.cli validate-qr '<scanned content>'
    python -m convention_fulfillment.cli secure-link DINNER_1735000000000_2348012345678
    python -m convention_fulfillment.cli metrics --format json

Commands print their result to stdout and return a non-zero exit status on
failure, with the reason on stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from convention_fulfillment.config import get_settings
from convention_fulfillment.database import create_tables, dispose_db, init_db
from convention_fulfillment.metrics import FulfillmentMetrics, Gauge
from convention_fulfillment.security.download_tokens import SecureDownloadService
from convention_fulfillment.security.rate_limit import InMemoryQuotaStore
from convention_fulfillment.services.qr_service import QRCodeService
from convention_fulfillment.services.references import is_valid_payment_reference
from convention_fulfillment.services.service_kinds import SERVICE_KINDS


def _fail(message: object) -> int:
    print(f"ERROR: {message}", file=sys.stderr)
    return 1


class FulfillmentCli:
    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        database = argparse.ArgumentParser(add_help=False)
        database.add_argument("--database-url", help="Override DATABASE_URL")

        parser = argparse.ArgumentParser(
            prog="python -m convention_fulfillment.cli",
            description="Convention fulfillment operational tools",
        )
        commands = parser.add_subparsers(dest="command")

        commands.add_parser(
            "init-db", parents=[database], help="Create missing tables"
        ).set_defaults(handler=self._cmd_init_db)

        validate = commands.add_parser("validate-qr", help="Verify scanned QR content")
        validate.add_argument("content", help="Raw QR content (JSON)")
        validate.set_defaults(handler=self._cmd_validate_qr)

        link = commands.add_parser("secure-link", help="Mint a token-gated download URL")
        link.add_argument("reference", help="Payment reference")
        link.add_argument("--expires-in", type=int, default=24 * 3600, metavar="SECONDS")
        link.add_argument("--max-downloads", type=int, default=10)
        link.add_argument("--email", help="Bind the token to this email")
        link.add_argument("--phone", help="Bind the token to this phone")
        link.set_defaults(handler=self._cmd_secure_link)

        metrics = commands.add_parser(
            "metrics", parents=[database], help="Booking counts per kind and status"
        )
        metrics.add_argument("--format", choices=["prometheus", "json"], default="prometheus")
        metrics.set_defaults(handler=self._cmd_metrics)

        return parser

    def run(self, args: list[str] | None = None) -> int:
        parsed = self.parser.parse_args(args)
        handler = getattr(parsed, "handler", None)
        if handler is None:
            self.parser.print_help()
            return 1
        return handler(parsed)

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        async def _create() -> None:
            engine, _ = init_db(args.database_url)
            try:
                await create_tables(engine)
            finally:
                await dispose_db()

        try:
            asyncio.run(_create())
        except (SQLAlchemyError, OSError) as exc:
            return _fail(exc)
        print("Tables created")
        return 0

    def _cmd_validate_qr(self, args: argparse.Namespace) -> int:
        """Check a code's signature and expiry."""
        service = QRCodeService(get_settings().qr_secret_key)
        result = service.validate(args.content)
        output = {
            "valid": result.valid,
            "error": result.error,
            "data": result.data.to_json_dict() if result.data else None,
        }
        print(json.dumps(output, indent=2))
        return 0 if result.valid else 1

    def _cmd_secure_link(self, args: argparse.Namespace) -> int:
        """Print a secure download URL."""
        if not is_valid_payment_reference(args.reference):
            return _fail("Invalid payment reference format")
        settings = get_settings()
        downloads = SecureDownloadService(settings.pdf_secret_key, InMemoryQuotaStore())
        try:
            url = downloads.generate_secure_url(
                settings.public_base_url,
                args.reference,
                user_email=args.email,
                user_phone=args.phone,
                expires_in=timedelta(seconds=args.expires_in),
                max_downloads=args.max_downloads,
            )
        except ValueError as exc:
            return _fail(exc)
        print(url)
        return 0

    def _cmd_metrics(self, args: argparse.Namespace) -> int:
        """Emit booking counts."""
        try:
            snapshot = asyncio.run(self._collect_booking_counts(args.database_url))
        except (SQLAlchemyError, OSError) as exc:
            return _fail(exc)

        if args.format == "json":
            print(snapshot.to_json())
        else:
            print(snapshot.to_prometheus(), end="")
        return 0

    async def _collect_booking_counts(self, database_url: str | None) -> FulfillmentMetrics:
        _, factory = init_db(database_url)
        gauges: list[Gauge] = []
        try:
            async with factory() as session:
                for spec in SERVICE_KINDS.values():
                    rows = await session.execute(
                        select(spec.model.status, func.count()).group_by(spec.model.status)
                    )
                    for status, count in rows.all():
                        gauges.append(
                            Gauge(
                                name="fulfillment_bookings",
                                value=count,
                                labels={"kind": spec.name, "status": status},
                                help_text="Stored bookings by kind and status",
                            )
                        )
        finally:
            await dispose_db()
        return FulfillmentMetrics(counters=[], gauges=gauges)


def main() -> int:
    return FulfillmentCli().run()


if __name__ == "__main__":
    sys.exit(main())
