"""
Command line entry point for Margin Tracker.

Usage:
    margintrack customers
    margintrack add-customer "Acme Co" --code ACM
    margintrack styles --customer "Acme Co"
    margintrack import styles.xlsx --customer "Acme Co"
    margintrack export --customer "Acme Co" --format csv --out ./exports
    margintrack watch --customer "Acme Co" --pocketbase https://pb.example.com
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from margintrack.application.container import AppContainer, build_container
from margintrack.config import get_app_paths, load_config
from margintrack.domain.errors import AppError, NotFoundError, StoreError, user_message
from margintrack.domain.models import Customer, Notice, PushEvent
from margintrack.logging_config import setup_logging
from margintrack.services import export_service
from margintrack.services.analytics_service import bracket_shares
from margintrack.services.formulas import compute_metrics
from margintrack.services.import_service import write_template

log = logging.getLogger(__name__)


class ConsoleNotifier:
    """Prints notices to stderr and remembers whether an error was shown."""

    def __init__(self) -> None:
        self.error_shown = False

    def __call__(self, notice: Notice) -> None:
        if notice.level == "error":
            self.error_shown = True
        text = f"[{notice.level}] {notice.title}"
        if notice.message:
            text += f": {notice.message}"
        print(text, file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="margintrack", description="Style margin tracker")
    parser.add_argument("--db", metavar="FILE", help="SQLite database (default: per-user app data)")
    parser.add_argument("--config", metavar="FILE", help="JSON file overriding business constants")
    parser.add_argument("--pocketbase", metavar="URL", default=os.environ.get("MARGINTRACK_PB_URL"),
                        help="Use a PocketBase server instead of the local database")
    parser.add_argument("--email", default=os.environ.get("MARGINTRACK_PB_EMAIL"), help="PocketBase login")
    parser.add_argument("--password", default=os.environ.get("MARGINTRACK_PB_PASSWORD"), help="PocketBase password")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console as well")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("customers", help="List customers")

    p = sub.add_parser("add-customer", help="Create a customer")
    p.add_argument("name")
    p.add_argument("--code", default="")

    p = sub.add_parser("styles", help="List a customer's styles with derived metrics")
    p.add_argument("--customer", required=True, help="Customer id or name")

    p = sub.add_parser("summary", help="Portfolio metrics for a customer")
    p.add_argument("--customer", required=True, help="Customer id or name")

    p = sub.add_parser("import", help="Import styles from .xlsx or .csv")
    p.add_argument("file", type=Path)
    p.add_argument("--customer", required=True, help="Customer id or name")

    p = sub.add_parser("export", help="Export a customer's styles")
    p.add_argument("--customer", required=True, help="Customer id or name")
    p.add_argument("--format", choices=("xlsx", "csv"), default="xlsx")
    p.add_argument("--out", type=Path, default=Path("."), metavar="DIR")

    p = sub.add_parser("template", help="Write an import template workbook")
    p.add_argument("path", type=Path)

    p = sub.add_parser("watch", help="Print changes made by other clients")
    p.add_argument("--customer", required=True, help="Customer id or name")
    p.add_argument("--seconds", type=float, default=None, help="Stop after this long")

    return parser


async def _resolve_customer(c: AppContainer, ref: str) -> Customer:
    customers = await c.store.list_customers()
    for cust in customers:
        if cust.id == ref:
            return cust
    matches = [cust for cust in customers if cust.name.lower() == ref.lower()]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise NotFoundError(f"Customer name is ambiguous, use the id: {ref}")
    raise NotFoundError(f"Customer not found: {ref}")


async def _cmd_customers(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    for cust in await c.store.list_customers():
        print(f"{cust.id}\t{cust.name}\t{cust.code}")
    return 0


async def _cmd_add_customer(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    cust = await c.executor.run(lambda: c.store.create_customer(args.name, args.code))
    print(cust.id)
    return 0


async def _cmd_styles(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    cust = await _resolve_customer(c, args.customer)
    service = c.styles_for(cust.id, notify)
    for r in await service.load():
        m = compute_metrics(r, c.config)
        print(
            f"{r.id}\t{r.style_code or '-'}\t{r.units or 0}\t"
            f"{export_service.format_currency(m.revenue, c.config)}\t"
            f"{export_service.format_percent(m.margin_percent)}\t{m.margin_status.value}"
        )
    return 0


async def _cmd_summary(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    cust = await _resolve_customer(c, args.customer)
    service = c.styles_for(cust.id, notify)
    await service.load()
    m = service.metrics()
    money = lambda v: export_service.format_currency(v, c.config)  # noqa: E731
    print(f"Customer:         {cust.name}")
    print(f"Styles:           {m.item_count}")
    print(f"Units:            {m.total_units:,}")
    print(f"Revenue:          {money(m.total_revenue)}")
    print(f"Profit:           {money(m.total_profit)}")
    print(f"Weighted margin:  {export_service.format_percent(m.weighted_average_margin)}")
    print(f"Below target:     {m.below_target_count}")
    print(f"At risk:          {m.at_risk_count}")
    for name, share in bracket_shares(m).items():
        print(f"  {name:<10} {m.margin_brackets.as_dict()[name]:>5}  {share:6.1f}%")
    return 0


async def _cmd_import(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    cust = await _resolve_customer(c, args.customer)
    summary = await c.importer.import_file(cust.id, args.file)
    print(f"Imported {summary.imported}, skipped {summary.skipped}, errors {summary.error_count}")
    for line in summary.errors:
        print(f"  {line}", file=sys.stderr)
    return 0 if summary.error_count == 0 else 2


async def _cmd_export(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    cust = await _resolve_customer(c, args.customer)
    service = c.styles_for(cust.id, notify)
    records = await service.load()
    args.out.mkdir(parents=True, exist_ok=True)
    path = args.out / export_service.export_filename(cust.name, args.format)
    if args.format == "xlsx":
        export_service.write_xlsx(path, records, c.config, title="Styles")
    else:
        export_service.write_csv(path, records, c.config)
    print(path)
    return 0


async def _cmd_watch(c: AppContainer, args, notify: ConsoleNotifier) -> int:
    cust = await _resolve_customer(c, args.customer)
    service = c.styles_for(cust.id, notify)
    await service.load()

    def show(event: PushEvent) -> None:
        print(f"{event.action.value}\t{event.record.id}\t{event.record.style_code}", flush=True)

    service.on_push = show
    if not await service.subscribe():
        return 1
    print(f"Watching {cust.name}... (Ctrl+C to stop)", file=sys.stderr)
    try:
        if args.seconds is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(args.seconds)
    finally:
        await service.shutdown()
    return 0


def _describe(error: AppError) -> str:
    if isinstance(error, StoreError):
        return f"{user_message(error)} ({error})"
    return str(error)


COMMANDS = {
    "customers": _cmd_customers,
    "add-customer": _cmd_add_customer,
    "styles": _cmd_styles,
    "summary": _cmd_summary,
    "import": _cmd_import,
    "export": _cmd_export,
    "watch": _cmd_watch,
}


def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO, console=args.verbose)

    notify = ConsoleNotifier()
    try:
        if args.command == "template":
            write_template(args.path)
            print(args.path)
            return 0

        config_path = args.config or (paths.config_path if paths.config_path.exists() else None)
        config = load_config(config_path)
        container = build_container(
            db_path=args.db or paths.db_path,
            config=config,
            pocketbase_url=args.pocketbase,
            email=args.email,
            password=args.password,
        )
        return asyncio.run(COMMANDS[args.command](container, args, notify))
    except KeyboardInterrupt:
        return 130
    except AppError as e:
        log.warning("command_failed command=%s error=%s", args.command, e)
        if not notify.error_shown:
            print(f"Error: {_describe(e)}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
