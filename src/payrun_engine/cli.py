"""Payroll run engine command line interface.

Provides operational tools for:
- Schema creation
- Seeding jurisdiction tax rules from a JSON file
- Inspecting a run
- Calculating a run outside the API

Usage:
    payrun-engine init-db
    payrun-engine seed-tax-rules --file rules.json
    payrun-engine show-run --run-id X
    payrun-engine calculate --run-id X --actor ops
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.money import to_decimal
from payrun_engine.calculators.tax_rules import TAX_CATEGORIES, TAX_METHODS, TAX_SIDES
from payrun_engine.config import get_settings
from payrun_engine.database import create_schema, dispose_db, init_db
from payrun_engine.exceptions import PayrollEngineError
from payrun_engine.logging_config import configure_logging
from payrun_engine.models import JurisdictionTaxRule
from payrun_engine.services.payroll_run_service import PayrollRunService
from payrun_engine.services.run_queries import RunQueryService


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def rule_from_dict(raw: dict[str, Any]) -> JurisdictionTaxRule:
    """Build a rule row from one entry of a seed file."""
    method = raw.get("method", "flat")
    if method not in TAX_METHODS:
        raise ValueError(f"Unknown method '{method}' for rule {raw.get('name')}")
    side = raw.get("side", "employee")
    if side not in TAX_SIDES:
        raise ValueError(f"Unknown side '{side}' for rule {raw.get('name')}")
    category = raw.get("category")
    if category is not None and category not in TAX_CATEGORIES:
        raise ValueError(f"Unknown category '{category}' for rule {raw.get('name')}")

    effective_to = raw.get("effective_to")
    return JurisdictionTaxRule(
        jurisdiction=raw["jurisdiction"],
        name=raw["name"],
        side=side,
        method=method,
        rate=to_decimal(raw.get("rate")),
        brackets=list(raw.get("brackets") or []),
        wage_cap=to_decimal(raw.get("wage_cap")),
        category=category,
        effective_from=date.fromisoformat(raw["effective_from"]),
        effective_to=date.fromisoformat(effective_to) if effective_to else None,
    )


async def seed_tax_rules(session: AsyncSession, rules: list[dict[str, Any]]) -> int:
    """Insert rules that are not present yet; returns how many were added."""
    created = 0
    for raw in rules:
        rule = rule_from_dict(raw)
        existing = await session.scalar(
            select(JurisdictionTaxRule.id).where(
                JurisdictionTaxRule.jurisdiction == rule.jurisdiction,
                JurisdictionTaxRule.name == rule.name,
                JurisdictionTaxRule.side == rule.side,
                JurisdictionTaxRule.effective_from == rule.effective_from,
            )
        )
        if existing is not None:
            continue
        session.add(rule)
        created += 1
    await session.commit()
    return created


class PayrunCli:
    """Payroll run engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payrun-engine",
            description="Payroll run engine operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Override DATABASE_URL",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables that do not exist")

        seed = subparsers.add_parser(
            "seed-tax-rules",
            help="Load jurisdiction tax rules from a JSON file",
        )
        seed.add_argument(
            "--file",
            type=str,
            required=True,
            help="JSON file holding a list of rule objects",
        )

        show = subparsers.add_parser("show-run", help="Print a run and its totals")
        show.add_argument("--run-id", type=parse_uuid, required=True)
        show.add_argument(
            "--lines",
            action="store_true",
            help="Also print each person's line",
        )

        calculate = subparsers.add_parser("calculate", help="Calculate a run")
        calculate.add_argument("--run-id", type=parse_uuid, required=True)
        calculate.add_argument("--actor", type=str, help="Actor id recorded on the run")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[..., Any]] = {
            "init-db": self._cmd_init_db,
            "seed-tax-rules": self._cmd_seed_tax_rules,
            "show-run": self._cmd_show_run,
            "calculate": self._cmd_calculate,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        settings = get_settings()
        configure_logging(settings.log_level, settings.log_format)
        try:
            return asyncio.run(self._with_db(handler, parsed))
        except PayrollEngineError as e:
            print(f"ERROR [{e.code}]: {e.reason}", file=sys.stderr)
            return 1
        except (SQLAlchemyError, OSError, ValueError, KeyError) as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    async def _with_db(self, handler: Callable[..., Any], args: argparse.Namespace) -> int:
        init_db(args.database_url)
        try:
            return await handler(args)
        finally:
            await dispose_db()

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create the schema."""
        engine, _ = init_db()
        await create_schema(engine)
        print("Schema created.")
        return 0

    async def _cmd_seed_tax_rules(self, args: argparse.Namespace) -> int:
        """Seed tax rules from a JSON file."""
        with open(args.file, encoding="utf-8") as fh:
            rules = json.load(fh)
        if not isinstance(rules, list):
            print("ERROR: seed file must hold a JSON list", file=sys.stderr)
            return 1

        _, factory = init_db()
        async with factory() as session:
            created = await seed_tax_rules(session, rules)
        print(f"Seeded {created} rule(s); {len(rules) - created} already present.")
        return 0

    async def _cmd_show_run(self, args: argparse.Namespace) -> int:
        """Print a run summary."""
        _, factory = init_db()
        async with factory() as session:
            run = await RunQueryService(session).get_run_detail(args.run_id)

        print(f"Run {run.id} ({run.run_type} #{run.run_number})")
        print(f"  Status:      {run.status}")
        print(f"  Version:     {run.calculation_version}")
        print(f"  Employees:   {run.employee_count}")
        print(f"  Anomalies:   {run.anomaly_count}")
        print(f"  Gross:       {run.total_gross_pay}")
        print(f"  Net:         {run.total_net_pay}")
        print(f"  EE taxes:    {run.total_employee_taxes}")
        print(f"  Deductions:  {run.total_employee_deductions}")
        if run.journal_entry_id:
            print(f"  Journal:     {run.journal_entry_id}")

        if args.lines:
            for line in run.lines:
                if line.is_included:
                    print(f"  - {line.full_name}: gross {line.gross_pay} net {line.net_pay}")
                else:
                    print(f"  - {line.full_name}: excluded ({line.exclude_reason})")
        return 0

    async def _cmd_calculate(self, args: argparse.Namespace) -> int:
        """Calculate a run and print the outcome."""
        _, factory = init_db()
        async with factory() as session:
            outcome = await PayrollRunService(session).calculate_run(
                args.run_id, actor_id=args.actor
            )

        print(f"Run {outcome.run.id} calculated (version {outcome.run.calculation_version})")
        print(f"  Employees: {outcome.totals.employee_count}")
        print(f"  Gross:     {outcome.totals.total_gross_pay}")
        print(f"  Net:       {outcome.totals.total_net_pay}")
        for anomaly in outcome.anomalies:
            print(f"  ! [{anomaly.severity.value}] {anomaly.full_name}: {anomaly.message}")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayrunCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
