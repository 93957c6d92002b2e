# SPDX-License-Identifier: Apache-2.0
"""ThetaPipe command line: history, option chains and plan details."""

from __future__ import annotations

import csv
import datetime as dt
import logging
import sys
from dataclasses import fields
from typing import Optional

import typer

from thetapipe.domain.market_data import ThetaPipeError
from thetapipe.domain.subscription_plans import PLANS
from thetapipe.domain.value_objects import (
    InstrumentKey,
    OptionRight,
    Resolution,
    SecurityClass,
    TickType,
)

app = typer.Typer(
    add_completion=False,
    help="ThetaData market data commands (requires a running ThetaData terminal)",
)


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid date '{value}', expected YYYY-MM-DD") from None


def _instrument(
    root: str,
    security_class: SecurityClass,
    expiry: Optional[str],
    strike: Optional[str],
    right: Optional[str],
) -> InstrumentKey:
    try:
        if security_class.is_option:
            if not (expiry and strike and right):
                raise typer.BadParameter("Options need --expiry, --strike and --right")
            return InstrumentKey.option(
                root,
                _parse_date(expiry),
                strike,
                OptionRight.from_code(right),
                index_option=security_class is SecurityClass.INDEX_OPTION,
            )
        return InstrumentKey(root, security_class)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def history(
    root: str = typer.Argument(..., help="Underlying root symbol, e.g. AAPL"),
    start: str = typer.Option(..., "--start", help="Start date (YYYY-MM-DD, inclusive)"),
    end: str = typer.Option(..., "--end", help="End date (YYYY-MM-DD, inclusive)"),
    security_class: SecurityClass = typer.Option(SecurityClass.OPTION, "--security-class", "-s"),
    resolution: Resolution = typer.Option(Resolution.DAILY, "--resolution", "-r"),
    tick_type: TickType = typer.Option(TickType.TRADE, "--tick-type", "-t"),
    expiry: Optional[str] = typer.Option(None, "--expiry", help="Option expiry (YYYY-MM-DD)"),
    strike: Optional[str] = typer.Option(None, "--strike", help="Option strike, e.g. 170"),
    right: Optional[str] = typer.Option(None, "--right", help="C or P"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Print historical records as CSV.

    Examples:
        thetapipe history AAPL --expiry 2024-01-19 --strike 170 --right C --start 2024-01-02 --end 2024-01-18
        thetapipe history SPY -s EQUITY -r minute -t quote --start 2024-01-02 --end 2024-01-05
    """
    from thetapipe.provider import ThetaDataProvider

    _setup_logging(verbose)
    instrument = _instrument(root, security_class, expiry, strike, right)
    start_utc = dt.datetime.combine(_parse_date(start), dt.time.min, tzinfo=dt.timezone.utc)
    end_utc = dt.datetime.combine(
        _parse_date(end) + dt.timedelta(days=1), dt.time.min, tzinfo=dt.timezone.utc
    )

    with ThetaDataProvider() as provider:
        try:
            records = provider.history.get_history(
                instrument, resolution, tick_type, start_utc, end_utc
            )
            if records is None:
                print("No data: the request is not supported by your plan or is invalid")
                raise typer.Exit(1)

            writer = None
            count = 0
            for record in records:
                row = {f.name: getattr(record, f.name) for f in fields(record)}
                row["instrument"] = str(record.instrument)
                if writer is None:
                    writer = csv.DictWriter(sys.stdout, fieldnames=list(row))
                    writer.writeheader()
                writer.writerow(row)
                count += 1
            if count == 0:
                print("Query returned no results")
        except ThetaPipeError as e:
            print(f"❌ History request failed: {e}")
            raise typer.Exit(1) from e


@app.command()
def chain(
    root: str = typer.Argument(..., help="Underlying root symbol"),
    index: bool = typer.Option(False, "--index", help="Underlying is an index (e.g. SPX)"),
    min_expiry: Optional[str] = typer.Option(
        None, "--min-expiry", help="Skip expiries before this date (default: today)"
    ),
    max_expiry: Optional[str] = typer.Option(None, "--max-expiry", help="Last expiry to include"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """List option contracts on an underlying as CSV."""
    from thetapipe.provider import ThetaDataProvider

    _setup_logging(verbose)
    underlying = InstrumentKey.index(root) if index else InstrumentKey.equity(root)

    with ThetaDataProvider() as provider:
        try:
            if min_expiry is None and max_expiry is None:
                contracts = provider.lookup_symbols(underlying)
            else:
                start = _parse_date(min_expiry) if min_expiry else dt.date.today()
                end = _parse_date(max_expiry) if max_expiry else None
                contracts = provider.get_option_chain(underlying, start, end)
        except ThetaPipeError as e:
            print(f"❌ Option chain request failed: {e}")
            raise typer.Exit(1) from e

    writer = csv.writer(sys.stdout)
    writer.writerow(["root", "security_class", "expiry", "strike", "right", "ticker"])
    for contract in contracts:
        writer.writerow(
            [
                contract.root,
                contract.security_class.value,
                contract.expiry.isoformat(),
                f"{contract.strike.normalize():f}",
                contract.right.value,
                provider.codec.encode(contract),
            ]
        )


@app.command()
def plans():
    """Show what each subscription plan gives access to."""
    writer = csv.writer(sys.stdout)
    writer.writerow(
        ["plan", "resolutions", "first_access_date", "max_streaming_contracts", "rate_limit_per_min"]
    )
    for plan in PLANS.values():
        writer.writerow(
            [
                plan.name,
                " ".join(r.value for r in Resolution if plan.allows(r)),
                plan.first_access_date.isoformat(),
                plan.max_streaming_contracts,
                plan.rate_limit_per_min or "",
            ]
        )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
