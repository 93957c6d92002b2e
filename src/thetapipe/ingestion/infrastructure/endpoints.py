# SPDX-License-Identifier: Apache-2.0
"""Static catalog of vendor REST endpoints.

Maps (security class, tick type, resolution) to the endpoint path, the row
layout it returns and whether the ``ivl`` sampling parameter is sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from thetapipe.domain.market_data import UnsupportedRequestCombination
from thetapipe.domain.value_objects import Resolution, SecurityClass, TickType

LIST_EXPIRATIONS = "/list/expirations"
LIST_STRIKES = "/list/strikes"


class RowKind(str, Enum):
    """Row layout of an endpoint and the record it decodes into."""

    TRADE_TICK = "trade_tick"  # TradeTick
    OHLC = "ohlc"  # TradeBar
    EOD = "eod"  # TradeBar from the end-of-day report
    EOD_QUOTE = "eod_quote"  # QuoteTick from the end-of-day report
    QUOTE = "quote"  # QuoteTick
    OPEN_INTEREST = "open_interest"  # OpenInterest
    INDEX_PRICE = "index_price"  # TradeTick


@dataclass(frozen=True)
class EndpointSpec:
    path: str
    row_kind: RowKind
    sends_interval: bool = False


_ASSET_PATH = {
    SecurityClass.EQUITY: "stock",
    SecurityClass.INDEX: "index",
    SecurityClass.OPTION: "option",
    SecurityClass.INDEX_OPTION: "option",
}

_INTRADAY = (Resolution.SECOND, Resolution.MINUTE, Resolution.HOUR)


def _build_catalog() -> Dict[Tuple[str, TickType, Resolution], EndpointSpec]:
    catalog: Dict[Tuple[str, TickType, Resolution], EndpointSpec] = {}

    for asset in ("stock", "option"):
        base = f"/hist/{asset}"
        catalog[(asset, TickType.TRADE, Resolution.TICK)] = EndpointSpec(
            f"{base}/trade", RowKind.TRADE_TICK
        )
        for resolution in _INTRADAY:
            catalog[(asset, TickType.TRADE, resolution)] = EndpointSpec(
                f"{base}/ohlc", RowKind.OHLC, sends_interval=True
            )
        catalog[(asset, TickType.TRADE, Resolution.DAILY)] = EndpointSpec(
            f"{base}/eod", RowKind.EOD
        )

        for resolution in (Resolution.TICK, *_INTRADAY):
            catalog[(asset, TickType.QUOTE, resolution)] = EndpointSpec(
                f"{base}/quote", RowKind.QUOTE, sends_interval=True
            )
        catalog[(asset, TickType.QUOTE, Resolution.DAILY)] = EndpointSpec(
            f"{base}/eod", RowKind.EOD_QUOTE
        )

    catalog[("option", TickType.OPEN_INTEREST, Resolution.DAILY)] = EndpointSpec(
        "/hist/option/open_interest", RowKind.OPEN_INTEREST
    )

    catalog[("index", TickType.TRADE, Resolution.TICK)] = EndpointSpec(
        "/hist/index/price", RowKind.INDEX_PRICE, sends_interval=True
    )
    for resolution in _INTRADAY:
        catalog[("index", TickType.TRADE, resolution)] = EndpointSpec(
            "/hist/index/ohlc", RowKind.OHLC, sends_interval=True
        )
    catalog[("index", TickType.TRADE, Resolution.DAILY)] = EndpointSpec(
        "/hist/index/eod", RowKind.EOD
    )
    return catalog


CATALOG = _build_catalog()


def resolve_endpoint(
    security_class: SecurityClass, tick_type: TickType, resolution: Resolution
) -> EndpointSpec:
    """Look up the endpoint serving a request.

    Raises:
        UnsupportedRequestCombination: If no endpoint serves the combination.
    """
    try:
        return CATALOG[(_ASSET_PATH[security_class], tick_type, resolution)]
    except KeyError:
        raise UnsupportedRequestCombination(
            f"No endpoint for {security_class.value} {tick_type.value} at {resolution.value} resolution"
        ) from None


# Vendor numeric exchange codes
EXCHANGES: Dict[int, str] = {
    code: name
    for code, name in enumerate(
        (
            "NQEX", "NQAD", "NYSE", "AMEX", "CBOE", "ISEX", "PACF", "CINC", "PHIL", "OPRA",
            "BOST", "NQNM", "NQSC", "NQBB", "NQPK", "NQIX", "CHIC", "TSE", "CDNX", "CME",
            "NYBT", "MRCY", "COMX", "CBOT", "NYMX", "KCBT", "MGEX", "NYBO", "NQBS", "DOWJ",
            "GEMI", "SIMX", "FTSE", "EURX", "IMPL", "DTN", "LMT", "LME", "IPEX", "NQMF",
            "FCEC", "C2", "MIAX", "CLRP", "BARK", "EMLD", "NQBX", "HOTS", "EUUS", "EUEU",
            "ENCM", "ENID", "ENIR", "CFE", "PBOT", "CMEFloor", "NQNX", "BTRF", "NTRF", "BATS",
            "FCBT", "PINK", "BATY", "EDGE", "EDGX", "RUSL", "CMEX", "IEX", "PERL", "LSE",
            "GIF", "TSIX", "MEMX", "EMPT", "LTSE", "EMPT", "EMPT",
        ),
        start=1,
    )
}


def exchange_name(code) -> str:
    """Mnemonic of a vendor exchange code; unknown or missing codes give ``""``."""
    try:
        return EXCHANGES.get(int(code), "")
    except (TypeError, ValueError):
        return ""


__all__ = [
    "EXCHANGES",
    "exchange_name",
    "LIST_EXPIRATIONS",
    "LIST_STRIKES",
    "RowKind",
    "EndpointSpec",
    "CATALOG",
    "resolve_endpoint",
]
