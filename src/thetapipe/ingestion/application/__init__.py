# SPDX-License-Identifier: Apache-2.0
"""History and option-chain services built on the REST transport."""

from __future__ import annotations

from .history_service import HistoryOrchestrator, PreparedQuery
from .option_chain import OptionChainProvider

__all__ = ["HistoryOrchestrator", "PreparedQuery", "OptionChainProvider"]
