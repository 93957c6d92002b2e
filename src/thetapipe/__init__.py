# SPDX-License-Identifier: Apache-2.0
"""ThetaPipe: ThetaData options and equities market data client."""

import logging

__version__ = "0.1.0"

logging.getLogger("thetapipe").addHandler(logging.NullHandler())

__all__ = [
    "cli",
    "domain",
    "ingestion",
    "metrics",
    "provider",
    "settings",
    "streaming",
    "__version__",
]
