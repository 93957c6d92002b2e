# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import threading
from typing import Optional, Set


class OnceLogger:
    """Log each diagnostic class at most once for the life of the instance."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(self.__class__.__name__)
        self._fired: Set[str] = set()
        self._lock = threading.Lock()

    def fire(self, diagnostic: str, level: int, msg: str, *args) -> bool:
        """Log ``msg`` unless ``diagnostic`` already fired; return whether it logged."""
        with self._lock:
            if diagnostic in self._fired:
                return False
            self._fired.add(diagnostic)
        self.log.log(level, msg, *args)
        return True

    def has_fired(self, diagnostic: str) -> bool:
        with self._lock:
            return diagnostic in self._fired


__all__ = ["OnceLogger"]
