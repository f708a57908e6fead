"""
Cooperative cancellation for long-running sweeps
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from core.exceptions import InputError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Set once to stop new work.

    Workers check `cancelled` before starting each unit of work; work already
    in flight finishes and is finalized by its owner.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class CancellationRegistry:
    """Tokens of the sweeps currently running, keyed by project id"""

    def __init__(self):
        self._tokens: Dict[str, CancellationToken] = {}

    @contextmanager
    def track(self, key: str, token: Optional[CancellationToken] = None) -> Iterator[CancellationToken]:
        """
        Register a token for `key` while the block runs.

        Raises:
            InputError: another sweep is already registered under `key`
        """
        if key in self._tokens:
            raise InputError(f"An optimization or evaluation sweep is already running for {key}")
        token = token or CancellationToken()
        self._tokens[key] = token
        try:
            yield token
        finally:
            if self._tokens.get(key) is token:
                del self._tokens[key]

    def cancel(self, key: str, reason: str = "cancelled") -> bool:
        """Cancel the sweep running under `key`; False when nothing is running"""
        token = self._tokens.get(key)
        if token is None:
            return False
        logger.info(f"Cancelling sweep for {key}: {reason}")
        token.cancel(reason)
        return True

    def is_running(self, key: str) -> bool:
        return key in self._tokens

    def active(self) -> List[str]:
        return sorted(self._tokens)
