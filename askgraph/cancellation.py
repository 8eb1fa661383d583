"""
Request cancellation for askgraph.

A CancelToken is created per request and checked at every suspension point:
around LLM calls and around graph store queries.
"""

import logging
import threading
from typing import Optional

from .errors import CancellationError


CANCELLED_MESSAGE = "Operation cancelled by user"


class CancelToken:
    """
    Thread-safe cancellation flag shared by the caller and the running request.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        logging.info("Cancellation requested")
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: Optional[str] = None):
        """
        Raise CancellationError if the request was cancelled.

        Args:
            where: Name of the suspension point, for the log
        """
        if self._event.is_set():
            if where:
                logging.info(f"Request cancelled at {where}")
            raise CancellationError(CANCELLED_MESSAGE)


def check_cancelled(token: Optional[CancelToken], where: Optional[str] = None):
    if token is not None:
        token.raise_if_cancelled(where)
