"""
Paused searches.

A search that can go on (more results to page through, or an empty result
that could be broadened) returns a ContinuationToken instead of waiting on the
user. The caller resumes it later with the user's decision. A token, like an
interactive wait for a decision, is only valid for a bounded time.
"""

import logging
import queue
import sys
import threading
import time
from typing import List, Optional, TextIO

from ..errors import UserChoiceTimeoutError
from ..models import ContinuationToken
from .state import SearchState, serialize_state


MORE = "more"
DEEPER = "deeper"
RETRY = "retry"


def deeper_depth(depth: Optional[int]) -> Optional[int]:
    """Next depth limitation when broadening: same block, direct children, unbounded."""
    if depth == 0:
        return 1
    return None


def expansion_options(state: SearchState) -> List[str]:
    options = []
    if state.get("depth_limitation") is not None:
        options.append(DEEPER)
    options.append(RETRY)
    return options


def make_token(kind: str, state: SearchState, options: List[str],
               conversation_id: Optional[str] = None) -> ContinuationToken:
    return ContinuationToken(
        kind=kind,
        state=serialize_state(state),
        options=options,
        conversation_id=conversation_id
    )


def check_token(token: ContinuationToken, timeout: float) -> None:
    """
    Raises:
        UserChoiceTimeoutError: If the token is older than the timeout
    """
    age = time.time() - token.created_at
    if age > timeout:
        raise UserChoiceTimeoutError(
            f"Continuation {token.token_id} expired after {age:.0f}s (limit {timeout:.0f}s)"
        )


class LineReader:
    """
    Lines of a text stream, read by one long-lived daemon thread.

    Every prompt takes its line from the same queue, so a line typed after a
    prompt timed out goes to the next prompt instead of being lost.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _start(self):
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._read, name="askgraph-reader", daemon=True)
                self._thread.start()

    def _read(self):
        stream = self.stream or sys.stdin
        for line in iter(stream.readline, ""):
            self._lines.put(line.rstrip("\r\n"))
        self._lines.put(None)

    def read_line(self, prompt: str = "", timeout: Optional[float] = None) -> str:
        """
        Next line of the stream, waiting at most `timeout` seconds.

        Raises:
            EOFError: If the stream is exhausted
            UserChoiceTimeoutError: If no line arrived in time
        """
        self._start()
        if prompt:
            print(prompt, end="", flush=True)
        try:
            line = self._lines.get(timeout=timeout)
        except queue.Empty:
            logging.warning(f"No input after {timeout}s")
            raise UserChoiceTimeoutError(f"No choice made within {timeout:.0f} seconds")
        if line is None:
            # end of stream for every later prompt too
            self._lines.put(None)
            raise EOFError
        return line


stdin_reader = LineReader()


def await_user_choice(prompt: str, timeout: float, reader: Optional[LineReader] = None) -> str:
    """
    Wait for an interactive choice, at most `timeout` seconds.

    Raises:
        UserChoiceTimeoutError: If no choice was made in time
        EOFError: If the input is exhausted
    """
    return (reader or stdin_reader).read_line(prompt, timeout)
