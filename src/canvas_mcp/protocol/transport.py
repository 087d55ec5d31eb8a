"""STDIO transport layer for MCP communication.

Handles reading/writing JSON-RPC messages over stdin/stdout. stdout
carries protocol frames only; the transport never logs.
"""

from __future__ import annotations

import sys
import threading
from typing import TextIO

CONTENT_LENGTH_HEADER = "content-length"


class TransportError(Exception):
    """Raised on malformed framing or an unusable stream."""

    pass


class StdioTransport:
    """STDIO transport for MCP communication.

    Reads one frame at a time from stdin and writes newline-delimited
    frames to stdout. Input may use either newline-delimited JSON or
    ``Content-Length`` header framing.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            stdin: Input stream (defaults to sys.stdin).
            stdout: Output stream (defaults to sys.stdout).
        """
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._write_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    def _readline(self) -> str:
        try:
            return self._stdin.readline()
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to read from input stream: {e}") from e

    def read_message(self) -> str | None:
        """Read a message from stdin.

        Skips blank lines between frames.

        Returns:
            Message string (stripped), or None on EOF at a frame boundary.

        Raises:
            TransportError: If header framing is malformed or the read fails.
        """
        if self._closed:
            return None

        while True:
            line = self._readline()
            if not line:  # EOF
                return None

            stripped = line.strip()
            if not stripped:
                continue

            if stripped.lower().startswith(CONTENT_LENGTH_HEADER + ":"):
                return self._read_framed_body(stripped)
            return stripped

    def _read_framed_body(self, first_header: str) -> str:
        """Read the remaining headers and the body of a Content-Length frame."""
        headers = [first_header]
        while True:
            line = self._readline()
            if not line:
                raise TransportError("Input closed inside frame headers")
            line = line.strip()
            if not line:
                break
            headers.append(line)

        length: int | None = None
        for header in headers:
            name, _, value = header.partition(":")
            if name.strip().lower() == CONTENT_LENGTH_HEADER:
                try:
                    length = int(value.strip())
                except ValueError:
                    raise TransportError(f"Invalid Content-Length: {value.strip()!r}") from None
        if length is None or length < 0:
            raise TransportError("Missing or negative Content-Length")

        try:
            body = self._stdin.read(length)
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to read frame body: {e}") from e
        if len(body) < length:
            raise TransportError(f"Truncated frame: expected {length} characters, got {len(body)}")
        return body.strip()

    def write_message(self, message: str) -> None:
        """Write a message to stdout.

        The whole frame is written and flushed under a lock, so frames from
        concurrent producers never interleave.

        Args:
            message: JSON string to write.

        Raises:
            TransportError: If the output stream cannot be written.
        """
        with self._write_lock:
            if self._closed:
                raise TransportError("Transport is closed")
            try:
                self._stdout.write(message + "\n")
                self._stdout.flush()
            except (OSError, ValueError) as e:
                raise TransportError(f"Failed to write to output stream: {e}") from e

    def close(self) -> None:
        """Stop accepting reads and writes."""
        with self._write_lock:
            self._closed = True
