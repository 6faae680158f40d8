"""ClamAV daemon adapter.

:class:`ClamAVAdapter` connects to a running ``clamd`` daemon via a Unix
domain socket (when ``socket_path`` is set) or a TCP socket, and maps the
daemon's response onto :class:`~filesentry.core.av_adapter.AVScanResult`.

Two transports are supported for the file content:

* ``stream=True`` (default) — the adapter opens the file and streams it via
  ``INSTREAM``.  Works when the daemon runs in another container or host.
* ``stream=False`` — the adapter sends ``SCAN <path>`` and clamd reads the
  file itself.  Requires a filesystem shared with the daemon.

**Async compatibility:** the ``clamd`` library is synchronous.  All blocking
calls are dispatched to :func:`asyncio.to_thread` so the event loop is never
blocked during I/O with the daemon.

Usage::

    from filesentry.core.adapters.clamav_adapter import ClamAVAdapter

    # TCP
    adapter = ClamAVAdapter(host="clamav", port=3310, timeout=60)

    # Unix socket
    adapter = ClamAVAdapter(socket_path="/var/run/clamav/clamd.ctl")

    result = await adapter.scan("/srv/uploads/abc123.js")
    if result.infected:
        print(result.signatures)
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from typing import Any, Optional

import clamd

from filesentry.core.av_adapter import (
    AVEngineAdapter,
    AVEngineScanError,
    AVEngineUnavailableError,
    AVScanResult,
    AVScanTimeoutError,
)

logger = logging.getLogger(__name__)

# clamd response status tokens.
_STATUS_OK = "OK"
_STATUS_FOUND = "FOUND"
_STATUS_ERROR = "ERROR"


def _parse_clamd_response(
    response: dict[str, tuple[str, str | None]] | None,
) -> tuple[str, ...]:
    """Return the signature names found in a clamd scan response.

    The clamd library returns a dict mapping scanned paths (or ``"stream"``
    for ``instream``) to a ``(result_code, detail)`` tuple:

    * ``("OK", None)``        – clean.
    * ``("FOUND", name)``     – signature *name* matched.
    * ``("ERROR", message)``  – the engine could not scan the item.

    Raises:
        AVEngineScanError: On an ``ERROR`` entry, an empty response, or an
            unrecognised status token.
    """
    if not response:
        raise AVEngineScanError(f"Unexpected empty ClamAV response: {response!r}")

    signatures: list[str] = []
    for path, entry in response.items():
        if not entry or len(entry) < 2:
            raise AVEngineScanError(f"Malformed ClamAV response entry for {path!r}: {entry!r}")
        status, detail = entry[0], entry[1]
        if status == _STATUS_FOUND:
            signatures.append(detail or "Unknown.Signature")
        elif status == _STATUS_ERROR:
            raise AVEngineScanError(f"ClamAV daemon reported error for {path!r}: {detail}")
        elif status != _STATUS_OK:
            raise AVEngineScanError(
                f"Unrecognised ClamAV response status {status!r} (detail={detail!r})"
            )
    return tuple(signatures)


class ClamAVAdapter(AVEngineAdapter):
    """AV engine adapter that talks to ``clamd``.

    A fresh ``clamd`` client is created per call because the library does not
    support concurrent requests on one connection.  The instance itself holds
    only connection parameters and is safe to share between tasks.

    Args:
        socket_path: Absolute path of the clamd Unix socket.  When provided,
            *host* and *port* are ignored.
        host: Hostname or IP address of the clamd TCP listener.
        port: TCP port of the clamd daemon.
        timeout: Socket I/O timeout in seconds for both transports.
        stream: Stream file content via ``INSTREAM`` (``True``) or let the
            daemon read the path (``False``).
    """

    ENGINE_NAME = "clamav"

    def __init__(
        self,
        socket_path: Optional[str] = None,
        *,
        host: str = "localhost",
        port: int = 3310,
        timeout: float = 60.0,
        stream: bool = True,
    ) -> None:
        self._socket_path = socket_path
        self._host = host
        self._port = port
        self._timeout = timeout
        self._stream = stream

    # ------------------------------------------------------------------
    # AVEngineAdapter interface
    # ------------------------------------------------------------------

    async def scan(self, file_path: str) -> AVScanResult:
        """Scan the file at *file_path* and return the daemon's verdict.

        Raises:
            AVEngineUnavailableError: If the daemon cannot be reached.
            AVScanTimeoutError: If the socket times out mid-scan.
            AVEngineScanError: On an ``ERROR`` or unrecognised response.
        """
        start_ms = int(time.monotonic() * 1000)
        response = await asyncio.to_thread(self._scan_sync, file_path)
        elapsed_ms = int(time.monotonic() * 1000) - start_ms

        signatures = _parse_clamd_response(response)
        if signatures:
            logger.warning(
                "ClamAV scan: FOUND path=%s signatures=%s (%s) duration_ms=%d",
                file_path,
                list(signatures),
                self._connection_desc(),
                elapsed_ms,
            )
        else:
            logger.debug(
                "ClamAV scan: clean path=%s (%s) duration_ms=%d",
                file_path,
                self._connection_desc(),
                elapsed_ms,
            )

        return AVScanResult(
            infected=bool(signatures),
            signatures=signatures,
            engine_name=self.engine_name(),
            duration_ms=elapsed_ms,
        )

    async def ping(self) -> bool:
        """Return ``True`` if the clamd daemon answers ``PING`` with ``PONG``."""
        try:
            response = await asyncio.to_thread(self._ping_sync)
        except Exception as exc:
            logger.warning("ClamAV ping failed (%s): %r", self._connection_desc(), exc)
            return False
        return response == "PONG"

    def engine_name(self) -> str:
        return self.ENGINE_NAME

    # ------------------------------------------------------------------
    # Synchronous helpers (run inside asyncio.to_thread)
    # ------------------------------------------------------------------

    def _get_client(self) -> Any:
        """Construct a ``clamd`` client appropriate for the configured transport."""
        if self._socket_path is not None:
            return clamd.ClamdUnixSocket(self._socket_path, timeout=self._timeout)
        return clamd.ClamdNetworkSocket(self._host, self._port, timeout=self._timeout)

    def _scan_sync(self, file_path: str) -> dict[str, tuple[str, str | None]] | None:
        try:
            client = self._get_client()
            if self._stream:
                with open(file_path, "rb") as fh:
                    return client.instream(fh)
            return client.scan(file_path)
        except clamd.ConnectionError as exc:
            raise AVEngineUnavailableError(
                f"ClamAV daemon unreachable ({self._connection_desc()}): {exc}"
            ) from exc
        except socket.timeout as exc:
            raise AVScanTimeoutError(
                f"ClamAV scan timed out after {self._timeout}s ({self._connection_desc()})"
            ) from exc
        except clamd.BufferTooLongError as exc:
            raise AVEngineScanError(
                f"File exceeds the clamd StreamMaxLength limit: {exc}"
            ) from exc
        except OSError as exc:
            raise AVEngineUnavailableError(
                f"ClamAV scan I/O failure ({self._connection_desc()}): {exc}"
            ) from exc

    def _ping_sync(self) -> str:
        client = self._get_client()
        return client.ping()

    def _connection_desc(self) -> str:
        """Return a short, human-readable description of the connection target."""
        if self._socket_path is not None:
            return f"unix:{self._socket_path}"
        return f"tcp:{self._host}:{self._port}"
