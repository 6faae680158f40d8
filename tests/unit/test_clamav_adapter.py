"""Unit tests for the ClamAV clamd socket adapter.

All tests are fully offline.  The clamd client is replaced by
:mod:`unittest.mock` patches so no live clamd daemon is required.

Coverage areas:

* ``_parse_clamd_response`` — OK / FOUND / ERROR / malformed responses.
* ``ClamAVAdapter.scan`` — INSTREAM and SCAN transports, and the mapping of
  connection, timeout and buffer errors onto the adapter exceptions.
* ``ClamAVAdapter.ping`` — PONG, failure and unexpected responses.
* Constructor defaults and ``_get_client`` transport selection.
"""

from __future__ import annotations

import socket
from unittest.mock import MagicMock, patch

import clamd
import pytest

from filesentry.core.adapters.clamav_adapter import ClamAVAdapter, _parse_clamd_response
from filesentry.core.av_adapter import (
    AVEngineError,
    AVEngineScanError,
    AVEngineUnavailableError,
    AVScanResult,
    AVScanTimeoutError,
)


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "sample.bin"
    path.write_bytes(b"some file content")
    return str(path)


# ---------------------------------------------------------------------------
# _parse_clamd_response
# ---------------------------------------------------------------------------


def test_parse_ok_response_returns_no_signatures() -> None:
    assert _parse_clamd_response({"stream": ("OK", None)}) == ()


def test_parse_found_response_returns_signature() -> None:
    response = {"stream": ("FOUND", "Win.Test.EICAR_HDB-1")}
    assert _parse_clamd_response(response) == ("Win.Test.EICAR_HDB-1",)


def test_parse_multiple_found_entries() -> None:
    response = {
        "/tmp/archive/a.exe": ("FOUND", "Win.Trojan.1"),
        "/tmp/archive/b.txt": ("OK", None),
        "/tmp/archive/c.bat": ("FOUND", "Win.Backdoor.2"),
    }
    assert _parse_clamd_response(response) == ("Win.Trojan.1", "Win.Backdoor.2")


def test_parse_error_response_raises() -> None:
    with pytest.raises(AVEngineScanError):
        _parse_clamd_response({"/tmp/file": ("ERROR", "access denied")})


@pytest.mark.parametrize("response", [None, {}])
def test_parse_empty_response_raises(response) -> None:
    with pytest.raises(AVEngineScanError):
        _parse_clamd_response(response)


def test_parse_unknown_status_raises() -> None:
    with pytest.raises(AVEngineScanError):
        _parse_clamd_response({"stream": ("MAYBE", None)})


# ---------------------------------------------------------------------------
# Constructor and _get_client
# ---------------------------------------------------------------------------


def test_default_constructor_values() -> None:
    adapter = ClamAVAdapter()
    assert adapter._host == "localhost"
    assert adapter._port == 3310
    assert adapter._timeout == 60.0
    assert adapter._stream is True


def test_engine_name() -> None:
    assert ClamAVAdapter().engine_name() == "clamav"


def test_get_client_uses_network_socket_by_default() -> None:
    adapter = ClamAVAdapter(host="clamav", port=3311, timeout=10.0)
    with patch("filesentry.core.adapters.clamav_adapter.clamd.ClamdNetworkSocket") as mock_cls:
        adapter._get_client()
    mock_cls.assert_called_once_with("clamav", 3311, timeout=10.0)


def test_get_client_prefers_unix_socket() -> None:
    adapter = ClamAVAdapter("/var/run/clamav/clamd.ctl", host="ignored")
    with patch("filesentry.core.adapters.clamav_adapter.clamd.ClamdUnixSocket") as mock_cls:
        adapter._get_client()
    mock_cls.assert_called_once_with("/var/run/clamav/clamd.ctl", timeout=60.0)


# ---------------------------------------------------------------------------
# ClamAVAdapter.scan
# ---------------------------------------------------------------------------


async def test_scan_clean_file(sample_file) -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.instream.return_value = {"stream": ("OK", None)}
    with patch.object(adapter, "_get_client", return_value=client):
        result = await adapter.scan(sample_file)

    assert isinstance(result, AVScanResult)
    assert result.infected is False
    assert result.signatures == ()
    assert result.engine_name == "clamav"
    assert result.duration_ms >= 0
    client.instream.assert_called_once()


async def test_scan_infected_file(sample_file) -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.instream.return_value = {"stream": ("FOUND", "Eicar-Test-Signature")}
    with patch.object(adapter, "_get_client", return_value=client):
        result = await adapter.scan(sample_file)

    assert result.infected is True
    assert result.signatures == ("Eicar-Test-Signature",)


async def test_scan_without_stream_sends_path(sample_file) -> None:
    adapter = ClamAVAdapter(stream=False)
    client = MagicMock()
    client.scan.return_value = {sample_file: ("OK", None)}
    with patch.object(adapter, "_get_client", return_value=client):
        result = await adapter.scan(sample_file)

    client.scan.assert_called_once_with(sample_file)
    client.instream.assert_not_called()
    assert result.infected is False


async def test_scan_connection_error_raises_unavailable(sample_file) -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.instream.side_effect = clamd.ConnectionError("clamd unavailable")
    with patch.object(adapter, "_get_client", return_value=client):
        with pytest.raises(AVEngineUnavailableError):
            await adapter.scan(sample_file)


async def test_scan_connection_refused_raises_unavailable(sample_file) -> None:
    adapter = ClamAVAdapter()
    with patch.object(adapter, "_get_client", side_effect=ConnectionRefusedError("refused")):
        with pytest.raises(AVEngineUnavailableError):
            await adapter.scan(sample_file)


async def test_scan_socket_timeout_raises_timeout(sample_file) -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.instream.side_effect = socket.timeout("timed out")
    with patch.object(adapter, "_get_client", return_value=client):
        with pytest.raises(AVScanTimeoutError):
            await adapter.scan(sample_file)


async def test_scan_buffer_too_long_raises_scan_error(sample_file) -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.instream.side_effect = clamd.BufferTooLongError("INSTREAM size limit exceeded")
    with patch.object(adapter, "_get_client", return_value=client):
        with pytest.raises(AVEngineScanError):
            await adapter.scan(sample_file)


async def test_scan_error_response_raises_scan_error(sample_file) -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.instream.return_value = {"stream": ("ERROR", "permission denied")}
    with patch.object(adapter, "_get_client", return_value=client):
        with pytest.raises(AVEngineScanError):
            await adapter.scan(sample_file)


async def test_all_adapter_errors_share_base_class(sample_file) -> None:
    adapter = ClamAVAdapter()
    with patch.object(adapter, "_get_client", side_effect=clamd.ConnectionError("down")):
        with pytest.raises(AVEngineError):
            await adapter.scan(sample_file)


async def test_scan_missing_file_raises_unavailable(tmp_path) -> None:
    adapter = ClamAVAdapter()
    with patch.object(adapter, "_get_client", return_value=MagicMock()):
        with pytest.raises(AVEngineUnavailableError):
            await adapter.scan(str(tmp_path / "missing.bin"))


# ---------------------------------------------------------------------------
# ClamAVAdapter.ping
# ---------------------------------------------------------------------------


async def test_ping_pong_returns_true() -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.ping.return_value = "PONG"
    with patch.object(adapter, "_get_client", return_value=client):
        assert await adapter.ping() is True


async def test_ping_failure_returns_false() -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.ping.side_effect = clamd.ConnectionError("down")
    with patch.object(adapter, "_get_client", return_value=client):
        assert await adapter.ping() is False


async def test_ping_unexpected_response_returns_false() -> None:
    adapter = ClamAVAdapter()
    client = MagicMock()
    client.ping.return_value = "NOPE"
    with patch.object(adapter, "_get_client", return_value=client):
        assert await adapter.ping() is False
