"""Unit tests for :class:`filesentry.core.hashing.HashComputer`."""

from __future__ import annotations

import pytest

from filesentry.core.hashing import HashComputer, HashingError

# Well-known digests of b"hello world"
_HELLO_MD5 = "5eb63bbbe01eeed093cb22bb8f5acdc3"
_HELLO_SHA1 = "2aae6c35c94fcfb415dbe95f408b9ce91ee846ed"
_HELLO_SHA256 = "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"

_EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestComputeHashes:
    def test_known_digests(self) -> None:
        hashes = HashComputer().compute_hashes(b"hello world")
        assert hashes.md5 == _HELLO_MD5
        assert hashes.sha1 == _HELLO_SHA1
        assert hashes.sha256 == _HELLO_SHA256

    def test_empty_content(self) -> None:
        assert HashComputer().compute_hashes(b"").sha256 == _EMPTY_SHA256

    def test_deterministic(self) -> None:
        computer = HashComputer()
        assert computer.compute_hashes(b"abc") == computer.compute_hashes(b"abc")


class TestComputeFileHashes:
    def test_file_matches_in_memory(self, tmp_path) -> None:
        path = tmp_path / "f.bin"
        path.write_bytes(b"hello world")
        assert HashComputer().compute_file_hashes(path) == HashComputer().compute_hashes(
            b"hello world"
        )

    def test_small_chunks_give_same_result(self, tmp_path) -> None:
        data = bytes(range(256)) * 100
        path = tmp_path / "f.bin"
        path.write_bytes(data)
        assert HashComputer(chunk_size=7).compute_file_hashes(str(path)) == (
            HashComputer().compute_hashes(data)
        )

    def test_missing_file_raises_hashing_error(self, tmp_path) -> None:
        with pytest.raises(HashingError):
            HashComputer().compute_file_hashes(tmp_path / "missing.bin")

    def test_hashing_error_is_os_error(self, tmp_path) -> None:
        with pytest.raises(OSError):
            HashComputer().compute_file_hashes(tmp_path / "missing.bin")

    def test_invalid_chunk_size_rejected(self) -> None:
        with pytest.raises(ValueError):
            HashComputer(chunk_size=0)
