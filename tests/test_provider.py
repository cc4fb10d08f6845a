from __future__ import annotations

import os

import pytest

from appfuse.provider import DirectoryProvider, FileProvider, MemoryProvider, ProviderError


def test_providers_satisfy_protocol(tmp_path):
    assert isinstance(MemoryProvider(), FileProvider)
    assert isinstance(DirectoryProvider(tmp_path), FileProvider)
    assert not isinstance(object(), FileProvider)


def test_memory_provider():
    p = MemoryProvider({5: b"abcdef"})
    assert p.size_of(5) == 6
    assert p.size_of(6) == -1
    assert p.read_range(5, 2, 3) == b"cde"
    assert p.read_range(5, 4, 10) == b"ef"
    assert p.read_range(6, 0, 1) is None


def test_directory_provider(tmp_path):
    (tmp_path / "42").write_bytes(b"0123456789")
    p = DirectoryProvider(str(tmp_path))
    assert p.size_of(42) == 10
    assert p.read_range(42, 3, 4) == b"3456"
    assert p.read_range(42, 8, 10) == b"89"


def test_directory_provider_missing_and_non_regular(tmp_path):
    (tmp_path / "9").mkdir()
    p = DirectoryProvider(tmp_path)
    assert p.size_of(8) == -1
    assert p.size_of(9) == -1
    assert p.read_range(8, 0, 1) is None


def test_directory_provider_read_failure(tmp_path):
    (tmp_path / "9").mkdir()
    p = DirectoryProvider(tmp_path)
    with pytest.raises(ProviderError):
        p.read_range(9, 0, 1)


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="needs mkfifo")
def test_directory_provider_ignores_fifos(tmp_path):
    os.mkfifo(tmp_path / "11")
    assert DirectoryProvider(tmp_path).size_of(11) == -1
