"""Tests for transfer.chunking"""

import os

import pytest

from transfer.chunking import chunk_count, iter_chunks


class TestChunkCount:
    def test_reference_file(self):
        assert chunk_count(50000, 16384) == 4

    def test_exact_multiple(self):
        assert chunk_count(32768, 16384) == 2

    def test_empty(self):
        assert chunk_count(0, 16384) == 0

    def test_rejects_zero_chunk_size(self):
        with pytest.raises(ValueError):
            chunk_count(10, 0)


class TestIterChunks:
    def test_reference_file_sizes(self):
        data = os.urandom(50000)

        sizes = [len(c) for c in iter_chunks(data, 16384)]

        assert sizes == [16384, 16384, 16384, 848]

    @pytest.mark.parametrize("length", [0, 1, 7, 16383, 16384, 16385, 100000])
    @pytest.mark.parametrize("chunk_size", [1, 3, 16384])
    def test_concatenation_restores_input(self, length, chunk_size):
        data = os.urandom(length)

        chunks = list(iter_chunks(data, chunk_size))

        assert len(chunks) == chunk_count(length, chunk_size)
        assert b"".join(chunks) == data
        assert all(0 < len(c) <= chunk_size for c in chunks)

    def test_yields_bytes(self):
        chunks = list(iter_chunks(b"abcdef", 4))

        assert chunks == [b"abcd", b"ef"]
        assert all(isinstance(c, bytes) for c in chunks)

    def test_rejects_zero_chunk_size(self):
        with pytest.raises(ValueError):
            list(iter_chunks(b"abc", 0))
