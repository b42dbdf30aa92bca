"""Tests for transfer.sink and transfer.reassembly"""

import pytest

from errors import ReconstructionMismatch
from transfer.models import FileMetadata, ReceivedFile
from transfer.reassembly import ReassemblyBuffer
from transfer.sink import DirectorySink, safe_file_name


class TestSafeFileName:
    @pytest.mark.parametrize("name, expected", [
        ("photo.png", "photo.png"),
        ("../../.bashrc", ".bashrc"),
        ("/etc/passwd", "passwd"),
        ("C:\\Users\\me\\doc.txt", "doc.txt"),
        ("", "received.bin"),
        ("..", "received.bin"),
        ("dir/", "received.bin"),
    ])
    def test_strips_directories(self, name, expected):
        assert safe_file_name(name) == expected


class TestDirectorySink:
    @pytest.mark.asyncio
    async def test_writes_into_directory(self, tmp_path):
        sink = DirectorySink(tmp_path / "downloads")

        path = await sink(ReceivedFile(name="a.txt", data=b"abc"))

        assert path == tmp_path / "downloads" / "a.txt"
        assert path.read_bytes() == b"abc"

    @pytest.mark.asyncio
    async def test_never_overwrites(self, tmp_path):
        sink = DirectorySink(tmp_path)

        first = await sink(ReceivedFile(name="a.txt", data=b"1"))
        second = await sink(ReceivedFile(name="a.txt", data=b"2"))
        third = await sink(ReceivedFile(name="a.txt", data=b"3"))

        assert [p.name for p in (first, second, third)] == ["a.txt", "a (1).txt", "a (2).txt"]
        assert first.read_bytes() == b"1"


class TestReassemblyBuffer:
    def test_accumulates_in_order(self):
        buffer = ReassemblyBuffer()
        buffer.start(FileMetadata(name="f", size=6, media_type="text/plain"))

        buffer.append(b"abc")
        assert not buffer.is_complete
        buffer.append(b"def")

        assert buffer.is_complete
        assert buffer.chunk_total == 2
        built = buffer.build()
        assert built.data == b"abcdef"
        assert built.media_type == "text/plain"

    def test_overflow_leaves_state_untouched(self):
        buffer = ReassemblyBuffer()
        buffer.start(FileMetadata(name="f", size=4))
        buffer.append(b"ab")

        with pytest.raises(ReconstructionMismatch) as exc_info:
            buffer.append(b"cde")

        assert exc_info.value.expected == 4
        assert exc_info.value.received == 5
        assert buffer.received_bytes == 2
        assert buffer.remaining == 2

    def test_start_resets(self):
        buffer = ReassemblyBuffer()
        buffer.start(FileMetadata(name="f", size=4))
        buffer.append(b"ab")

        buffer.start(FileMetadata(name="g", size=1))

        assert buffer.received_bytes == 0
        assert buffer.chunk_total == 0
        assert buffer.metadata.name == "g"

    def test_empty_file_is_never_complete_by_bytes(self):
        buffer = ReassemblyBuffer()
        buffer.start(FileMetadata(name="f", size=0))

        assert not buffer.is_complete

    def test_append_without_start(self):
        with pytest.raises(RuntimeError):
            ReassemblyBuffer().append(b"x")
