"""Tests for transfer.manager: two managers sharing one signaling store"""

import asyncio

import pytest

from errors import ChannelNotReady, InvalidCode
from negotiation.negotiator import Role
from signaling.store import InMemorySignalingStore
from transfer.manager import TransferManager
from transfer.models import TransferDirection, TransferState
from transport.base import ConnectionState


class EventLog:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []
        self.file_received = asyncio.Event()
        self.sent = asyncio.Event()

    async def __call__(self, event_type: str, data: dict) -> None:
        self.events.append((event_type, data))
        if event_type == "file_received":
            self.file_received.set()
        if event_type == "transfer_state" and data["state"] == TransferState.COMPLETED.value:
            self.sent.set()

    def of(self, event_type: str) -> list[dict]:
        return [data for kind, data in self.events if kind == event_type]


def _manager(store, network, settings, save_dir, timeout=2.0) -> TransferManager:
    return TransferManager(
        store,
        transport_factory=network.factory,
        settings=settings,
        save_dir=str(save_dir),
        negotiator_options={"poll_interval": 0.01, "timeout": timeout},
    )


async def _connect(host: TransferManager, joiner: TransferManager) -> str:
    code = await host.host()
    await joiner.join(code)
    await host.engine.session.wait_open(timeout=1)
    await joiner.engine.session.wait_open(timeout=1)
    return code


class TestSession:
    @pytest.mark.asyncio
    async def test_status_before_and_after_connect(self, memory_store, network, settings, tmp_path):
        host = _manager(memory_store, network, settings, tmp_path / "h")
        joiner = _manager(memory_store, network, settings, tmp_path / "j")

        assert host.status().code is None

        code = await _connect(host, joiner)

        status = host.status()
        assert status.code == code
        assert status.role == Role.HOST
        assert status.connection_state == ConnectionState.OPEN
        assert joiner.status().role == Role.JOINER

        await host.stop()
        await joiner.stop()

    @pytest.mark.asyncio
    async def test_join_unknown_code(self, memory_store, network, settings, tmp_path):
        joiner = _manager(memory_store, network, settings, tmp_path)

        with pytest.raises(InvalidCode):
            await joiner.join("ZZZZZZ")
        assert joiner.status().code is None

    @pytest.mark.asyncio
    async def test_unanswered_host_reports_and_cleans_up(self, memory_store, network, settings, tmp_path):
        host = _manager(memory_store, network, settings, tmp_path, timeout=0.05)
        log = EventLog()
        host.on_event(log)

        await host.host()
        await asyncio.sleep(0.2)

        assert any(n["type"] == "error" for n in log.of("notification"))
        assert host.status().code is None
        assert memory_store.keys() == []

    @pytest.mark.asyncio
    async def test_store_crash_while_polling_is_reported(self, network, settings, tmp_path):
        class BrokenAnswers(InMemorySignalingStore):
            async def get(self, key):
                if key.startswith("p2p_answer_"):
                    raise RuntimeError("store exploded")
                return await super().get(key)

        store = BrokenAnswers()
        host = _manager(store, network, settings, tmp_path)
        log = EventLog()
        host.on_event(log)

        await host.host()
        await asyncio.sleep(0.1)

        assert any("store exploded" in n["message"] for n in log.of("notification"))
        assert host.status().code is None
        assert store.keys() == []
        assert network.created[0].state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_disconnect_clears_signaling(self, memory_store, network, settings, tmp_path):
        host = _manager(memory_store, network, settings, tmp_path / "h")
        joiner = _manager(memory_store, network, settings, tmp_path / "j")
        log = EventLog()
        joiner.on_event(log)
        await _connect(host, joiner)

        await host.disconnect()
        await joiner.disconnect()

        assert memory_store.keys() == []
        assert {"state": "closed"} in log.of("connection_state")


class TestTransfers:
    @pytest.mark.asyncio
    async def test_send_requires_open_session(self, memory_store, network, settings, tmp_path):
        manager = _manager(memory_store, network, settings, tmp_path)
        path = tmp_path / "f.txt"
        path.write_bytes(b"x")

        with pytest.raises(ChannelNotReady):
            await manager.send(str(path))

    @pytest.mark.asyncio
    async def test_file_reaches_peer_disk(self, memory_store, network, settings, tmp_path):
        host = _manager(memory_store, network, settings, tmp_path / "h")
        joiner = _manager(memory_store, network, settings, tmp_path / "j")
        host_log, joiner_log = EventLog(), EventLog()
        host.on_event(host_log)
        joiner.on_event(joiner_log)
        await _connect(host, joiner)

        source = tmp_path / "holiday.jpg"
        source.write_bytes(bytes(range(256)) * 200)

        info = await host.send(str(source))
        await asyncio.wait_for(host_log.sent.wait(), timeout=2)
        await asyncio.wait_for(joiner_log.file_received.wait(), timeout=2)

        assert info.direction == TransferDirection.SENDING
        sent = host.get_transfers()[0]
        assert sent.state == TransferState.COMPLETED
        assert sent.transfer_id == info.transfer_id
        assert host_log.of("transfer_progress")[-1]["progress_percent"] == 100.0

        received = joiner_log.of("file_received")[0]
        assert received["file_name"] == "holiday.jpg"
        assert received["media_type"] == "image/jpeg"
        saved = tmp_path / "j" / "holiday.jpg"
        assert received["saved_path"] == str(saved)
        assert saved.read_bytes() == source.read_bytes()
        assert joiner.get_transfers()[0].direction == TransferDirection.RECEIVING

        await host.stop()
        await joiner.stop()

    @pytest.mark.asyncio
    async def test_cancel_transfer(self, memory_store, network, settings, tmp_path):
        host = _manager(memory_store, network, settings, tmp_path / "h")
        joiner = _manager(memory_store, network, settings, tmp_path / "j")
        log = EventLog()
        host.on_event(log)
        await _connect(host, joiner)
        # Hold every chunk at the backpressure gate
        network.created[0].buffered = settings.buffer_threshold + 1

        source = tmp_path / "big.bin"
        source.write_bytes(b"\0" * 100000)
        info = await host.send(str(source))
        await asyncio.sleep(0.05)
        await host.cancel_transfer(info.transfer_id)
        await asyncio.sleep(0.01)

        assert host.get_transfers()[0].state == TransferState.CANCELLED
        assert any(n["type"] == "info" and "cancelled" in n["message"]
                   for n in log.of("notification"))

    @pytest.mark.asyncio
    async def test_source_deleted_before_read(self, memory_store, network, settings, tmp_path):
        host = _manager(memory_store, network, settings, tmp_path / "h")
        joiner = _manager(memory_store, network, settings, tmp_path / "j")
        log = EventLog()
        host.on_event(log)
        await _connect(host, joiner)

        source = tmp_path / "vanishing.txt"
        source.write_bytes(b"here for now")
        info = await host.send(str(source))
        source.unlink()
        await asyncio.sleep(0.1)

        failed = host.get_transfers()[0]
        assert failed.transfer_id == info.transfer_id
        assert failed.state == TransferState.FAILED
        assert any(n["type"] == "error" for n in log.of("notification"))

        second = tmp_path / "second.txt"
        second.write_bytes(b"ok")
        await host.send(str(second))
        await asyncio.wait_for(log.sent.wait(), timeout=2)

        await host.stop()
        await joiner.stop()

    def test_save_dir_setter_creates_directory(self, memory_store, network, settings, tmp_path):
        manager = _manager(memory_store, network, settings, tmp_path)
        target = tmp_path / "new" / "place"

        manager.save_dir = str(target)

        assert target.is_dir()
        assert manager.save_dir == str(target)
