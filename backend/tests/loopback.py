"""
In-process transport pair for tests.

Messages are queued to the peer's inbox and delivered by a pump task in
send order. `buffered` and `fail_on_send` let tests steer backpressure
and send failures.
"""

import asyncio
import json
import uuid

from transport.base import ConnectionState, Message, PeerTransport
from transport.session import TransportSession


class LoopbackNetwork:
    """Shared registry so offers made by one transport can be answered by another."""

    def __init__(self) -> None:
        self.offers: dict[str, "LoopbackTransport"] = {}
        self.answers: dict[str, "LoopbackTransport"] = {}
        self.created: list["LoopbackTransport"] = []

    def factory(self) -> "LoopbackTransport":
        transport = LoopbackTransport(self)
        self.created.append(transport)
        return transport


class LoopbackTransport(PeerTransport):
    def __init__(self, network: LoopbackNetwork) -> None:
        super().__init__()
        self._network = network
        self._state = ConnectionState.NEGOTIATING
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self.peer: "LoopbackTransport | None" = None
        self.offer_id: str | None = None
        self.sent: list[Message] = []
        self.buffered = 0
        self.buffered_samples: list[int] = []
        self.fail_on_send: int | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def buffered_amount(self) -> int:
        return self.buffered

    async def create_local_offer(self) -> str:
        self.offer_id = uuid.uuid4().hex
        self._network.offers[self.offer_id] = self
        return json.dumps({"loopback": self.offer_id})

    async def accept_remote_offer(self, descriptor: str) -> str:
        offer_id = json.loads(descriptor)["loopback"]
        if offer_id not in self._network.offers:
            raise ValueError(f"unknown offer {offer_id}")
        self.offer_id = offer_id
        self._network.answers[offer_id] = self
        return json.dumps({"loopback": offer_id, "answer": True})

    async def accept_remote_answer(self, descriptor: str) -> None:
        joiner = self._network.answers[json.loads(descriptor)["loopback"]]
        self.peer, joiner.peer = joiner, self
        await self._open()
        await joiner._open()

    async def _open(self) -> None:
        self._pump_task = asyncio.create_task(self._pump())
        await self._set_state(ConnectionState.OPEN)

    async def _pump(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                if self._message_handler is not None:
                    await self._message_handler(message)
            finally:
                self._inbox.task_done()

    def send(self, message: Message) -> None:
        if self._state != ConnectionState.OPEN:
            raise ConnectionError("loopback is not open")
        if self.fail_on_send is not None and len(self.sent) >= self.fail_on_send:
            raise ConnectionError("injected send failure")
        self.buffered_samples.append(self.buffered)
        self.sent.append(message)
        self.peer._inbox.put_nowait(message)

    async def settle(self) -> None:
        """Wait until every message queued to this side has been handled."""
        await self._inbox.join()

    async def close(self) -> None:
        if self._state == ConnectionState.CLOSED:
            return
        await self._set_state(ConnectionState.CLOSED)
        if self._pump_task is not None:
            self._pump_task.cancel()
        if self.peer is not None:
            await self.peer.close()

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._state_handler is not None:
            await self._state_handler(state)


async def open_pair() -> tuple[TransportSession, TransportSession, LoopbackTransport, LoopbackTransport]:
    """Return two open sessions wired to each other: (host, joiner, host_t, joiner_t)."""
    network = LoopbackNetwork()
    host_t, joiner_t = network.factory(), network.factory()
    host, joiner = TransportSession(host_t), TransportSession(joiner_t)
    offer = await host.create_local_offer()
    answer = await joiner.accept_remote_offer(offer)
    await host.accept_remote_answer(answer)
    return host, joiner, host_t, joiner_t
