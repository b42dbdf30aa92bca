"""TransportSession: one negotiated channel, owned by one TransferEngine."""

import asyncio
import logging

from transport.base import (
    ConnectionState,
    Message,
    MessageHandler,
    PeerTransport,
    StateHandler,
)

logger = logging.getLogger(__name__)


class TransportSession:
    """
    Wraps a PeerTransport and tracks its lifecycle.

    State only moves forward: negotiating -> open -> closed. At most one
    message observer and one state observer are registered at a time;
    registering again replaces the previous one.
    """

    def __init__(self, transport: PeerTransport) -> None:
        self._transport = transport
        self._state = ConnectionState.NEGOTIATING
        self._opened = asyncio.Event()
        self._closed = asyncio.Event()
        self._on_message: MessageHandler | None = None
        self._on_state: StateHandler | None = None
        transport.set_message_handler(self._dispatch_message)
        transport.set_state_handler(self._dispatch_state)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def buffered_amount(self) -> int:
        return self._transport.buffered_amount

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        self._on_message = handler

    def set_state_handler(self, handler: StateHandler | None) -> None:
        self._on_state = handler

    # --- Negotiation passthrough ---

    async def create_local_offer(self) -> str:
        return await self._transport.create_local_offer()

    async def accept_remote_offer(self, descriptor: str) -> str:
        return await self._transport.accept_remote_offer(descriptor)

    async def accept_remote_answer(self, descriptor: str) -> None:
        await self._transport.accept_remote_answer(descriptor)

    # --- Channel ---

    def send(self, message: Message) -> None:
        if not self.is_open:
            raise ConnectionError(f"Channel is {self._state.value}, not open")
        self._transport.send(message)

    async def wait_open(self, timeout: float | None = None) -> None:
        """Block until the channel opens. Raises ConnectionError if it closes first."""
        opened = asyncio.ensure_future(self._opened.wait())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {opened, closed}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            opened.cancel()
            closed.cancel()
        if not done:
            raise asyncio.TimeoutError(f"Channel did not open within {timeout}s")
        if not self.is_open:
            raise ConnectionError("Channel closed before opening")

    async def close(self) -> None:
        await self._transport.close()
        # Transports report CLOSED themselves; make sure we never linger
        await self._dispatch_state(ConnectionState.CLOSED)

    # --- Transport callbacks ---

    async def _dispatch_message(self, message: Message) -> None:
        if self._on_message is None:
            logger.debug("Dropping message with no observer registered")
            return
        await self._on_message(message)

    async def _dispatch_state(self, state: ConnectionState) -> None:
        if state == self._state or self._state == ConnectionState.CLOSED:
            return
        if state == ConnectionState.NEGOTIATING:
            return
        self._state = state
        logger.info(f"Connection state: {state.value}")
        if state == ConnectionState.OPEN:
            self._opened.set()
        else:
            self._closed.set()
        if self._on_state is not None:
            try:
                await self._on_state(state)
            except Exception as e:
                logger.error(f"Connection state observer error: {e}", exc_info=True)
