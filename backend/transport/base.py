"""The point-to-point transport primitive the negotiator and engine consume."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Union

Message = Union[str, bytes]
MessageHandler = Callable[[Message], Awaitable[None]]


class ConnectionState(str, Enum):
    NEGOTIATING = "negotiating"
    OPEN = "open"
    CLOSED = "closed"


StateHandler = Callable[[ConnectionState], Awaitable[None]]


class PeerTransport(ABC):
    """
    An opaque bidirectional channel that negotiates itself through
    descriptors exchanged out of band.

    Implementations must deliver messages in send order, report state
    changes through the state handler, and expose the number of bytes
    queued locally but not yet handed to the network.
    """

    def __init__(self) -> None:
        self._message_handler: MessageHandler | None = None
        self._state_handler: StateHandler | None = None

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        self._message_handler = handler

    def set_state_handler(self, handler: StateHandler | None) -> None:
        self._state_handler = handler

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        ...

    @property
    @abstractmethod
    def buffered_amount(self) -> int:
        ...

    @abstractmethod
    async def create_local_offer(self) -> str:
        ...

    @abstractmethod
    async def accept_remote_offer(self, descriptor: str) -> str:
        """Consume an offer and return the local answer descriptor."""

    @abstractmethod
    async def accept_remote_answer(self, descriptor: str) -> None:
        ...

    @abstractmethod
    def send(self, message: Message) -> None:
        """Queue one message. Raises ConnectionError when the channel is not open."""

    @abstractmethod
    async def close(self) -> None:
        ...
