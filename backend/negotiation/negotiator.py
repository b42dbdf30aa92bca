"""
Connection negotiation through a signaling store.

Host:   create_connection() -> code, then complete_connection() polls the
        store for the joiner's answer and applies it.
Joiner: join_connection(code) reads the offer, writes an answer and
        returns a session that opens on its own once the host applies it.

Only the host polls; the joiner learns about the open channel from the
transport's own state change.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from config import NEGOTIATION_TIMEOUT, POLL_INTERVAL, SESSION_CODE_LENGTH
from errors import (
    InvalidCode,
    MalformedSignal,
    NegotiationCancelled,
    NegotiationTimeout,
    SignalingUnavailable,
)
from negotiation.codes import generate_session_code, normalize_code
from signaling.models import SignalKind, SignalRecord, signal_key
from signaling.store import SignalingStore
from transport.base import PeerTransport
from transport.session import TransportSession
from transport.tcp import TcpTransport

logger = logging.getLogger(__name__)


class Role(str, Enum):
    HOST = "host"
    JOINER = "joiner"


class ConnectionNegotiator:
    """Drives one negotiation, for one role, to a TransportSession."""

    def __init__(
        self,
        store: SignalingStore,
        transport_factory: Callable[[], PeerTransport] = TcpTransport,
        poll_interval: float = POLL_INTERVAL,
        timeout: float = NEGOTIATION_TIMEOUT,
        code_length: int = SESSION_CODE_LENGTH,
    ) -> None:
        self._store = store
        self._transport_factory = transport_factory
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._code_length = code_length
        self._code: str | None = None
        self._role: Role | None = None
        self._session: TransportSession | None = None
        self._poll_task: asyncio.Task | None = None
        self._polling_cancelled = False

    @property
    def code(self) -> str | None:
        return self._code

    @property
    def role(self) -> Role | None:
        return self._role

    @property
    def session(self) -> TransportSession | None:
        return self._session

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _ensure_unused(self) -> None:
        if self._role is not None:
            raise RuntimeError(
                f"Negotiator already used as {self._role.value}; create a new one"
            )

    # --- Host ---

    async def create_connection(self) -> str:
        """Publish an offer and return its session code without waiting for a peer."""
        self._ensure_unused()
        session = TransportSession(self._transport_factory())
        try:
            offer = await session.create_local_offer()
            code = generate_session_code(self._code_length)
            record = SignalRecord(type=SignalKind.OFFER, data=offer)
            await self._store.put(signal_key(code, SignalKind.OFFER), record.model_dump(mode="json"))
        except BaseException:
            await session.close()
            raise

        self._role = Role.HOST
        self._code = code
        self._session = session
        logger.info(f"Hosting session {code}")
        return code

    async def complete_connection(self) -> TransportSession:
        """
        Wait for the joiner's answer and apply it.

        Raises:
            NegotiationTimeout: no answer within the timeout.
            NegotiationCancelled: cancel_polling()/teardown() stopped the wait.
            MalformedSignal: the answer entry is not a valid answer record.
        """
        if self._role != Role.HOST or self._session is None:
            raise RuntimeError("complete_connection() requires create_connection() first")
        if self.is_polling:
            raise RuntimeError("Already waiting for an answer")

        code = self._code
        self._polling_cancelled = False
        self._poll_task = asyncio.create_task(self._poll_for_answer(code))
        try:
            record = await asyncio.wait_for(self._poll_task, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No answer for session {code} after {self._timeout:g}s")
            raise NegotiationTimeout(code, self._timeout) from None
        except asyncio.CancelledError:
            if self._polling_cancelled:
                raise NegotiationCancelled(code) from None
            raise
        finally:
            self._poll_task = None

        key = signal_key(code, SignalKind.ANSWER)
        try:
            await self._session.accept_remote_answer(record.data)
        except ValueError as e:
            raise MalformedSignal(key, str(e)) from e
        logger.info(f"Applied answer for session {code}")
        return self._session

    async def _poll_for_answer(self, code: str) -> SignalRecord:
        key = signal_key(code, SignalKind.ANSWER)
        while True:
            try:
                value = await self._store.get(key)
            except SignalingUnavailable as e:
                # Outages are retried until the negotiation timeout
                logger.warning(f"{e}; retrying")
                value = None
            if value is not None:
                return self._parse_record(key, value, SignalKind.ANSWER)
            await asyncio.sleep(self._poll_interval)

    def cancel_polling(self) -> None:
        """Stop waiting for an answer. complete_connection() raises NegotiationCancelled."""
        if self._poll_task is not None and not self._poll_task.done():
            self._polling_cancelled = True
            self._poll_task.cancel()

    # --- Joiner ---

    async def join_connection(self, code: str) -> TransportSession:
        """
        Answer the offer published under `code`.

        Raises:
            InvalidCode: nothing is stored for the code.
            MalformedSignal: the entry is not a usable offer record.
        """
        self._ensure_unused()
        code = normalize_code(code)
        key = signal_key(code, SignalKind.OFFER)

        value = await self._store.get(key)
        if value is None:
            raise InvalidCode(code)
        record = self._parse_record(key, value, SignalKind.OFFER)

        session = TransportSession(self._transport_factory())
        try:
            answer = await session.accept_remote_offer(record.data)
            reply = SignalRecord(type=SignalKind.ANSWER, data=answer)
            await self._store.put(signal_key(code, SignalKind.ANSWER), reply.model_dump(mode="json"))
        except ValueError as e:
            await session.close()
            raise MalformedSignal(key, str(e)) from e
        except BaseException:
            await session.close()
            raise

        self._role = Role.JOINER
        self._code = code
        self._session = session
        logger.info(f"Joined session {code}")
        return session

    # --- Teardown ---

    async def teardown(self) -> None:
        """Stop polling, close the session and delete both signaling keys."""
        self.cancel_polling()
        if self._session is not None:
            await self._session.close()
        if self._code is not None:
            for kind in SignalKind:
                try:
                    await self._store.delete(signal_key(self._code, kind))
                except SignalingUnavailable as e:
                    logger.warning(f"Could not clean up: {e}")
            logger.info(f"Tore down session {self._code}")

    @staticmethod
    def _parse_record(key: str, value: Any, expected: SignalKind) -> SignalRecord:
        try:
            record = SignalRecord.model_validate(value)
        except ValidationError as e:
            raise MalformedSignal(key, f"not a signaling record ({e.error_count()} errors)") from e
        if record.type != expected:
            raise MalformedSignal(key, f"expected {expected.value!r}, got {record.type.value!r}")
        return record
