"""
TCP-based transport primitive.

The offering side opens a listener and describes it in the offer along
with an ephemeral X25519 public key and a one-time token. The answering
side derives the channel key, returns its own public key as the answer,
and dials the listener:

    joiner -> host   HELLO    {token, public_key}          (plaintext)
    host   -> joiner WELCOME  token                        (encrypted)
    both             TEXT / BINARY application messages    (encrypted)
    either           BYE                                   (plaintext)

The host holds the HELLO until the answer arrives through the signaling
store, so the channel only opens once both descriptors are applied.
"""

import asyncio
import json
import logging
import secrets
import struct
from enum import IntEnum

from cryptography.exceptions import InvalidTag
from pydantic import BaseModel, ValidationError

from config import CONNECT_TIMEOUT, TRANSPORT_ADVERTISE_HOST, TRANSPORT_BIND_HOST
from security.crypto import SessionCipher, derive_shared_key, generate_keypair
from transport.base import ConnectionState, Message, PeerTransport

logger = logging.getLogger(__name__)

# --- Wire protocol helpers ---

HEADER_FORMAT = "!BI"  # 1-byte type + 4-byte length (big-endian)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
MAX_FRAME_SIZE = 16 * 1024 * 1024


class FrameType(IntEnum):
    HELLO = 0x01
    WELCOME = 0x02
    TEXT = 0x03
    BINARY = 0x04
    BYE = 0x05


def pack_frame(frame_type: int, payload: bytes = b"") -> bytes:
    return struct.pack(HEADER_FORMAT, frame_type, len(payload)) + payload


async def recv_frame(reader: asyncio.StreamReader) -> tuple[int, bytes]:
    """Receive a type-length-payload frame. Returns (type, payload)."""
    header = await reader.readexactly(HEADER_SIZE)
    frame_type, length = struct.unpack(HEADER_FORMAT, header)
    if length > MAX_FRAME_SIZE:
        raise ConnectionError(f"Frame of {length} bytes exceeds limit")
    payload = b""
    if length > 0:
        payload = await reader.readexactly(length)
    return frame_type, payload


class OfferDescriptor(BaseModel):
    host: str
    port: int
    public_key: str  # hex
    token: str


class AnswerDescriptor(BaseModel):
    public_key: str  # hex


class TcpTransport(PeerTransport):
    """One encrypted, ordered, message-oriented TCP channel to one peer."""

    def __init__(
        self,
        bind_host: str = TRANSPORT_BIND_HOST,
        advertise_host: str = TRANSPORT_ADVERTISE_HOST,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        super().__init__()
        self._bind_host = bind_host
        self._advertise_host = advertise_host
        self._connect_timeout = connect_timeout
        self._state = ConnectionState.NEGOTIATING
        self._private_key = None
        self._token: str | None = None
        self._peer_public_key: str | None = None
        self._cipher: SessionCipher | None = None
        self._answer_applied = asyncio.Event()
        self._server: asyncio.Server | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._connect_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def buffered_amount(self) -> int:
        if self._writer is None or self._writer.transport is None:
            return 0
        return self._writer.transport.get_write_buffer_size()

    # --- Offering side ---

    async def create_local_offer(self) -> str:
        if self._private_key is not None:
            raise RuntimeError("Transport has already been negotiated")
        self._private_key, public_bytes = generate_keypair()
        self._token = secrets.token_hex(16)
        self._server = await asyncio.start_server(
            self._handle_incoming_connection, self._bind_host, 0
        )
        port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Offer listener bound on {self._bind_host}:{port}")
        return OfferDescriptor(
            host=self._advertise_host,
            port=port,
            public_key=public_bytes.hex(),
            token=self._token,
        ).model_dump_json()

    async def accept_remote_answer(self, descriptor: str) -> None:
        if self._server is None or self._token is None:
            raise RuntimeError("accept_remote_answer() requires a local offer")
        try:
            answer = AnswerDescriptor.model_validate_json(descriptor)
            peer_public = bytes.fromhex(answer.public_key)
            key = derive_shared_key(self._private_key, peer_public, self._token)
        except (ValidationError, ValueError) as e:
            raise ValueError(f"Invalid answer descriptor: {e}") from e
        self._peer_public_key = answer.public_key
        self._cipher = SessionCipher(key)
        self._answer_applied.set()

    async def _handle_incoming_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        if self._writer is not None or self._state != ConnectionState.NEGOTIATING:
            logger.warning(f"Rejecting extra connection from {peer}")
            writer.close()
            return

        try:
            frame_type, payload = await asyncio.wait_for(
                recv_frame(reader), timeout=self._connect_timeout
            )
            if frame_type != FrameType.HELLO:
                raise ConnectionError(f"Expected HELLO, got {frame_type:#x}")
            hello = json.loads(payload.decode("utf-8"))
            if not isinstance(hello, dict):
                raise ConnectionError("HELLO payload is not an object")
            if not secrets.compare_digest(str(hello.get("token", "")), self._token):
                raise ConnectionError("HELLO token does not match our offer")

            # The joiner dials as soon as it writes its answer; wait for ours to land
            await asyncio.wait_for(
                self._answer_applied.wait(), timeout=self._connect_timeout
            )
            if hello.get("public_key") != self._peer_public_key:
                raise ConnectionError("HELLO key does not match the applied answer")

            writer.write(pack_frame(
                FrameType.WELCOME,
                self._cipher.encrypt(FrameType.WELCOME, self._token.encode("utf-8")),
            ))
            await writer.drain()
        except (
            asyncio.TimeoutError,
            asyncio.IncompleteReadError,
            ConnectionError,
            OSError,
            ValueError,
        ) as e:
            logger.warning(f"Handshake with {peer} failed: {e}")
            writer.close()
            return

        # One peer per offer
        self._server.close()
        self._reader, self._writer = reader, writer
        logger.info(f"Peer {peer} connected")
        await self._set_state(ConnectionState.OPEN)
        await self._read_loop()

    # --- Answering side ---

    async def accept_remote_offer(self, descriptor: str) -> str:
        if self._private_key is not None:
            raise RuntimeError("Transport has already been negotiated")
        try:
            offer = OfferDescriptor.model_validate_json(descriptor)
            peer_public = bytes.fromhex(offer.public_key)
            self._private_key, public_bytes = generate_keypair()
            key = derive_shared_key(self._private_key, peer_public, offer.token)
        except (ValidationError, ValueError) as e:
            raise ValueError(f"Invalid offer descriptor: {e}") from e

        self._token = offer.token
        self._cipher = SessionCipher(key)
        self._connect_task = asyncio.create_task(
            self._connect(offer, public_bytes.hex())
        )
        return AnswerDescriptor(public_key=public_bytes.hex()).model_dump_json()

    async def _connect(self, offer: OfferDescriptor, public_key: str) -> None:
        writer: asyncio.StreamWriter | None = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(offer.host, offer.port),
                timeout=self._connect_timeout,
            )
            hello = json.dumps({"token": offer.token, "public_key": public_key})
            writer.write(pack_frame(FrameType.HELLO, hello.encode("utf-8")))
            await writer.drain()

            # Host answers once it has polled our answer; allow for its poll interval
            frame_type, payload = await asyncio.wait_for(
                recv_frame(reader), timeout=self._connect_timeout * 2
            )
            if frame_type != FrameType.WELCOME:
                raise ConnectionError(f"Expected WELCOME, got {frame_type:#x}")
            if self._cipher.decrypt(FrameType.WELCOME, payload) != offer.token.encode("utf-8"):
                raise ConnectionError("WELCOME does not carry our offer token")
        except (
            asyncio.TimeoutError,
            asyncio.IncompleteReadError,
            ConnectionError,
            OSError,
            InvalidTag,
        ) as e:
            logger.warning(f"Could not open channel to {offer.host}:{offer.port}: {e!r}")
            if writer is not None:
                writer.close()
            await self._set_state(ConnectionState.CLOSED)
            return

        self._reader, self._writer = reader, writer
        logger.info(f"Connected to {offer.host}:{offer.port}")
        await self._set_state(ConnectionState.OPEN)
        await self._read_loop()

    # --- Channel ---

    def send(self, message: Message) -> None:
        if (
            self._state != ConnectionState.OPEN
            or self._writer is None
            or self._writer.is_closing()
        ):
            raise ConnectionError("Transport is not open")
        if isinstance(message, str):
            frame_type, payload = FrameType.TEXT, message.encode("utf-8")
        else:
            frame_type, payload = FrameType.BINARY, bytes(message)
        self._writer.write(pack_frame(frame_type, self._cipher.encrypt(frame_type, payload)))

    async def _read_loop(self) -> None:
        try:
            while True:
                frame_type, payload = await recv_frame(self._reader)
                if frame_type == FrameType.BYE:
                    logger.info("Peer closed the channel")
                    break
                if frame_type not in (FrameType.TEXT, FrameType.BINARY):
                    logger.warning(f"Ignoring unexpected frame type {frame_type:#x}")
                    continue

                data = self._cipher.decrypt(frame_type, payload)
                if frame_type == FrameType.TEXT:
                    try:
                        message: Message = data.decode("utf-8")
                    except UnicodeDecodeError:
                        logger.warning("Dropping TEXT frame that is not valid UTF-8")
                        continue
                else:
                    message = data

                if self._message_handler is not None:
                    try:
                        await self._message_handler(message)
                    except Exception as e:
                        logger.error(f"Message handler error: {e}", exc_info=True)
        except asyncio.IncompleteReadError:
            logger.info("Channel reached EOF")
        except InvalidTag:
            logger.warning("Dropping channel: frame failed authentication")
        except (ConnectionError, OSError) as e:
            logger.warning(f"Channel error: {e}")
        finally:
            await self._release()

    async def _release(self) -> None:
        if self._writer is not None and not self._writer.is_closing():
            self._writer.close()
        if self._server is not None:
            self._server.close()
        await self._set_state(ConnectionState.CLOSED)

    async def close(self) -> None:
        if self._state == ConnectionState.CLOSED:
            return
        if self._writer is not None and not self._writer.is_closing():
            try:
                self._writer.write(pack_frame(FrameType.BYE))
                await self._writer.drain()
            except (ConnectionError, OSError):
                pass
        if self._connect_task is not None and self._connect_task is not asyncio.current_task():
            self._connect_task.cancel()
        await self._release()

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state or self._state == ConnectionState.CLOSED:
            return
        self._state = state
        if self._state_handler is not None:
            await self._state_handler(state)
