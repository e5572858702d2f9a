"""TCP sessions and services built on asyncio streams."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import struct
import threading
import weakref
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Callable

from .buffers import RecvBuffer

__all__ = [
    "NetAddress",
    "PacketHeader",
    "split_packets",
    "Session",
    "PacketSession",
    "Service",
    "ServerService",
    "ClientService",
]

_log = logging.getLogger(__name__)

_FATAL_SOCKET_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


@dataclass(frozen=True)
class NetAddress:
    """An IPv4 address and port."""

    ip: str = "0.0.0.0"
    port: int = 0

    def __post_init__(self) -> None:
        ipaddress.IPv4Address(self.ip)
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")

    @classmethod
    def from_sockaddr(cls, sockaddr) -> NetAddress:
        """Build from a socket address tuple such as ``getpeername`` returns."""
        return cls(sockaddr[0], sockaddr[1])


@dataclass(frozen=True)
class PacketHeader:
    """Header in front of every packet: total size (header included) and packet id."""

    size: int
    id: int

    FORMAT = "<HH"
    SIZE = struct.calcsize(FORMAT)

    def pack(self) -> bytes:
        return struct.pack(self.FORMAT, self.size, self.id)

    @classmethod
    def unpack(cls, data) -> PacketHeader:
        """Read a header from the start of ``data``."""
        if len(data) < cls.SIZE:
            raise ValueError(f"need {cls.SIZE} bytes for a packet header, got {len(data)}")
        size, packet_id = struct.unpack_from(cls.FORMAT, data)
        return cls(size, packet_id)


def split_packets(data) -> tuple[list[bytes], int]:
    """Cut the complete packets off the front of ``data``.

    Returns the packets, headers included, and the number of bytes they take.
    Trailing bytes of an incomplete packet are left for later.
    """
    view = memoryview(data).cast("B")
    packets: list[bytes] = []
    processed = 0
    while len(view) - processed >= PacketHeader.SIZE:
        header = PacketHeader.unpack(view[processed:])
        if header.size < PacketHeader.SIZE:
            raise ValueError(f"packet size {header.size} is smaller than its header")
        if len(view) - processed < header.size:
            break
        packets.append(bytes(view[processed:processed + header.size]))
        processed += header.size
    return packets, processed


class Session:
    """One TCP connection: buffers what arrives and queues what is sent.

    Subclasses override the ``on_*`` hooks. :meth:`send` may be called from
    any thread once the session is being served.
    """

    BUFFER_SIZE = 0x10000

    def __init__(self) -> None:
        self.address = NetAddress()
        self._service_ref: weakref.ref | None = None
        self._connected = False
        self._lock = threading.Lock()
        self._recv_buffer = RecvBuffer(self.BUFFER_SIZE)
        self._send_queue: deque[bytes] = deque()
        self._send_registered = False
        self._writer: asyncio.StreamWriter | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._flush_task: asyncio.Task | None = None

    @property
    def service(self) -> Service | None:
        """The service this session belongs to, if it is still alive."""
        return self._service_ref() if self._service_ref is not None else None

    @service.setter
    def service(self, service: Service | None) -> None:
        self._service_ref = weakref.ref(service) if service is not None else None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def send(self, data) -> bool:
        """Queue ``data`` for sending; False when the session is not connected."""
        if not self._connected:
            _log.debug("send on a session that is not connected")
            return False
        with self._lock:
            self._send_queue.append(bytes(data))
            register = not self._send_registered
            self._send_registered = True
        if register:
            self._loop.call_soon_threadsafe(self._start_flush)
        return True

    def disconnect(self, cause: str) -> bool:
        """Close the connection; False when it was already closed."""
        if not self._connected:
            return False
        self._connected = False
        _log.debug("disconnect: %s", cause)
        if self._writer is not None:
            self._writer.close()
        return True

    async def serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Run the session over an open connection until it closes."""
        if self._connected:
            raise RuntimeError("session is already connected")
        self._writer = writer
        self._loop = asyncio.get_running_loop()
        peer = writer.get_extra_info("peername")
        if peer:
            try:
                self.address = NetAddress.from_sockaddr(peer)
            except ValueError:
                pass

        self._connected = True
        service = self.service
        if service is not None:
            service.add_session(self)

        try:
            self.on_connected()
            await self._receive_loop(reader)
        finally:
            self.disconnect("Closed")
            try:
                await writer.wait_closed()
            except Exception:  # the peer may already be gone
                pass
            self._process_disconnect(service)

    async def _receive_loop(self, reader: asyncio.StreamReader) -> None:
        buffer = self._recv_buffer
        while self._connected:
            if buffer.free_size == 0:
                self.disconnect("OnWrite Overflow")
                return
            try:
                data = await reader.read(buffer.free_size)
            except OSError as exc:
                self._handle_error(exc)
                self.disconnect("Recv error")
                return
            if not data:
                self.disconnect("Recv 0")
                return

            buffer.writable()[:len(data)] = data
            buffer.on_write(len(data))

            readable = bytes(buffer.readable())
            processed = self.on_recv(readable)
            if not isinstance(processed, int) or processed < 0 or processed > len(readable):
                self.disconnect("OnRead Overflow")
                return
            buffer.on_read(processed)
            buffer.clean()

    def _process_disconnect(self, service: Service | None) -> None:
        with self._lock:
            self._send_queue.clear()
            self._send_registered = False
        self.on_disconnected()
        if service is not None:
            service.release_session(self)

    def _start_flush(self) -> None:
        self._flush_task = self._loop.create_task(self._flush())

    def _unregister_send(self) -> None:
        with self._lock:
            self._send_registered = False

    async def _flush(self) -> None:
        while True:
            with self._lock:
                buffers = list(self._send_queue)
                self._send_queue.clear()
            if not self._connected:
                self._unregister_send()
                return

            total = sum(len(chunk) for chunk in buffers)
            try:
                self._writer.writelines(buffers)
                await self._writer.drain()
            except OSError as exc:
                self._handle_error(exc)
                self._unregister_send()
                return

            if total == 0:
                self.disconnect("Send 0")
                self._unregister_send()
                return

            self.on_send(total)

            with self._lock:
                if not self._send_queue:
                    self._send_registered = False
                    return

    def _handle_error(self, exc: OSError) -> None:
        if isinstance(exc, _FATAL_SOCKET_ERRORS):
            self.disconnect("HandleError")
        else:
            _log.warning("socket error: %s", exc)

    def on_connected(self) -> None:
        """Called once the connection is up."""

    def on_recv(self, data: bytes) -> int:
        """Handle received bytes; return how many of them were consumed."""
        return len(data)

    def on_send(self, length: int) -> None:
        """Called after ``length`` bytes were handed to the connection."""

    def on_disconnected(self) -> None:
        """Called once the connection has closed."""


class PacketSession(Session, ABC):
    """Session that receives length-prefixed packets: ``[size][id][data...]``."""

    def on_recv(self, data: bytes) -> int:
        packets, processed = split_packets(data)
        for packet in packets:
            self.on_recv_packet(packet)
        return processed

    @abstractmethod
    def on_recv_packet(self, packet: bytes) -> None:
        """Handle one complete packet, header included."""


SessionFactory = Callable[[], Session]


class Service:
    """Owns the sessions made by one session factory."""

    def __init__(
        self,
        address: NetAddress,
        session_factory: SessionFactory | None = None,
        max_session_count: int = 1,
    ) -> None:
        if max_session_count < 1:
            raise ValueError("max_session_count must be at least 1")
        self.address = address
        self.session_factory = session_factory
        self.max_session_count = max_session_count
        self._lock = threading.Lock()
        self._sessions: set[Session] = set()

    def _require_factory(self) -> None:
        if self.session_factory is None:
            raise RuntimeError("service has no session factory")

    def create_session(self) -> Session:
        """Make a session bound to this service."""
        self._require_factory()
        session = self.session_factory()
        session.service = self
        return session

    def add_session(self, session: Session) -> None:
        with self._lock:
            self._sessions.add(session)

    def release_session(self, session: Session) -> None:
        """Forget ``session``; KeyError if it was never added."""
        with self._lock:
            self._sessions.remove(session)

    def broadcast(self, data) -> None:
        """Send ``data`` to every session."""
        with self._lock:
            sessions = list(self._sessions)
        for session in sessions:
            session.send(data)

    @property
    def current_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def sessions(self) -> frozenset[Session]:
        with self._lock:
            return frozenset(self._sessions)


class ServerService(Service):
    """Accepts connections on ``address`` and serves each with a new session.

    When the port is 0 the address is updated to the port actually bound.
    """

    def __init__(
        self,
        address: NetAddress,
        session_factory: SessionFactory | None = None,
        max_session_count: int = 1,
    ) -> None:
        super().__init__(address, session_factory, max_session_count)
        self._server: asyncio.base_events.Server | None = None

    async def start(self) -> None:
        """Bind and start listening."""
        self._require_factory()
        if self._server is not None:
            raise RuntimeError("service already started")
        self._server = await asyncio.start_server(
            self._accept, self.address.ip, self.address.port, reuse_address=True
        )
        if self.address.port == 0:
            port = self._server.sockets[0].getsockname()[1]
            self.address = NetAddress(self.address.ip, port)

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = self.create_session()
        await session.serve(reader, writer)

    async def close(self) -> None:
        """Stop listening and disconnect every session."""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        for session in self.sessions:
            session.disconnect("Service closed")
        await server.wait_closed()


class ClientService(Service):
    """Opens ``max_session_count`` connections to ``address``."""

    def __init__(
        self,
        address: NetAddress,
        session_factory: SessionFactory | None = None,
        max_session_count: int = 1,
    ) -> None:
        super().__init__(address, session_factory, max_session_count)
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> list[Session]:
        """Connect every session and start serving them; return the sessions."""
        self._require_factory()
        sessions = []
        for _ in range(self.max_session_count):
            session = self.create_session()
            reader, writer = await asyncio.open_connection(self.address.ip, self.address.port)
            task = asyncio.get_running_loop().create_task(session.serve(reader, writer))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            sessions.append(session)
        await asyncio.sleep(0)
        return sessions