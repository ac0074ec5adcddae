"""TCP dispatcher: routes raw connections by sniffed Host header.

Reads the first bytes of a connection, picks a backend by the subdomain
label of the HTTP ``Host`` header, replays the consumed bytes to the backend
and then splices both streams until they close.
"""

import asyncio
from typing import Mapping, Optional, Set, Tuple

from ..shared.config import Config
from ..shared.logging import get_logger
from .sniffer import sniff_subdomain

logger = get_logger("dispatcher")

SPLICE_CHUNK_SIZE = 65536


class TCPSniffDispatcher:
    """Connection handler for the TCP multiplexing port."""

    def __init__(
        self,
        subdomains: Mapping[str, Tuple[str, int]],
        buffer_size: Optional[int] = None,
        read_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
    ):
        """Initialize the dispatcher.

        Args:
            subdomains: Subdomain label -> (backend host, backend port)
            buffer_size: Size of the initial sniff read
            read_timeout: Bound on the initial read (None waits indefinitely)
            connect_timeout: Bound on the backend dial
        """
        self.subdomains = dict(subdomains)
        self.buffer_size = buffer_size or Config.SNIFF_BUFFER_SIZE
        self.read_timeout = read_timeout if read_timeout is not None else Config.SNIFF_READ_TIMEOUT
        self.connect_timeout = float(connect_timeout if connect_timeout is not None else Config.PROXY_CONNECT_TIMEOUT)
        self._connections: Set[asyncio.Task] = set()

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def _read_initial(self, reader: asyncio.StreamReader) -> bytes:
        if self.read_timeout:
            return await asyncio.wait_for(reader.read(self.buffer_size), timeout=self.read_timeout)
        return await reader.read(self.buffer_size)

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle one inbound connection on the sniffing port."""
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)

        client_addr = writer.get_extra_info('peername')
        client_ip = client_addr[0] if client_addr else 'unknown'

        try:
            try:
                data = await self._read_initial(reader)
            except asyncio.TimeoutError:
                logger.info("Timed out waiting for initial data", client_ip=client_ip)
                return
            except (ConnectionError, OSError) as e:
                logger.info("Error reading initial data", client_ip=client_ip, error=str(e))
                return

            if not data:
                logger.debug("Connection closed before sending data", client_ip=client_ip)
                return

            subdomain = sniff_subdomain(data)
            if not subdomain:
                logger.info("Could not identify hostname from TCP connection", client_ip=client_ip, data_len=len(data))
                return

            backend = self.subdomains.get(subdomain)
            if backend is None:
                logger.info("No destination found for TCP subdomain", subdomain=subdomain, client_ip=client_ip)
                return

            target_host, target_port = backend
            logger.info(
                "TCP subdomain match",
                subdomain=subdomain,
                target_host=target_host,
                target_port=target_port,
                client_ip=client_ip
            )
            await self._forward_connection(reader, writer, data, target_host, target_port, client_ip)
        finally:
            await self._close_writer(writer)
            if task is not None:
                self._connections.discard(task)

    async def _forward_connection(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        initial_data: bytes,
        target_host: str,
        target_port: int,
        client_ip: str,
    ):
        """Dial the backend, replay ``initial_data`` and splice both directions."""
        try:
            target_reader, target_writer = await asyncio.wait_for(
                asyncio.open_connection(target_host, target_port),
                timeout=self.connect_timeout
            )
        except (asyncio.TimeoutError, OSError) as e:
            logger.warning(
                "Error connecting to TCP target",
                target_host=target_host,
                target_port=target_port,
                error=str(e),
                client_ip=client_ip
            )
            return

        try:
            target_writer.write(initial_data)
            await target_writer.drain()

            await asyncio.gather(
                self._pipe(client_reader, target_writer, "client->target"),
                self._pipe(target_reader, client_writer, "target->client"),
            )
        except (ConnectionError, OSError) as e:
            logger.debug("Splice ended with error", error=str(e), client_ip=client_ip)
        finally:
            await self._close_writer(target_writer)

    @staticmethod
    async def _pipe(src_reader: asyncio.StreamReader, dst_writer: asyncio.StreamWriter, direction: str):
        """Copy bytes from src to dst until EOF, then half-close dst."""
        try:
            while True:
                data = await src_reader.read(SPLICE_CHUNK_SIZE)
                if not data:
                    break
                dst_writer.write(data)
                await dst_writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug("Forward ended", direction=direction, error=str(e))
        finally:
            if not dst_writer.is_closing() and dst_writer.can_write_eof():
                try:
                    dst_writer.write_eof()
                except OSError:
                    pass

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter):
        if writer.is_closing():
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def cancel_connections(self, timeout: float):
        """Cancel in-flight splices and wait (bounded) for them to unwind."""
        tasks = [t for t in self._connections if not t.done()]
        if not tasks:
            return
        logger.debug("Cancelling active TCP connections", count=len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)
