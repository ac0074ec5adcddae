"""Shared fixtures: rule files, free ports and small in-process backends."""

import asyncio
import json
import socket
from typing import Any, Callable, Dict, List

import pytest


def get_free_port() -> int:
    """Ask the OS for a currently unused TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def port_is_free(port: int) -> bool:
    """True when nothing is listening on the port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
        return True


@pytest.fixture
def free_port() -> Callable[[], int]:
    """Factory returning a fresh free port per call."""
    return get_free_port


@pytest.fixture
def is_port_free() -> Callable[[int], bool]:
    return port_is_free


@pytest.fixture
def rules_file(tmp_path):
    """Write a rule document to a temporary proxies.json and return its path."""
    path = tmp_path / "proxies.json"

    def write(document: Any) -> str:
        if isinstance(document, (bytes, str)):
            content = document if isinstance(document, str) else document.decode()
        else:
            content = json.dumps(document)
        path.write_text(content)
        return str(path)

    return write


class EchoBackend:
    """Minimal HTTP/1.1 backend that answers every request with a JSON echo.

    Each response carries the request line, headers and body it received and
    closes the connection afterwards.
    """

    def __init__(self, name: str = "backend"):
        self.name = name
        self.requests: List[Dict[str, Any]] = []
        self.server = None
        self.port = None

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self):
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            lines = head.decode("latin-1").split("\r\n")
            method, target, _ = lines[0].split(" ", 2)
            headers = {}
            for line in lines[1:]:
                if not line:
                    continue
                name, _, value = line.partition(":")
                headers[name.strip().lower()] = value.strip()

            body = b""
            if "content-length" in headers:
                body = await reader.readexactly(int(headers["content-length"]))
            elif headers.get("transfer-encoding", "").lower() == "chunked":
                body = await self._read_chunked(reader)

            record = {
                "backend": self.name,
                "method": method,
                "target": target,
                "headers": headers,
                "body": body.decode("latin-1"),
            }
            self.requests.append(record)

            payload = json.dumps(record).encode()
            writer.write(
                b"HTTP/1.1 200 OK\r\n"
                b"Content-Type: application/json\r\n"
                b"Set-Cookie: a=1\r\n"
                b"Set-Cookie: b=2\r\n"
                b"Connection: close\r\n"
                + f"Content-Length: {len(payload)}\r\n\r\n".encode()
                + payload
            )
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    @staticmethod
    async def _read_chunked(reader: asyncio.StreamReader) -> bytes:
        body = b""
        while True:
            size = int((await reader.readline()).strip(), 16)
            if size == 0:
                await reader.readline()
                return body
            body += await reader.readexactly(size)
            await reader.readline()


class RawBackend:
    """TCP backend that records received bytes and replies with a fixed banner."""

    def __init__(self, reply: bytes = b"HELLO FROM BACKEND"):
        self.reply = reply
        self.received = bytearray()
        self.connections = 0
        self.server = None
        self.port = None

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self):
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                self.received.extend(data)
                if b"\r\n\r\n" in self.received:
                    writer.write(self.reply)
                    await writer.drain()
                    break
        except ConnectionError:
            pass
        finally:
            writer.close()


@pytest.fixture
async def echo_backend():
    backend = await EchoBackend().start()
    yield backend
    await backend.stop()


@pytest.fixture
async def raw_backend():
    backend = await RawBackend().start()
    yield backend
    await backend.stop()
