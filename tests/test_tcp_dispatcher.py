"""Tests for Host sniffing and the TCP multiplexing listener."""

import asyncio

import pytest

from proxmux.dispatcher.sniffer import extract_hostname, looks_like_http, sniff_subdomain
from proxmux.ports.listeners import TCPSniffListener


class TestHostSniffing:

    def test_extracts_host_without_port(self):
        data = b"GET / HTTP/1.1\r\nHost: git.example.com:2222\r\nAccept: */*\r\n\r\n"
        assert extract_hostname(data) == "git.example.com"
        assert sniff_subdomain(data) == "git"

    def test_header_name_is_case_insensitive(self):
        data = b"POST /push HTTP/1.1\r\nhost: Git.Example.com\r\n\r\n"
        assert extract_hostname(data) == "git.example.com"

    def test_only_get_and_post_are_sniffed(self):
        assert looks_like_http(b"GET / HTTP/1.1\r\n")
        assert not looks_like_http(b"PUT / HTTP/1.1\r\nHost: a.b\r\n\r\n")
        assert extract_hostname(b"\x16\x03\x01\x02\x00") is None

    def test_stops_at_end_of_headers(self):
        data = b"GET / HTTP/1.1\r\nAccept: */*\r\n\r\nHost: body.example.com\r\n"
        assert extract_hostname(data) is None

    def test_truncated_buffer(self):
        assert extract_hostname(b"GET / HTTP/1.1\r\nHost: api.example.com") == "api.example.com"

    def test_single_label_host_is_its_own_key(self):
        assert sniff_subdomain(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n") == "localhost"


async def start_sniffer(port, table):
    listener = TCPSniffListener(port, table, host="127.0.0.1", grace=1)
    await listener.start()
    return listener


class TestTCPSniffListener:
    """End to end through a real listening socket."""

    @pytest.mark.asyncio
    async def test_forwards_exact_bytes_both_ways(self, raw_backend, free_port):
        port = free_port()
        listener = await start_sniffer(port, {"git": ("127.0.0.1", raw_backend.port)})
        try:
            request = b"GET / HTTP/1.1\r\nHost: git.example.com\r\n\r\n"
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(request)
            await writer.drain()

            reply = await asyncio.wait_for(reader.read(), timeout=5)
            writer.close()
        finally:
            await listener.stop()

        assert bytes(raw_backend.received) == request
        assert reply == b"HELLO FROM BACKEND"

    @pytest.mark.asyncio
    async def test_unmatched_connection_is_dropped(self, raw_backend, free_port):
        port = free_port()
        listener = await start_sniffer(port, {"git": ("127.0.0.1", raw_backend.port)})
        try:
            for data in (b"GET / HTTP/1.1\r\nHost: wiki.example.com\r\n\r\n", b"SSH-2.0-OpenSSH_9.6\r\n"):
                reader, writer = await asyncio.open_connection("127.0.0.1", port)
                writer.write(data)
                await writer.drain()
                assert await asyncio.wait_for(reader.read(), timeout=5) == b""
                writer.close()

            # Listener survives dropped connections
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"GET / HTTP/1.1\r\nHost: git.example.com\r\n\r\n")
            await writer.drain()
            assert await asyncio.wait_for(reader.read(), timeout=5) == b"HELLO FROM BACKEND"
            writer.close()
        finally:
            await listener.stop()

        assert raw_backend.connections == 1

    @pytest.mark.asyncio
    async def test_dead_backend_drops_connection(self, free_port):
        port = free_port()
        listener = await start_sniffer(port, {"git": ("127.0.0.1", free_port())})
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"GET / HTTP/1.1\r\nHost: git.example.com\r\n\r\n")
            await writer.drain()
            assert await asyncio.wait_for(reader.read(), timeout=5) == b""
            writer.close()
        finally:
            await listener.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_active_splices(self, free_port):
        async def hold_open(reader, writer):
            await reader.read()
            writer.close()

        backend = await asyncio.start_server(hold_open, "127.0.0.1", 0)
        backend_port = backend.sockets[0].getsockname()[1]

        port = free_port()
        listener = await start_sniffer(port, {"git": ("127.0.0.1", backend_port)})
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"GET / HTTP/1.1\r\nHost: git.example.com\r\n\r\n")
        await writer.drain()
        await asyncio.sleep(0.2)
        assert listener.dispatcher.active_connections == 1

        await asyncio.wait_for(listener.stop(), timeout=5)
        assert listener.dispatcher.active_connections == 0
        assert await asyncio.wait_for(reader.read(), timeout=5) == b""

        writer.close()
        backend.close()
