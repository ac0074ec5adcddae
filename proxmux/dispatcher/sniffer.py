"""Host header sniffing for raw TCP connections.

Only plain HTTP/1.x request preambles are understood. Anything else
(TLS, SSH, binary protocols) yields no hostname and the connection is
dropped by the dispatcher.
"""

from typing import Optional

from ..proxy.matcher import split_host

HTTP_PREAMBLES = (b"GET ", b"POST ")


def looks_like_http(data: bytes) -> bool:
    """Check whether the buffer begins with a supported HTTP request line."""
    return data.startswith(HTTP_PREAMBLES)


def extract_hostname(data: bytes) -> Optional[str]:
    """Extract the Host header value (without port) from buffered request bytes.

    Scans header lines up to the blank line ending the header block. The
    buffer may be truncated; a partial last line is still examined.
    """
    if not looks_like_http(data):
        return None

    lines = data.decode('latin-1').split('\n')
    for line in lines[1:]:  # Skip request line
        line = line.rstrip('\r')
        if line == '':  # End of headers
            break
        name, sep, value = line.partition(':')
        if sep and name.strip().lower() == 'host':
            host, _ = split_host(value.strip())
            return host or None
    return None


def sniff_subdomain(data: bytes) -> Optional[str]:
    """Subdomain key of a sniffed connection: the first label of its Host."""
    hostname = extract_hostname(data)
    if not hostname:
        return None
    return hostname.split('.', 1)[0]
