"""
Functions mapping a request to the client identity a bucket is kept for.

Usernames or API tokens identify a client better than an address; several
users behind one NAT share a remote IP.
"""

from typing import Optional

from fastapi import Request

UNKNOWN_CLIENT = "unknown"


def _strip_port(value: str) -> str:
    value = value.strip().strip('"')
    if value.startswith("[") and "]" in value:
        return value[1:value.find("]")]
    # IPv4 "host:port"; bare IPv6 has more than one colon
    if value.count(":") == 1:
        host, port = value.rsplit(":", 1)
        if port.isdigit():
            return host
    return value


def peer_ip_key(request: Request) -> str:
    """Address of the socket peer, ignoring proxy headers."""
    if request.client and request.client.host:
        return _strip_port(request.client.host)
    return UNKNOWN_CLIENT


def remote_ip_key(request: Request) -> str:
    """Client address as reported by a trusted reverse proxy, else the peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return _strip_port(first_hop)

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return _strip_port(real_ip)

    return peer_ip_key(request)


def header_key(header_name: str, default: Optional[str] = None):
    """Key function reading the client identity from a request header.

    Requests without the header fall back to ``default`` when given, and to
    the remote address otherwise.
    """

    def key_func(request: Request) -> str:
        value = request.headers.get(header_name)
        if value and value.strip():
            return value.strip()
        if default is not None:
            return default
        return remote_ip_key(request)

    return key_func
