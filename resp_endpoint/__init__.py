"""Pipelined RESP client endpoint."""

from .config import EndpointConfig
from .endpoint import Endpoint, create_socket
from .errors import (
    ConnectionClosedError,
    EndpointError,
    EndpointUnusableError,
    HandshakeError,
    TransportError,
)
from .metrics import MetricRegistry
from .protocol import (
    Array,
    BulkString,
    Integer,
    Null,
    RedisError,
    Reply,
    RESPParser,
    RESPProtocolError,
    SimpleString,
)

__all__ = [
    "Array",
    "BulkString",
    "ConnectionClosedError",
    "Endpoint",
    "EndpointConfig",
    "EndpointError",
    "EndpointUnusableError",
    "HandshakeError",
    "Integer",
    "MetricRegistry",
    "Null",
    "RESPParser",
    "RESPProtocolError",
    "RedisError",
    "Reply",
    "SimpleString",
    "TransportError",
    "create_socket",
]
