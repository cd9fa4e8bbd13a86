"""Shared fixtures: an in-memory socket that replays scripted server replies."""

import io
from typing import Callable

import pytest

from resp_endpoint.config import EndpointConfig
from resp_endpoint.endpoint import Endpoint

# PING → +PONG, SELECT 0 → +OK
HANDSHAKE_REPLIES = b"+PONG\r\n+OK\r\n"


class CaptureWriter:
    """出力ストリームのモック.

    write()されたデータはbufferに溜まり、flush()でsentに移ります。
    """

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.sent = bytearray()
        self.closed = False

    def write(self, data: bytes) -> int:
        self.buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        self.sent.extend(self.buffer)
        self.buffer.clear()

    def close(self) -> None:
        self.flush()
        self.closed = True


class FakeSocket:
    """テスト用のモックSocket.

    サーバ応答は事前にバイト列で与え、makefile("rb")で読み出されます。
    """

    def __init__(
        self,
        replies: bytes = b"",
        sockname: tuple[str, int] = ("127.0.0.1", 50000),
        peername: tuple[str, int] = ("127.0.0.1", 6379),
    ) -> None:
        self.reader = io.BytesIO(replies)
        self.writer = CaptureWriter()
        self.sockname = sockname
        self.peername = peername
        self.timeout: float | None = None
        self.closed = False

    def settimeout(self, timeout: float | None) -> None:
        self.timeout = timeout

    def makefile(self, mode: str, buffering: int | None = None) -> io.BytesIO | CaptureWriter:
        return self.reader if mode == "rb" else self.writer

    def getsockname(self) -> tuple[str, int]:
        return self.sockname

    def getpeername(self) -> tuple[str, int]:
        return self.peername

    def close(self) -> None:
        self.closed = True

    def feed(self, data: bytes) -> None:
        """未読位置を変えずに応答を追加する."""
        pos = self.reader.tell()
        self.reader.seek(0, io.SEEK_END)
        self.reader.write(data)
        self.reader.seek(pos)


def factory_for(*sockets: FakeSocket) -> Callable[[str, int, float], FakeSocket]:
    """呼ばれるたびに次のFakeSocketを返すソケットファクトリ."""
    remaining = list(sockets)

    def factory(host: str, port: int, timeout: float) -> FakeSocket:
        return remaining.pop(0)

    return factory


@pytest.fixture
def connect() -> Callable[..., tuple[Endpoint, FakeSocket]]:
    """ハンドシェイク済みのEndpointとFakeSocketのペアを作る.

    ハンドシェイクで送信したデータはクリアされた状態で返します。
    """

    def _connect(replies: bytes = b"", **config: object) -> tuple[Endpoint, FakeSocket]:
        sock = FakeSocket(HANDSHAKE_REPLIES + replies)
        endpoint = Endpoint(EndpointConfig(**config), socket_factory=factory_for(sock))
        sock.writer.sent.clear()
        return endpoint, sock

    return _connect
