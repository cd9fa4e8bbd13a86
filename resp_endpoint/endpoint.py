"""A single pipelined connection to a RESP server.

このモジュールは、接続のライフサイクル（接続→ハンドシェイク→利用可能→クローズ）と
パイプライン制御（batch / flush）を担当します。

"""

import logging
import socket
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional

from .config import EndpointConfig
from .errors import EndpointUnusableError, HandshakeError, TransportError
from .metrics import EndpointMetrics, NullEndpointMetrics, RegistryEndpointMetrics
from .protocol import Arg, RESPParser, Reply

logger = logging.getLogger(__name__)

BUFFER_SIZE = 64 * 1024

AUTH = b"auth"
PING = b"ping"
SELECT = b"select"

SocketFactory = Callable[[str, int, float], socket.socket]


def create_socket(host: str, port: int, timeout: float) -> socket.socket:
    """デフォルトのソケットファクトリ."""
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return sock


def socket_address(sock: socket.socket) -> str:
    """ローカル/リモートアドレスの組からエンドポイント識別子を作る.

    例: "[la=127.0.0.1:52100, ra=127.0.0.1:6379]"
    """

    def fmt(getter: Callable[[], tuple]) -> str:
        try:
            addr = getter()
        except OSError:
            return "N/A"
        if not addr:
            return "N/A"
        return f"{addr[0]}:{addr[1]}"

    return f"[la={fmt(sock.getsockname)}, ra={fmt(sock.getpeername)}]"


@dataclass
class _PipelineState:
    # 前回のflush以降に書き込んだが応答を読んでいないコマンド数
    count: int = 0
    broken: bool = False


class Endpoint:
    """RESPサーバへの1本の接続.

    責務:
    - 接続とハンドシェイク（AUTH または PING、続けて SELECT）
    - 単発リクエスト（send）とパイプラインリクエスト（batch / flush）
    - 送信数と受信数を常に一致させる

    通信障害・プロトコル違反が起きたエンドポイントは使用不能になり、
    以降の呼び出しは EndpointUnusableError になります。復旧は
    Endpoint.reconnect() で新しいインスタンスを作って行います。

    スレッドセーフではありません。
    """

    def __init__(self, config: EndpointConfig, socket_factory: Optional[SocketFactory] = None) -> None:
        """接続してハンドシェイクを行う.

        Args:
            config: 接続設定
            socket_factory: (host, port, timeout) からソケットを作る関数

        Raises:
            TransportError: 接続に失敗した
            HandshakeError: AUTH / PING / SELECT がエラー応答を返した
        """
        self.config = config
        self._socket_factory = socket_factory or create_socket
        self._parser = RESPParser()
        self._state = _PipelineState()
        self._metrics: EndpointMetrics = NullEndpointMetrics()
        self._db = config.db
        self._closed = False
        self._sock: Optional[socket.socket] = None
        self._in: Optional[BinaryIO] = None
        self._out: Optional[BinaryIO] = None
        self.address = "[la=N/A, ra=N/A]"

        try:
            self._sock = self._socket_factory(config.host, config.port, config.connect_timeout)
            self._sock.settimeout(config.read_timeout)
            self._in = self._sock.makefile("rb", buffering=BUFFER_SIZE)
            self._out = self._sock.makefile("wb", buffering=BUFFER_SIZE)
            self.address = socket_address(self._sock)
        except OSError as e:
            self.close()
            raise TransportError(f"Failed to connect to {config.host}:{config.port}: {e}") from e

        try:
            self._handshake()
        except Exception:
            self.close()
            raise

        if config.registry is not None:
            self._metrics = RegistryEndpointMetrics(config.registry, self.address)

        logger.info(f"Connected to {config.host}:{config.port} db={config.db} {self.address}")

    @property
    def db(self) -> int:
        """現在SELECTされているデータベース番号."""
        return self._db

    @property
    def pending(self) -> int:
        """flush待ちのコマンド数."""
        return self._state.count

    @property
    def usable(self) -> bool:
        return not (self._closed or self._state.broken)

    def send(self, command: Arg, *args: Arg) -> Reply:
        """コマンドを送信し、応答を1つ読んで返す.

        パイプラインに未処理のコマンドがある場合は先にflushします。
        """
        self._check_usable()
        if self._state.count > 0:
            self.flush()

        data = self._parser.encode_command(command, *args)
        with self._fatal_on_failure():
            self._out.write(data)
            self._out.flush()
            return self._parser.parse(self._in)

    def batch(self, force: bool, command: Arg, *args: Arg) -> list[Reply]:
        """コマンドをパイプラインに積む.

        Args:
            force: Trueなら出力バッファを即座に送信する（応答は読まない）
            command: コマンド名
            args: 引数

        Returns:
            パイプラインの深さに達して自動flushした場合はその応答、それ以外は空リスト
        """
        self._check_usable()
        data = self._parser.encode_command(command, *args)
        with self._fatal_on_failure():
            self._out.write(data)
            if force:
                self._out.flush()

        self._state.count += 1
        if self._state.count == self.config.pipe:
            return self.flush()
        return []

    def select(self, force: bool, db: int) -> list[Reply]:
        """SELECTをパイプラインに積み、選択中のデータベースを更新する."""
        replies = self.batch(force, SELECT, db)
        self._db = db
        return replies

    def flush(self) -> list[Reply]:
        """送信済みコマンドの応答を送信順にすべて読み取る.

        エラー応答はログに出力してエラーとして数え、それ以外は成功として数えます。

        Returns:
            読み取った応答のリスト（送信順）
        """
        self._check_usable()
        if self._state.count == 0:
            return []

        replies = []
        with self._fatal_on_failure():
            self._out.flush()
            for _ in range(self._state.count):
                reply = self._parser.parse(self._in)
                if reply.is_error():
                    logger.error(reply.as_text())
                    self._metrics.error()
                else:
                    self._metrics.success()
                replies.append(reply)

        logger.debug(f"Flushed {len(replies)} replies from {self.address}")
        self._state.count = 0
        return replies

    def close(self) -> None:
        """入力ストリーム・出力ストリーム・ソケットを個別に閉じる."""
        if self._closed:
            return
        self._closed = True

        for resource in (self._in, self._out, self._sock):
            if resource is None:
                continue
            # 個々のclose失敗は無視する
            with suppress(Exception):
                resource.close()

        logger.info(f"Connection closed: {self.address}")

    def __enter__(self) -> "Endpoint":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Endpoint(host={self.config.host!r}, port={self.config.port}, "
            f"db={self._db}, pipe={self.config.pipe}, pending={self._state.count})"
        )

    @staticmethod
    def close_quietly(endpoint: Optional["Endpoint"]) -> None:
        if endpoint is None:
            return
        with suppress(Exception):
            endpoint.close()

    @classmethod
    def reconnect(cls, endpoint: "Endpoint") -> "Endpoint":
        """既存の接続を閉じ、同じ設定（最後にSELECTしたdb）で新しく接続する.

        未flushのパイプラインは引き継がれません。
        """
        cls.close_quietly(endpoint)
        logger.info(f"Reconnecting to {endpoint.config.host}:{endpoint.config.port} db={endpoint.db}")
        return cls(endpoint.config.with_db(endpoint.db), socket_factory=endpoint._socket_factory)

    def _handshake(self) -> None:
        conf = self.config
        if conf.password is not None:
            if conf.username is not None:
                self._expect_ok(AUTH, conf.username, conf.password)
            else:
                self._expect_ok(AUTH, conf.password)
        else:
            self._expect_ok(PING)
        self._expect_ok(SELECT, conf.db)

    def _expect_ok(self, command: bytes, *args: Arg) -> None:
        reply = self.send(command, *args)
        if reply.is_error():
            raise HandshakeError(reply)

    def _check_usable(self) -> None:
        if self._closed:
            raise EndpointUnusableError(f"Endpoint is closed: {self.address}")
        if self._state.broken:
            raise EndpointUnusableError(f"Endpoint is unusable after a fatal error: {self.address}")

    @contextmanager
    def _fatal_on_failure(self) -> Iterator[None]:
        """通信障害・プロトコル違反でエンドポイントを使用不能にする."""
        try:
            yield
        except OSError as e:
            self._state.broken = True
            raise TransportError(f"I/O error on {self.address}: {e}") from e
        except BaseException:
            # RecursionError等でもストリームは読みかけのまま
            self._state.broken = True
            raise
