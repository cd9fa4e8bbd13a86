"""Failure types raised by the RESP endpoint.

プロトコル違反・通信障害・ハンドシェイク拒否はすべて致命的な失敗として
例外で通知します。サーバが返すエラー応答（-ERR ...）は例外ではなく
``RedisError`` 値として呼び出し側に返されます。
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol import RedisError


class EndpointError(Exception):
    """エンドポイントで発生する致命的エラーの基底クラス."""


class TransportError(EndpointError):
    """接続・読み書き・タイムアウトなど通信レベルの障害.

    元の ``OSError`` は ``__cause__`` に保持されます。
    """


class ConnectionClosedError(TransportError):
    """応答の途中でサーバが接続を閉じた."""


class HandshakeError(EndpointError):
    """AUTH / PING / SELECT がエラー応答で拒否された.

    例:
        raise HandshakeError(reply)  # str(e) はサーバのエラーメッセージ
    """

    def __init__(self, reply: "RedisError") -> None:
        super().__init__(reply.as_text())
        self.reply = reply


class EndpointUnusableError(EndpointError):
    """致命的エラーの後にエンドポイントが再利用された."""
