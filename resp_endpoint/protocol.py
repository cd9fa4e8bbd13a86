"""RESP (REdis Serialization Protocol) parser and encoder.

このモジュールは、サーバ応答のパース（バイト列→応答値）と
コマンドのエンコード（コマンド名＋引数→バイト列）を担当します。

応答値は6種類の不変データクラスで表現されます:
Null / Integer / SimpleString / BulkString / RedisError / Array
"""

import re
import sys
from dataclasses import dataclass
from typing import BinaryIO, Union

from .errors import ConnectionClosedError, EndpointError

CRLF = b"\r\n"

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# 符号1つ＋ASCII数字のみ（空白・アンダースコアは不可）
_NUMBER = re.compile(rb"[+-]?[0-9]+")

Arg = Union[bytes, bytearray, memoryview, str, int]


class Reply:
    """応答値の共通インターフェース.

    as_text() は SimpleString / BulkString / RedisError のみ文字列を返し、
    それ以外（Null / Integer / Array）では None を返します。
    """

    def is_error(self) -> bool:
        return isinstance(self, RedisError)

    def is_null(self) -> bool:
        return isinstance(self, Null)

    def is_array(self) -> bool:
        return isinstance(self, Array)

    def is_number(self) -> bool:
        return isinstance(self, Integer)

    def is_string(self) -> bool:
        return isinstance(self, (SimpleString, BulkString))

    def as_text(self) -> str | None:
        return None


@dataclass(frozen=True)
class Null(Reply):
    """Null値 ($-1 / *-1)"""


@dataclass(frozen=True)
class Integer(Reply):
    """Integer型を表すラッパー (:)"""
    value: int


@dataclass(frozen=True)
class SimpleString(Reply):
    """Simple String型を表すラッパー (+)"""
    value: bytes

    def as_text(self) -> str:
        return self.value.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class BulkString(Reply):
    """Bulk String型を表すラッパー ($)"""
    value: bytes

    def as_text(self) -> str:
        return self.value.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class RedisError(Reply):
    """Error型を表すラッパー (-)"""
    value: bytes

    def as_text(self) -> str:
        return self.value.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Array(Reply):
    """Array型を表すラッパー (*)"""
    items: tuple[Reply, ...]


class RESPProtocolError(EndpointError):
    """RESPプロトコルのパースエラー.

    このエラーの後、接続は復旧できないため破棄する必要があります。

    例:
        raise RESPProtocolError(f"expect [$,:,*,+,-] but: {prefix!r}")
    """

    pass


def to_bytes(arg: Arg) -> bytes:
    """コマンド引数をバイト列に変換する."""
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, (bytearray, memoryview)):
        return bytes(arg)
    if isinstance(arg, str):
        return arg.encode("utf-8")
    # boolはintのサブクラスだが引数としては受け付けない
    if isinstance(arg, int) and not isinstance(arg, bool):
        return str(arg).encode("ascii")
    raise TypeError(f"Unsupported argument type: {type(arg).__name__}")


class RESPParser:
    """RESPプロトコルのパーサ・エンコーダ.

    責務:
    - サーバ応答のパース（1回の parse() で応答1つ分）
    - コマンドのエンコード（Array of Bulk Strings 形式）

    パースは同期・ブロッキングで、ストリームから応答1つ分が揃うまで待ちます。
    ネストした配列は深さ制限なしで再帰するため、極端に深い入力では
    RecursionError になり得ます。
    """

    def encode_command(self, command: Arg, *args: Arg) -> bytes:
        """コマンドをRESP形式にエンコード.

        例: ("GET", "foo") → b'*2\\r\\n$3\\r\\nGET\\r\\n$3\\r\\nfoo\\r\\n'
        """
        parts = [to_bytes(command)]
        parts.extend(to_bytes(arg) for arg in args)

        result = bytearray(b"*%d\r\n" % len(parts))
        for part in parts:
            result += b"$%d\r\n" % len(part)
            result += part
            result += CRLF
        return bytes(result)

    def write_command(self, stream: BinaryIO, command: Arg, *args: Arg) -> None:
        """エンコードしたコマンドを出力バッファに書き込む（flushはしない）."""
        stream.write(self.encode_command(command, *args))

    def parse(self, stream: BinaryIO) -> Reply:
        """ストリームから応答を1つ読み取りパース.

        Raises:
            RESPProtocolError: 不正なRESP形式
            ConnectionClosedError: 応答の途中でストリームが終了した
        """
        prefix = self._read_byte(stream)

        if prefix == b"$":
            length = self._parse_number(self._read_line(stream), "bulk string length")
            if length == -1:
                return Null()
            return BulkString(self._read_bulk(stream, length))

        if prefix == b":":
            value = self._parse_number(self._read_line(stream), "integer")
            if not INT64_MIN <= value <= INT64_MAX:
                raise RESPProtocolError(f"Integer out of 64-bit range: {value}")
            return Integer(value)

        if prefix == b"*":
            count = self._parse_number(self._read_line(stream), "array length")
            if count == -1:
                return Null()
            if count < -1:
                raise RESPProtocolError(f"Invalid array length: {count}")
            return Array(tuple(self.parse(stream) for _ in range(count)))

        if prefix == b"+":
            return SimpleString(self._read_line(stream))

        if prefix == b"-":
            return RedisError(self._read_line(stream))

        raise RESPProtocolError(f"expect [$,:,*,+,-] but: {prefix!r}")

    def _read_byte(self, stream: BinaryIO) -> bytes:
        c = stream.read(1)
        if not c:
            raise ConnectionClosedError("Connection closed while reading reply")
        return c

    def _read_line(self, stream: BinaryIO) -> bytes:
        """CRLFまでの1行を読む（CRLFは含まない）.

        単独の \\r はデータとして扱い、読み取りを続ける。
        """
        line = bytearray()
        c = self._read_byte(stream)
        while True:
            if c != b"\r":
                line += c
                c = self._read_byte(stream)
                continue
            c = self._read_byte(stream)
            if c == b"\n":
                return bytes(line)
            line += b"\r"

    def _read_bulk(self, stream: BinaryIO, length: int) -> bytes:
        if length < 0 or length > min(INT64_MAX, sys.maxsize - 2):
            raise RESPProtocolError(f"Invalid bulk string length: {length}")

        # データ + \r\n
        data = stream.read(length + 2)
        if len(data) < length + 2:
            raise ConnectionClosedError("Connection closed while reading bulk string")
        if data[-2:] != CRLF:
            raise RESPProtocolError("Expected CRLF after bulk string")
        return data[:-2]

    def _parse_number(self, line: bytes, what: str) -> int:
        if not _NUMBER.fullmatch(line):
            raise RESPProtocolError(f"Invalid {what}: {line!r}")
        return int(line)
