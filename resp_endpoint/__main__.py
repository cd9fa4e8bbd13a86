"""resp-endpoint command line entry point.

このモジュールは、RESPエンドポイントのコマンドラインツールです。
`python -m resp_endpoint` で起動します。

    python -m resp_endpoint --url redis://:secret@127.0.0.1:6379/0 GET foo
    python -m resp_endpoint --port 6380 --pipe 512 --file commands.txt
"""

import argparse
import logging
import shlex
import sys
from typing import Any, Iterable, Optional

from .config import EndpointConfig
from .endpoint import Endpoint, SocketFactory
from .errors import EndpointError
from .metrics import MetricRegistry
from .protocol import Array, BulkString, Integer, Reply

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """ログ設定を初期化."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resp_endpoint",
        description="Send commands to a RESP server, one at a time or pipelined from a file.",
    )
    parser.add_argument("--url", help="redis://[[user]:password@]host[:port][/db]")
    parser.add_argument("--host", help="server host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="server port (default: 6379)")
    parser.add_argument("--db", type=int, help="database to select after connecting (default: 0)")
    parser.add_argument("--user", dest="username", help="ACL user name for AUTH")
    parser.add_argument("--password", help="password for AUTH")
    parser.add_argument("--pipe", type=int, help="pipeline depth for --file (default: 1)")
    parser.add_argument("--timeout", type=float, dest="connect_timeout", help="connect timeout in seconds")
    parser.add_argument("--file", help="replay commands from FILE, one per line")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("command", nargs="*", help="command and arguments to send")
    return parser


def build_config(args: argparse.Namespace, registry: MetricRegistry) -> EndpointConfig:
    """コマンドライン引数から接続設定を作る（未指定の値はURL/デフォルトを使う）."""
    options = ("host", "port", "db", "username", "password", "pipe", "connect_timeout")
    overrides: dict[str, Any] = {
        name: getattr(args, name) for name in options if getattr(args, name) is not None
    }
    overrides["registry"] = registry

    if args.url:
        return EndpointConfig.from_url(args.url, **overrides)
    return EndpointConfig(**overrides)


def format_reply(reply: Reply) -> str:
    """応答を人間が読める形式に整形する.

    例:
        Integer(1) → "(integer) 1"
        Null() → "(nil)"
        Array((BulkString(b"a"), Integer(2))) → '1) "a"\\n2) (integer) 2'
    """
    if isinstance(reply, Array):
        if not reply.items:
            return "(empty array)"

        width = len(str(len(reply.items)))
        lines = []
        for i, item in enumerate(reply.items, 1):
            prefix = f"{i:>{width}}) "
            body = format_reply(item).split("\n")
            lines.append(prefix + body[0])
            lines.extend(" " * len(prefix) + line for line in body[1:])
        return "\n".join(lines)

    if reply.is_null():
        return "(nil)"
    if isinstance(reply, Integer):
        return f"(integer) {reply.value}"
    if reply.is_error():
        return f"(error) {reply.as_text()}"
    if isinstance(reply, BulkString):
        return f'"{reply.as_text()}"'
    return reply.as_text() or ""


def replay(endpoint: Endpoint, lines: Iterable[str]) -> int:
    """1行1コマンドのテキストをパイプラインで送信する.

    空行と#で始まる行は無視します。SELECT n はselect()で送信し、
    エンドポイントの選択中データベースを更新します。

    Returns:
        送信したコマンド数
    """
    count = 0
    for lineno, line in enumerate(lines, 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        try:
            parts = shlex.split(line)
        except ValueError as e:
            raise ValueError(f"line {lineno}: {e}") from None

        if parts[0].lower() == "select" and len(parts) == 2:
            try:
                db = int(parts[1])
            except ValueError:
                raise ValueError(f"line {lineno}: invalid database number {parts[1]!r}") from None
            endpoint.select(False, db)
        else:
            endpoint.batch(False, *parts)
        count += 1

    endpoint.flush()
    return count


def main(argv: Optional[list[str]] = None, socket_factory: Optional[SocketFactory] = None) -> int:
    """メインエントリポイント."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if bool(args.command) == bool(args.file):
        parser.error("give either a COMMAND or --file")

    registry = MetricRegistry()
    try:
        config = build_config(args, registry)
    except ValueError as e:
        parser.error(str(e))

    try:
        with Endpoint(config, socket_factory=socket_factory) as endpoint:
            if args.file:
                with open(args.file, encoding="utf-8") as f:
                    count = replay(endpoint, f)
                logger.info(
                    f"Replayed {count} commands: "
                    f"success={registry.total('endpoint_suc_')} error={registry.total('endpoint_err_')}"
                )
            else:
                print(format_reply(endpoint.send(*args.command)))
    except (EndpointError, OSError, ValueError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
