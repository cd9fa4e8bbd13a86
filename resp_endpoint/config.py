"""Connection settings for a RESP endpoint."""

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import unquote, urlsplit

if TYPE_CHECKING:
    from .metrics import MetricRegistry

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6379


@dataclass(frozen=True)
class EndpointConfig:
    """エンドポイントの接続設定（不変スナップショット）.

    Attributes:
        host: 接続先ホスト
        port: 接続先ポート
        db: 接続時にSELECTするデータベース番号
        pipe: パイプラインの深さ（この数だけbatchすると自動でflush）
        username: AUTHのユーザ名（ACL、Noneの場合はパスワードのみ）
        password: AUTHのパスワード（Noneの場合はPINGを送る）
        connect_timeout: 接続タイムアウト秒
        read_timeout: 読み書きのタイムアウト秒（Noneの場合は無制限にブロック）
        registry: メトリクスの登録先（Noneの場合は計測しない）
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db: int = 0
    pipe: int = 1
    username: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: float = 30.0
    read_timeout: Optional[float] = None
    registry: Optional["MetricRegistry"] = None

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.db < 0:
            raise ValueError(f"db must be >= 0: {self.db}")
        if self.pipe < 1:
            raise ValueError(f"pipe must be >= 1: {self.pipe}")

    def with_db(self, db: int) -> "EndpointConfig":
        return replace(self, db=db)

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> "EndpointConfig":
        """redis://[[user]:password@]host[:port][/db] 形式のURLから設定を作る.

        overridesに指定した値はURLの値より優先されます。
        """
        parts = urlsplit(url)
        if parts.scheme != "redis":
            raise ValueError(f"Unsupported URL scheme: {parts.scheme!r}")

        values: dict[str, Any] = {
            "host": parts.hostname or DEFAULT_HOST,
            "port": parts.port or DEFAULT_PORT,
        }
        if parts.username:
            values["username"] = unquote(parts.username)
        if parts.password is not None:
            values["password"] = unquote(parts.password)

        path = parts.path.strip("/")
        if path:
            try:
                values["db"] = int(path)
            except ValueError:
                raise ValueError(f"Invalid database number in URL: {path!r}") from None

        values.update(overrides)
        return cls(**values)
