"""Success/error counters for RESP endpoints.

エンドポイントはflush時にドレインした応答ごとに成功/エラーを1回だけ数えます。
計測は観測のみで、制御フローには影響しません。
"""

import threading
from typing import Protocol


def metric_name(name: str, **tags: str) -> str:
    """タグ付きのメトリクス名を作る.

    例: metric_name("endpoint_suc_main", mtype="suc") → "endpoint_suc_main{mtype=suc}"
    """
    if not tags:
        return name
    keyed = ",".join(f"{key}={value}" for key, value in tags.items())
    return f"{name}{{{keyed}}}"


class Counter:
    """単調増加するカウンタ（スレッドセーフ）."""

    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()

    def inc(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError("Counter can only increase")
        with self._lock:
            self._count += n

    @property
    def count(self) -> int:
        return self._count


class MetricRegistry:
    """名前付きカウンタのレジストリ.

    複数のワーカースレッドのエンドポイントから共有されることを想定しています。
    """

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str) -> Counter:
        """カウンタを取得（存在しなければ作成）."""
        with self._lock:
            counter = self._counters.get(name)
            if counter is None:
                counter = self._counters[name] = Counter()
            return counter

    def counters(self) -> dict[str, int]:
        """現在の値のスナップショットを返す."""
        with self._lock:
            return {name: counter.count for name, counter in self._counters.items()}

    def total(self, prefix: str) -> int:
        """名前がprefixで始まるカウンタの合計."""
        return sum(count for name, count in self.counters().items() if name.startswith(prefix))


class EndpointMetrics(Protocol):
    def success(self) -> None: ...

    def error(self) -> None: ...


class NullEndpointMetrics:
    """何も計測しないデフォルト実装."""

    def success(self) -> None:
        pass

    def error(self) -> None:
        pass


class RegistryEndpointMetrics:
    """エンドポイント識別子ごとの成功/エラーカウンタ.

    カウンタ名は呼び出し元スレッド名とアドレスの組から作られます:
        endpoint_suc_<thread>{address=<la/ra>,mtype=suc}
        endpoint_err_<thread>{address=<la/ra>,mtype=err}
    """

    def __init__(self, registry: MetricRegistry, address: str, context: str | None = None) -> None:
        if context is None:
            context = threading.current_thread().name
        self.success_counter = registry.counter(
            metric_name(f"endpoint_suc_{context}", address=address, mtype="suc")
        )
        self.error_counter = registry.counter(
            metric_name(f"endpoint_err_{context}", address=address, mtype="err")
        )

    def success(self) -> None:
        self.success_counter.inc()

    def error(self) -> None:
        self.error_counter.inc()
