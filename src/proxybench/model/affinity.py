from __future__ import annotations

from dataclasses import dataclass

from proxybench.config import BenchConfig


@dataclass(frozen=True)
class CpuPlan:
    """Disjoint, contiguous logical CPU ranges: proxy first, then servers, then clients."""

    proxy: range
    servers: range
    clients: range

    @classmethod
    def from_config(cls, cfg: BenchConfig) -> "CpuPlan":
        p = cfg.proxy_thread_count
        s = cfg.server_count
        c = cfg.client_count
        return cls(
            proxy=range(0, p),
            servers=range(p, p + s),
            clients=range(p + s, p + s + c),
        )

    @property
    def total(self) -> int:
        return len(self.proxy) + len(self.servers) + len(self.clients)

    def server_cpu(self, index: int) -> int:
        return self.servers[index - 1]

    def client_cpu(self, index: int) -> int:
        return self.clients[index - 1]


def format_cpu_range(cpus: range) -> str:
    if len(cpus) == 0:
        raise ValueError("empty cpu range")
    if len(cpus) == 1:
        return str(cpus[0])
    return f"{cpus[0]}-{cpus[-1]}"
