from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional

from proxybench.config import BenchConfig
from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Topology
from proxybench.runtime.services import ServiceSpec
from proxybench.services import haproxy, nginx
from proxybench.services.certs import CertificateBundle

ProxyRenderer = Callable[[BenchConfig, Topology, Path, CertificateBundle, Optional[CpuPlan]], ServiceSpec]

_REGISTRY: Dict[str, ProxyRenderer] = {
    "haproxy": haproxy.proxy_service,
    "nginx": nginx.proxy_service,
}


def load_proxy(name: str) -> ProxyRenderer:
    if name not in _REGISTRY:
        raise KeyError(f"Unknown proxy: {name}. Available: {sorted(_REGISTRY.keys())}")
    return _REGISTRY[name]


def available_proxies() -> list[str]:
    return sorted(_REGISTRY.keys())
