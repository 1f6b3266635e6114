from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from proxybench.errors import ConfigError

SUPPORTED_PROXIES: tuple[str, ...] = ("haproxy", "nginx")
SUPPORTED_TLS_VERSIONS: tuple[str, ...] = ("TLSv1.2", "TLSv1.3")
MISSING_WORKER_POLICIES: tuple[str, ...] = ("exclude", "zero", "fail")
MAX_PEERS_PER_ROLE = 254
ENV_PREFIX = "PROXYBENCH_"

DEFAULTS: Dict[str, Any] = {
    "proxy": "haproxy",
    "use_hardware_offload": False,
    "use_cpu_pinning": True,
    "num_trials": 10,
    "trial_duration_s": 60,
    "tls_version": "TLSv1.2",
    "tls_cipher": "ECDHE-RSA-AES256-GCM-SHA384",
    "server_count": 8,
    "client_count": 16,
    "offered_requests_per_second": 1024,
    "proxy_thread_count": 4,
    "netns_prefix": "pb-",
    "workdir": ".",
    "network": {
        "latency_ms": 50,
        "jitter_ms": 4,
        "loss_percent": 0.1,
        "queue_limit": None,
        "queue_limit_factor": 2,
    },
    "bench": {
        "missing_worker_policy": "exclude",
        "drain_s": None,
    },
    "services": {
        "ready_grace_s": 1.0,
        "offload_grace_s": 30.0,
        "stop_timeout_s": 5.0,
    },
}


@dataclass(frozen=True)
class NetworkConfig:
    latency_ms: float | None = 50.0
    jitter_ms: float = 4.0
    loss_percent: float = 0.1
    queue_limit: int | None = None
    queue_limit_factor: int = 2

    @property
    def enabled(self) -> bool:
        return self.latency_ms is not None


@dataclass(frozen=True)
class BenchSettings:
    missing_worker_policy: str = "exclude"
    drain_s: float | None = None


@dataclass(frozen=True)
class ServicesConfig:
    ready_grace_s: float = 1.0
    offload_grace_s: float = 30.0
    stop_timeout_s: float = 5.0


@dataclass(frozen=True)
class BenchConfig:
    proxy: str = "haproxy"
    use_hardware_offload: bool = False
    use_cpu_pinning: bool = True
    num_trials: int = 10
    trial_duration_s: int = 60
    tls_version: str = "TLSv1.2"
    tls_cipher: str = "ECDHE-RSA-AES256-GCM-SHA384"
    server_count: int = 8
    client_count: int = 16
    offered_requests_per_second: int = 1024
    proxy_thread_count: int = 4
    netns_prefix: str = "pb-"
    workdir: str = "."
    network: NetworkConfig = field(default_factory=NetworkConfig)
    bench: BenchSettings = field(default_factory=BenchSettings)
    services: ServicesConfig = field(default_factory=ServicesConfig)

    @property
    def tls_version_number(self) -> str:
        # "TLSv1.2" -> "1.2"
        return self.tls_version[len("TLSv") :]

    @property
    def queue_limit(self) -> int:
        if self.network.queue_limit is not None:
            return self.network.queue_limit
        return self.offered_requests_per_second * self.network.queue_limit_factor

    @property
    def drain_seconds(self) -> float:
        if self.bench.drain_s is not None:
            return self.bench.drain_s
        return float(self.trial_duration_s)

    @property
    def required_cpus(self) -> int:
        return self.proxy_thread_count + self.server_count + self.client_count

    @property
    def workdir_path(self) -> Path:
        return Path(self.workdir).expanduser().resolve()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, Mapping):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_yaml(path: str | Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping YAML: {path}")
    return data


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Collect ``PROXYBENCH_<KEY>`` values for top-level scalar keys."""
    out: Dict[str, Any] = {}
    for key, default in DEFAULTS.items():
        if isinstance(default, dict):
            continue
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        # YAML scalars give us ints, floats and booleans for free
        try:
            out[key] = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid value for {ENV_PREFIX}{key.upper()}: {exc}") from exc
    return out


def load_bench_config(
    path: str | Path | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> BenchConfig:
    raw: Dict[str, Any] = dict(DEFAULTS)
    if path is not None:
        cfg_path = Path(path).expanduser()
        if not cfg_path.is_file():
            raise ConfigError(f"config file not found: {cfg_path}")
        raw = deep_merge(raw, load_yaml(cfg_path))
    raw = deep_merge(raw, env_overrides(os.environ if environ is None else environ))
    if overrides:
        raw = deep_merge(raw, overrides)
    return build_bench_config(raw)


def build_bench_config(raw: Mapping[str, Any]) -> BenchConfig:
    unknown = sorted(set(raw) - set(DEFAULTS))
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
    merged = deep_merge(DEFAULTS, raw)
    network_raw = _section(merged, "network")
    bench_raw = _section(merged, "bench")
    services_raw = _section(merged, "services")

    try:
        network = NetworkConfig(
            latency_ms=_optional_float(network_raw.get("latency_ms")),
            jitter_ms=float(network_raw.get("jitter_ms") or 0),
            loss_percent=float(network_raw.get("loss_percent") or 0),
            queue_limit=_optional_int(network_raw.get("queue_limit")),
            queue_limit_factor=int(network_raw.get("queue_limit_factor", 2)),
        )
        bench = BenchSettings(
            missing_worker_policy=str(bench_raw.get("missing_worker_policy", "exclude")).strip().lower(),
            drain_s=_optional_float(bench_raw.get("drain_s")),
        )
        services = ServicesConfig(
            ready_grace_s=float(services_raw.get("ready_grace_s", 1.0)),
            offload_grace_s=float(services_raw.get("offload_grace_s", 30.0)),
            stop_timeout_s=float(services_raw.get("stop_timeout_s", 5.0)),
        )
        cfg = BenchConfig(
            proxy=str(merged["proxy"]).strip().lower(),
            use_hardware_offload=_as_bool(merged["use_hardware_offload"]),
            use_cpu_pinning=_as_bool(merged["use_cpu_pinning"]),
            num_trials=int(merged["num_trials"]),
            trial_duration_s=int(merged["trial_duration_s"]),
            tls_version=str(merged["tls_version"]).strip(),
            tls_cipher=str(merged["tls_cipher"] or "").strip(),
            server_count=int(merged["server_count"]),
            client_count=int(merged["client_count"]),
            offered_requests_per_second=int(merged["offered_requests_per_second"]),
            proxy_thread_count=int(merged["proxy_thread_count"]),
            netns_prefix=str(merged["netns_prefix"]).strip(),
            workdir=str(merged["workdir"]),
            network=network,
            bench=bench,
            services=services,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid config value: {exc}") from exc

    validate_bench_config(cfg)
    return cfg


def validate_bench_config(cfg: BenchConfig) -> None:
    if cfg.proxy not in SUPPORTED_PROXIES:
        raise ConfigError(f"proxy must be one of: {', '.join(SUPPORTED_PROXIES)}")
    if cfg.tls_version not in SUPPORTED_TLS_VERSIONS:
        raise ConfigError(f"tls_version must be one of: {', '.join(SUPPORTED_TLS_VERSIONS)}")
    for name in ("server_count", "client_count"):
        value = getattr(cfg, name)
        if value < 1 or value > MAX_PEERS_PER_ROLE:
            raise ConfigError(f"{name} must be 1..{MAX_PEERS_PER_ROLE}")
    if cfg.num_trials < 1:
        raise ConfigError("num_trials must be >= 1")
    if cfg.trial_duration_s < 1:
        raise ConfigError("trial_duration_s must be >= 1")
    if cfg.offered_requests_per_second < 1:
        raise ConfigError("offered_requests_per_second must be >= 1")
    if cfg.proxy_thread_count < 1:
        raise ConfigError("proxy_thread_count must be >= 1")
    if not cfg.netns_prefix:
        raise ConfigError("netns_prefix must be non-empty")

    net = cfg.network
    if net.latency_ms is not None and net.latency_ms < 0:
        raise ConfigError("network.latency_ms must be >= 0")
    if net.jitter_ms < 0:
        raise ConfigError("network.jitter_ms must be >= 0")
    if not 0.0 <= net.loss_percent <= 100.0:
        raise ConfigError("network.loss_percent must be 0..100")
    if net.queue_limit is not None and net.queue_limit < 1:
        raise ConfigError("network.queue_limit must be >= 1")
    if net.queue_limit_factor < 1:
        raise ConfigError("network.queue_limit_factor must be >= 1")

    if cfg.bench.missing_worker_policy not in MISSING_WORKER_POLICIES:
        raise ConfigError(
            f"bench.missing_worker_policy must be one of: {', '.join(MISSING_WORKER_POLICIES)}"
        )
    if cfg.bench.drain_s is not None and cfg.bench.drain_s < 0:
        raise ConfigError("bench.drain_s must be >= 0")
    for name in ("ready_grace_s", "offload_grace_s", "stop_timeout_s"):
        if getattr(cfg.services, name) < 0:
            raise ConfigError(f"services.{name} must be >= 0")


def _section(raw: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{key} must be a mapping")
    unknown = sorted(set(value) - set(DEFAULTS[key]))
    if unknown:
        raise ConfigError(f"unknown {key} keys: {', '.join(unknown)}")
    return dict(value)


def _optional_float(value: Any) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return float(value)


def _optional_int(value: Any) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return int(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
