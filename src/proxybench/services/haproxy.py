from __future__ import annotations

from pathlib import Path
from typing import Optional

from proxybench.config import BenchConfig
from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Role, Topology
from proxybench.runtime.services import ServiceSpec
from proxybench.services.certs import CertificateBundle
from proxybench.services.endpoints import BACKEND_PORT, PROXY_HTTP_PORT, PROXY_HTTPS_PORT

DEFAULTS_SECTION = """defaults
    mode                    http
    timeout http-request    10s
    timeout queue           1m
    timeout connect         10s
    timeout client          1m
    timeout server          1m
    timeout http-keep-alive 10s
    timeout check           10s
"""


def haproxy_config(
    cfg: BenchConfig,
    topology: Topology,
    *,
    pem_path: Path,
    pid_path: Path,
    cpu_plan: Optional[CpuPlan] = None,
) -> str:
    g = ["global", "    daemon", f"    pidfile {pid_path}"]
    if cfg.use_hardware_offload:
        g += ["    ssl-engine qatengine algo ALL", "    ssl-mode-async"]
    g.append(f"    ssl-default-bind-options ssl-min-ver {cfg.tls_version} ssl-max-ver {cfg.tls_version}")
    if cfg.tls_cipher:
        # TLS 1.3 suites are configured separately from the <=1.2 cipher list
        key = "ssl-default-bind-ciphersuites" if cfg.tls_version == "TLSv1.3" else "ssl-default-bind-ciphers"
        g.append(f"    {key} {cfg.tls_cipher}")
    g.append(f"    nbthread {cfg.proxy_thread_count}")
    if cpu_plan is not None:
        first, last = cpu_plan.proxy[0], cpu_plan.proxy[-1]
        g.append(f"    cpu-map auto:1/1-{cfg.proxy_thread_count} {first}-{last}")
    g.append("    maxconn 2000000")

    frontend = ["frontend main"]
    for link in topology.client_links:
        addr = link.proxy_end.address
        frontend.append(f"    bind {addr}:{PROXY_HTTP_PORT}")
        frontend.append(f"    bind {addr}:{PROXY_HTTPS_PORT} ssl crt {pem_path}")
    frontend.append("    default_backend             app")

    backend = ["backend app", "    balance     roundrobin"]
    for link in topology.server_links:
        backend.append(f"    server  app{link.index} {link.peer_end.address}:{BACKEND_PORT}")

    return "\n".join(g) + "\n\n" + DEFAULTS_SECTION + "\n" + "\n".join(frontend) + "\n\n" + "\n".join(backend) + "\n"


def proxy_service(
    cfg: BenchConfig,
    topology: Topology,
    workdir: Path,
    certs: CertificateBundle,
    cpu_plan: Optional[CpuPlan] = None,
) -> ServiceSpec:
    workdir = Path(workdir)
    conf_path = workdir / "haproxy.cfg"
    pid_path = workdir / "haproxy.pid"
    conf_path.write_text(
        haproxy_config(cfg, topology, pem_path=certs.pem, pid_path=pid_path, cpu_plan=cpu_plan),
        encoding="utf-8",
    )
    return ServiceSpec(
        name="haproxy",
        role=Role.PROXY,
        index=0,
        argv=("haproxy", "-f", str(conf_path)),
        pid_file=str(pid_path),
    )
