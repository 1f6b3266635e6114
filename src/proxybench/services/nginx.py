from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from proxybench.config import BenchConfig
from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Role, Topology
from proxybench.runtime.services import ServiceSpec
from proxybench.services.certs import CertificateBundle
from proxybench.services.endpoints import BACKEND_PORT, DOCUMENT, PROXY_HTTP_PORT, PROXY_HTTPS_PORT

QAT_MODULE = "/usr/modules/ngx_ssl_engine_qat_module.so"
# TLS 1.3 suites go through ssl_conf_command; ssl_ciphers still needs a <=1.2 list
TLS12_FALLBACK_CIPHER = "ECDHE-RSA-AES256-GCM-SHA384"


def cpu_affinity_masks(cpus: range) -> List[str]:
    width = cpus[-1] + 1
    return [format(1 << cpu, f"0{width}b") for cpu in cpus]


def nginx_config(
    cfg: BenchConfig,
    topology: Topology,
    *,
    certs: CertificateBundle,
    pid_path: Path,
    error_log: Path,
    cpu_plan: Optional[CpuPlan] = None,
) -> str:
    out: List[str] = [
        f"worker_processes {cfg.proxy_thread_count};",
        f"pid {pid_path};",
        f"error_log {error_log};",
    ]
    if cpu_plan is not None:
        out.append(f"worker_cpu_affinity {' '.join(cpu_affinity_masks(cpu_plan.proxy))};")
    if cfg.use_hardware_offload:
        out += [
            f"load_module {QAT_MODULE};",
            "ssl_engine {",
            "    use_engine qatengine;",
            "    default_algorithms ALL;",
            "}",
        ]
    out += [
        "",
        "events {",
        "    worker_connections 2000000;",
        "}",
        "",
        "http {",
        "    access_log off;",
        "",
        "    upstream backend {",
    ]
    out += [f"        server {link.peer_end.address}:{BACKEND_PORT};" for link in topology.server_links]
    out += ["    }", "", "    server {"]
    out += [f"        listen {link.proxy_end.address}:{PROXY_HTTP_PORT};" for link in topology.client_links]
    out += [
        "",
        f"        location /{DOCUMENT} {{",
        "            proxy_pass http://backend;",
        "        }",
        "    }",
        "",
        "    server {",
    ]
    out += [f"        listen {link.proxy_end.address}:{PROXY_HTTPS_PORT} ssl;" for link in topology.client_links]
    out.append("")
    if cfg.use_hardware_offload:
        out.append("        ssl_asynch on;")
    out.append(f"        ssl_protocols {cfg.tls_version};")
    if cfg.tls_cipher:
        if cfg.tls_version == "TLSv1.3":
            out.append(f"        ssl_ciphers {TLS12_FALLBACK_CIPHER};")
            out.append(f"        ssl_conf_command Ciphersuites {cfg.tls_cipher};")
        else:
            out.append(f"        ssl_ciphers {cfg.tls_cipher};")
    out += [
        f"        ssl_certificate {certs.crt};",
        f"        ssl_certificate_key {certs.key};",
        "",
        f"        location /{DOCUMENT} {{",
        "            proxy_pass http://backend;",
        "        }",
        "    }",
        "}",
    ]
    return "\n".join(out) + "\n"


def proxy_service(
    cfg: BenchConfig,
    topology: Topology,
    workdir: Path,
    certs: CertificateBundle,
    cpu_plan: Optional[CpuPlan] = None,
) -> ServiceSpec:
    workdir = Path(workdir)
    conf_path = workdir / "nginx.conf"
    pid_path = workdir / "nginx.pid"
    conf_path.write_text(
        nginx_config(
            cfg,
            topology,
            certs=certs,
            pid_path=pid_path,
            error_log=workdir / "nginx-error.log",
            cpu_plan=cpu_plan,
        ),
        encoding="utf-8",
    )
    return ServiceSpec(
        name="nginx",
        role=Role.PROXY,
        index=0,
        argv=("nginx", "-c", str(conf_path)),
        pid_file=str(pid_path),
    )
