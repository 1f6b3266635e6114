from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Role, Topology
from proxybench.runtime.services import ServiceSpec
from proxybench.services.endpoints import BACKEND_PORT, DOCUMENT, DOCUMENT_BODY

DEFAULT_MODULES_DIR = "/usr/lib64/httpd/modules"
MODULES = (
    ("mpm_event_module", "mod_mpm_event.so"),
    ("unixd_module", "mod_unixd.so"),
    ("authz_core_module", "mod_authz_core.so"),
)


def write_document(docroot: Path) -> Path:
    path = Path(docroot) / DOCUMENT
    path.write_text(DOCUMENT_BODY, encoding="utf-8")
    return path


def httpd_config(
    *,
    server_name: str,
    docroot: Path,
    log_path: Path,
    pid_path: Path,
    modules_dir: str = DEFAULT_MODULES_DIR,
) -> str:
    lines = [
        f"ServerName {server_name}",
        f"Listen {BACKEND_PORT}",
        f'DocumentRoot "{docroot}"',
    ]
    lines += [f"LoadModule {name} {modules_dir}/{so}" for name, so in MODULES]
    lines += [
        f"ErrorLog {log_path}",
        f"PidFile {pid_path}",
    ]
    return "\n".join(lines) + "\n"


def backend_services(
    topology: Topology,
    workdir: Path,
    *,
    cpu_plan: Optional[CpuPlan] = None,
    modules_dir: str = DEFAULT_MODULES_DIR,
) -> List[ServiceSpec]:
    """Write one httpd config per server namespace and return their specs."""
    workdir = Path(workdir)
    write_document(workdir)
    specs: List[ServiceSpec] = []
    for ns in topology.servers:
        link = topology.link_for(Role.SERVER, ns.index)
        stem = f"httpd-app-{ns.index}"
        conf_path = workdir / f"{stem}.conf"
        pid_path = workdir / f"{stem}.pid"
        conf_path.write_text(
            httpd_config(
                server_name=link.peer_end.address,
                docroot=workdir,
                log_path=workdir / f"{stem}.log",
                pid_path=pid_path,
                modules_dir=modules_dir,
            ),
            encoding="utf-8",
        )
        specs.append(
            ServiceSpec(
                name=stem,
                role=Role.SERVER,
                index=ns.index,
                argv=("httpd", "-d", str(workdir), "-f", str(conf_path)),
                pid_file=str(pid_path),
                cpus=str(cpu_plan.server_cpu(ns.index)) if cpu_plan is not None else None,
            )
        )
    return specs
