"""
Pre-flight checks for proxybench.

Validates host requirements before any namespace is created. Every check
returns ``(success, message)``; ``validate_startup`` raises
``PreconditionError`` listing all failures at once.
"""

from __future__ import annotations

import logging
import os
import resource
import shutil
from pathlib import Path
from typing import Callable, Collection, List, Optional, Set, Tuple

from proxybench.config import BenchConfig
from proxybench.errors import PreconditionError

log = logging.getLogger("proxybench.preflight")

PROXY_BINARIES = {"haproxy": "haproxy", "nginx": "nginx"}
IOMMU_FLAG = "intel_iommu=on"

CheckResult = Tuple[bool, str]


def required_tools(cfg: BenchConfig) -> List[str]:
    tools = ["ip", "curl", "ab", "openssl", "httpd", PROXY_BINARIES[cfg.proxy]]
    if cfg.network.enabled:
        tools.append("tc")
    if cfg.use_cpu_pinning:
        tools.append("taskset")
    if cfg.use_hardware_offload:
        tools.append("systemctl")
    return tools


def check_tools(cfg: BenchConfig, which: Callable[[str], Optional[str]] = shutil.which) -> CheckResult:
    missing = [tool for tool in required_tools(cfg) if which(tool) is None]
    if missing:
        return False, f"missing required tools on PATH: {', '.join(missing)}"
    return True, "all required tools found"


def check_root_privileges(euid: Optional[int] = None) -> CheckResult:
    euid = os.geteuid() if euid is None else euid
    if euid == 0:
        return True, "running as root"
    return False, "network namespaces and tc need root. try: sudo proxybench ..."


def check_kernel_cmdline(cfg: BenchConfig, cmdline_path: Path = Path("/proc/cmdline")) -> CheckResult:
    if not cfg.use_hardware_offload:
        return True, "hardware offload disabled"
    try:
        cmdline = cmdline_path.read_text(encoding="utf-8")
    except OSError as exc:
        return False, f"cannot read kernel cmdline: {exc}"
    if IOMMU_FLAG in cmdline.split():
        return True, f"kernel cmdline contains {IOMMU_FLAG}"
    return False, f"kernel cmdline must contain {IOMMU_FLAG}, please add and reboot"


def allowed_cpus() -> Set[int]:
    try:
        return set(os.sched_getaffinity(0))
    except AttributeError:  # pragma: no cover
        return set(range(os.cpu_count() or 1))


def available_cpus() -> int:
    return len(allowed_cpus())


def cpu_budget_message(cfg: BenchConfig) -> str:
    return (
        "Cannot use CPU pinning because there are not enough CPUs. "
        f"Need {cfg.proxy_thread_count} for proxy, {cfg.server_count} for httpd, "
        f"{cfg.client_count} https clients."
    )


def check_cpu_budget(
    cfg: BenchConfig,
    available: Optional[int] = None,
    allowed: Optional[Collection[int]] = None,
) -> CheckResult:
    if not cfg.use_cpu_pinning:
        return True, "CPU pinning disabled"
    if available is None and allowed is None:
        allowed = allowed_cpus()
    if available is None:
        available = len(allowed)
    if available < cfg.required_cpus:
        return False, f"{cpu_budget_message(cfg)} ({cfg.required_cpus} required, {available} available)"
    if allowed is not None:
        # the plan hands out absolute CPU ids 0..N-1
        outside = sorted(set(range(cfg.required_cpus)) - set(allowed))
        if outside:
            return False, (
                f"CPU pinning uses CPUs 0-{cfg.required_cpus - 1} but {len(outside)} of them "
                f"are outside this process's affinity mask (first: {outside[0]})"
            )
    return True, f"{available} CPUs available, {cfg.required_cpus} required"


def raise_open_file_limits() -> None:
    """Lift soft NOFILE and MEMLOCK limits to their hard ceilings."""
    for name in ("RLIMIT_NOFILE", "RLIMIT_MEMLOCK"):
        limit = getattr(resource, name)
        soft, hard = resource.getrlimit(limit)
        if soft == hard:
            continue
        try:
            resource.setrlimit(limit, (hard, hard))
        except (ValueError, OSError) as exc:
            log.warning("could not raise %s from %s to %s: %s", name, soft, hard, exc)


def run_preflight_checks(
    cfg: BenchConfig,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
    available: Optional[int] = None,
    allowed: Optional[Collection[int]] = None,
    euid: Optional[int] = None,
    cmdline_path: Path = Path("/proc/cmdline"),
) -> List[Tuple[str, bool, str]]:
    checks = [
        ("Privileges", lambda: check_root_privileges(euid)),
        ("Tools", lambda: check_tools(cfg, which)),
        ("Kernel cmdline", lambda: check_kernel_cmdline(cfg, cmdline_path)),
        ("CPU budget", lambda: check_cpu_budget(cfg, available, allowed)),
    ]
    results = []
    for name, check_fn in checks:
        success, message = check_fn()
        results.append((name, success, message))
        log.debug("preflight %s: %s (%s)", name, "ok" if success else "FAIL", message)
    return results


def validate_startup(cfg: BenchConfig, **kwargs) -> None:  # type: ignore[no-untyped-def]
    results = run_preflight_checks(cfg, **kwargs)
    failures = [(name, msg) for name, success, msg in results if not success]
    if failures:
        error_lines = ["Pre-flight checks failed:"]
        for name, msg in failures:
            error_lines.append(f"  - {name}: {msg}")
        raise PreconditionError("\n".join(error_lines))
