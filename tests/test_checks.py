from __future__ import annotations

from pathlib import Path

import pytest

from proxybench.checks.preflight import (
    check_cpu_budget,
    check_kernel_cmdline,
    required_tools,
    validate_startup,
)
from proxybench.checks.sanity import SanityChecker, curl_argv
from proxybench.config import BenchConfig, NetworkConfig
from proxybench.errors import PreconditionError, ReachabilityError
from proxybench.model.topology import build_topology
from proxybench.runtime.commands import RecordingRunner

HELLO = "Hello World!\n"


def _pinned(**kw) -> BenchConfig:  # type: ignore[no-untyped-def]
    base = dict(use_cpu_pinning=True, proxy_thread_count=4, server_count=8, client_count=16)
    base.update(kw)
    return BenchConfig(**base)


def test_cpu_budget_fails_with_per_role_counts() -> None:
    ok, message = check_cpu_budget(_pinned(), available=16)
    assert not ok
    assert "Need 4 for proxy, 8 for httpd, 16 https clients" in message
    assert "28 required" in message


def test_cpu_budget_passes_when_enough_or_unpinned() -> None:
    assert check_cpu_budget(_pinned(), available=28)[0]
    assert check_cpu_budget(_pinned(use_cpu_pinning=False), available=2)[0]


def test_validate_startup_fails_before_any_topology(tmp_path: Path) -> None:
    cmdline = tmp_path / "cmdline"
    cmdline.write_text("BOOT_IMAGE=/vmlinuz quiet\n", encoding="utf-8")
    with pytest.raises(PreconditionError) as info:
        validate_startup(
            _pinned(),
            which=lambda tool: None if tool == "ab" else f"/usr/bin/{tool}",
            available=16,
            euid=0,
            cmdline_path=cmdline,
        )
    text = str(info.value)
    assert "CPU budget" in text
    assert "ab" in text


def test_validate_startup_passes(tmp_path: Path) -> None:
    validate_startup(
        _pinned(),
        which=lambda tool: f"/usr/bin/{tool}",
        available=64,
        euid=0,
        cmdline_path=tmp_path / "missing",
    )


def test_kernel_cmdline_checked_only_with_offload(tmp_path: Path) -> None:
    cmdline = tmp_path / "cmdline"
    cmdline.write_text("BOOT_IMAGE=/vmlinuz quiet\n", encoding="utf-8")
    assert check_kernel_cmdline(BenchConfig(use_hardware_offload=False), cmdline)[0]

    ok, message = check_kernel_cmdline(BenchConfig(use_hardware_offload=True), cmdline)
    assert not ok
    assert "intel_iommu=on" in message

    cmdline.write_text("BOOT_IMAGE=/vmlinuz intel_iommu=on quiet\n", encoding="utf-8")
    assert check_kernel_cmdline(BenchConfig(use_hardware_offload=True), cmdline)[0]


def test_required_tools_follow_features() -> None:
    plain = required_tools(BenchConfig(use_cpu_pinning=False, network=NetworkConfig(latency_ms=None)))
    assert "tc" not in plain and "taskset" not in plain
    assert "haproxy" in plain

    full = required_tools(BenchConfig(proxy="nginx", use_cpu_pinning=True))
    assert {"tc", "taskset", "nginx"} <= set(full)


def test_curl_argv_pins_tls_version() -> None:
    argv = curl_argv("https://10.222.1.1:4443/index.html", tls_version="1.3")
    assert "--insecure" in argv
    assert "--tlsv1.3" in argv
    assert argv[argv.index("--tls-max") + 1] == "1.3"
    assert "--insecure" not in curl_argv("http://10.111.1.2:8080/index.html")


def test_sanity_check_passes_on_healthy_topology() -> None:
    runner = RecordingRunner(lambda cmd: (0, HELLO) if "curl" in cmd else None)
    cfg = BenchConfig(server_count=2, client_count=3, use_cpu_pinning=False)
    topo = build_topology("pb-", 2, 3)

    assert SanityChecker(runner, cfg).check(topo) == []

    calls = runner.commands()
    # one per server, two per client
    assert len(calls) == 2 + 3 * 2
    assert calls[0][:4] == ("ip", "netns", "exec", "pb-proxy")
    assert calls[0][-1] == "http://10.111.1.2:8080/index.html"
    https = [cmd for cmd in calls if cmd[-1].startswith("https://")]
    assert [cmd[3] for cmd in https] == ["pb-client1", "pb-client2", "pb-client3"]
    assert https[0][-1] == "https://10.222.1.1:4443/index.html"
    assert "--tlsv1.2" in https[0]


def test_sanity_check_reports_each_broken_path() -> None:
    def responder(cmd):  # type: ignore[no-untyped-def]
        if cmd[-1] == "http://10.111.2.2:8080/index.html":
            return 7, "curl: (7) Failed to connect to 10.111.2.2 port 8080"
        if cmd[-1] == "https://10.222.1.1:4443/index.html":
            return 0, "<html>503 Service Unavailable</html>"
        return 0, HELLO

    cfg = BenchConfig(server_count=2, client_count=1, use_cpu_pinning=False)
    topo = build_topology("pb-", 2, 1)
    checker = SanityChecker(RecordingRunner(responder), cfg)

    reasons = checker.check(topo)
    assert len(reasons) == 2
    assert "pb-app2" in reasons[0] and "curl exited 7" in reasons[0]
    assert "pb-client1" in reasons[1] and "https" in reasons[1]

    with pytest.raises(ReachabilityError) as info:
        checker.ensure(topo)
    assert info.value.reasons == reasons


def test_sanity_check_includes_cpu_precondition() -> None:
    runner = RecordingRunner(lambda cmd: (0, HELLO))
    cfg = _pinned()
    topo = build_topology("pb-", 8, 16)
    reasons = SanityChecker(runner, cfg, available_cpus=16).check(topo)
    assert len(reasons) == 1
    assert "Need 4 for proxy, 8 for httpd, 16 https clients" in reasons[0]


def test_cpu_budget_requires_planned_ids_inside_affinity_mask() -> None:
    # 32 usable CPUs, but numbered 4..35 while the plan starts at 0
    ok, message = check_cpu_budget(_pinned(), allowed=set(range(4, 36)))
    assert not ok
    assert "affinity mask" in message
    assert "first: 0" in message

    assert check_cpu_budget(_pinned(), allowed=set(range(0, 28)))[0]


def test_validate_startup_reports_affinity_mismatch() -> None:
    with pytest.raises(PreconditionError, match="affinity mask"):
        validate_startup(
            _pinned(),
            which=lambda tool: f"/usr/bin/{tool}",
            allowed=set(range(8, 40)),
            euid=0,
        )
