from __future__ import annotations

import logging
from typing import List, Optional

from proxybench.checks.preflight import check_cpu_budget
from proxybench.config import BenchConfig
from proxybench.errors import ReachabilityError
from proxybench.model.topology import Topology
from proxybench.runtime.commands import CommandRunner, netns_exec
from proxybench.services.endpoints import MARKER, backend_url, proxy_http_url, proxy_https_url

log = logging.getLogger("proxybench.sanity")

CURL_TIMEOUT_S = 60.0


def curl_argv(url: str, *, tls_version: str | None = None) -> list[str]:
    argv = ["curl", "--silent", "--show-error", "--retry", "3", "--max-time", "10"]
    if tls_version is not None:
        # "1.2" -> --tlsv1.2 --tls-max 1.2, so a downgrade fails the check
        argv += ["--insecure", f"--tlsv{tls_version}", "--tls-max", tls_version]
    return argv + [url]


class SanityChecker:
    """End-to-end reachability and environment checks run before any trial."""

    def __init__(self, runner: CommandRunner, cfg: BenchConfig, *, available_cpus: Optional[int] = None) -> None:
        self._runner = runner
        self._cfg = cfg
        self._available_cpus = available_cpus

    def check(self, topology: Topology) -> List[str]:
        reasons: List[str] = []
        proxy_ns = topology.proxy.name
        for ns in topology.servers:
            url = backend_url(topology, ns.index)
            reason = self._fetch(proxy_ns, url)
            if reason:
                reasons.append(f"{proxy_ns} -> {ns.name} over http ({url}): {reason}")

        version = self._cfg.tls_version_number
        for ns in topology.clients:
            for label, url, tls in (
                ("http", proxy_http_url(topology, ns.index), None),
                (f"https/{self._cfg.tls_version}", proxy_https_url(topology, ns.index), version),
            ):
                reason = self._fetch(ns.name, url, tls_version=tls)
                if reason:
                    reasons.append(f"{ns.name} -> {proxy_ns} over {label} ({url}): {reason}")

        ok, message = check_cpu_budget(self._cfg, self._available_cpus)
        if not ok:
            reasons.append(message)
        return reasons

    def ensure(self, topology: Topology) -> None:
        log.info("sanity checking test setup")
        reasons = self.check(topology)
        if reasons:
            raise ReachabilityError(reasons)

    def _fetch(self, ns: str, url: str, *, tls_version: str | None = None) -> str | None:
        res = self._runner.run(
            netns_exec(ns, *curl_argv(url, tls_version=tls_version)),
            check=False,
            timeout_s=CURL_TIMEOUT_S,
        )
        if not res.ok:
            tail = res.output.strip().splitlines()[-1:] or ["no output"]
            return f"curl exited {res.returncode}: {tail[0]}"
        if MARKER not in res.output:
            return f"response does not contain {MARKER!r}"
        return None
