from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from proxybench.errors import CommandError, ProvisioningError
from proxybench.model.topology import Role, Topology
from proxybench.runtime.commands import CommandRunner, netns_exec

log = logging.getLogger("proxybench.services")

STOP_POLL_INTERVAL_S = 0.2


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    role: Role
    index: int
    argv: Tuple[str, ...]
    pid_file: Optional[str] = None
    cpus: Optional[str] = None

    @property
    def binary(self) -> str:
        return Path(self.argv[0]).name


@dataclass
class RunningService:
    spec: ServiceSpec
    namespace: str


@dataclass
class ServiceHandle:
    services: List[RunningService] = field(default_factory=list)
    stopped: bool = False


class ServiceManager:
    """Starts daemonizing services inside their namespaces and stops them again."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        ready_grace_s: float = 1.0,
        offload_grace_s: float = 30.0,
        use_hardware_offload: bool = False,
        stop_timeout_s: float = 5.0,
    ) -> None:
        self._runner = runner
        self._ready_grace_s = ready_grace_s
        self._offload_grace_s = offload_grace_s
        self._use_hardware_offload = use_hardware_offload
        self._stop_timeout_s = stop_timeout_s

    def start(self, topology: Topology, specs: Sequence[ServiceSpec], handle: ServiceHandle | None = None) -> ServiceHandle:
        handle = handle if handle is not None else ServiceHandle()
        for spec in specs:
            try:
                ns = topology.namespace_for(spec.role, spec.index)
            except KeyError as exc:
                raise ProvisioningError(f"service {spec.name} has no namespace in topology: {exc}") from exc
            argv: list[str] = []
            if spec.cpus:
                argv += ["taskset", "-c", spec.cpus]
            argv += list(spec.argv)
            log.info("starting %s in %s", spec.name, ns.name)
            try:
                self._runner.run(netns_exec(ns.name, *argv))
            except CommandError as exc:
                raise ProvisioningError(f"failed to start {spec.name} in {ns.name}: {exc}") from exc
            handle.services.append(RunningService(spec=spec, namespace=ns.name))

        self._runner.sleep(self._ready_grace_s)
        if self._use_hardware_offload and self._offload_grace_s > 0:
            log.info("allowing hardware offload engine time to start (%gs)", self._offload_grace_s)
            self._runner.sleep(self._offload_grace_s)
        return handle

    def stop(self, handle: ServiceHandle) -> None:
        if handle.stopped:
            return
        handle.stopped = True
        orphans: set[str] = set()
        for svc in reversed(handle.services):
            pid = self._read_pid(svc.spec)
            if pid is None:
                orphans.add(svc.spec.binary)
                continue
            self._signal_and_wait(svc.spec.name, pid)
        for binary in sorted(orphans):
            res = self._runner.run(["killall", "-q", binary], check=False)
            if not res.ok:
                log.debug("killall %s found nothing", binary)

    def _signal_and_wait(self, name: str, pid: int) -> None:
        res = self._runner.run(["kill", "-TERM", str(pid)], check=False)
        if not res.ok:
            log.debug("%s (pid %d) already gone", name, pid)
            return
        polls = max(1, int(self._stop_timeout_s / STOP_POLL_INTERVAL_S))
        for _ in range(polls):
            if not self._runner.run(["kill", "-0", str(pid)], check=False).ok:
                return
            self._runner.sleep(STOP_POLL_INTERVAL_S)
        log.warning("%s (pid %d) ignored SIGTERM, killing", name, pid)
        self._runner.run(["kill", "-KILL", str(pid)], check=False)

    @staticmethod
    def _read_pid(spec: ServiceSpec) -> int | None:
        if not spec.pid_file:
            return None
        try:
            text = Path(spec.pid_file).read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            # nginx and haproxy may list several pids; the first is the master
            return int(text.split()[0])
        except (IndexError, ValueError):
            return None
