from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from proxybench.bench.worker import WorkerSample, ab_argv, parse_requests_per_second
from proxybench.config import BenchConfig
from proxybench.errors import MeasurementError
from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Topology
from proxybench.runtime.commands import CommandRunner, WorkerProcess, netns_exec
from proxybench.services.endpoints import proxy_https_url

log = logging.getLogger("proxybench.bench")

AGGREGATES_FILE = "aggregates"


@dataclass(frozen=True)
class TrialResult:
    ordinal: int
    samples: Tuple[WorkerSample, ...]
    missing: Tuple[int, ...]
    aggregate: float


@dataclass
class _Launched:
    client_index: int
    output_path: Path
    process: WorkerProcess


class BenchmarkOrchestrator:
    """Runs strictly sequential trials of parallel per-client load workers."""

    def __init__(
        self,
        runner: CommandRunner,
        cfg: BenchConfig,
        *,
        pem_path: Path,
        workdir: Path,
        cpu_plan: Optional[CpuPlan] = None,
    ) -> None:
        self._runner = runner
        self._cfg = cfg
        self._pem_path = Path(pem_path)
        self._workdir = Path(workdir)
        self._cpu_plan = cpu_plan

    @property
    def aggregates_path(self) -> Path:
        return self._workdir / AGGREGATES_FILE

    def run_trials(self, topology: Topology) -> List[TrialResult]:
        total = self._cfg.num_trials
        self.aggregates_path.unlink(missing_ok=True)
        results: List[TrialResult] = []
        for ordinal in range(1, total + 1):
            log.info("running benchmark, run %d of %d", ordinal, total)
            result = self.run_trial(topology, ordinal)
            results.append(result)
            with self.aggregates_path.open("a", encoding="utf-8") as f:
                f.write(f"{result.aggregate:.2f}\n")
            if ordinal < total:
                # the proxy is not restarted between trials
                log.info("letting proxy drain connections (%gs)", self._cfg.drain_seconds)
                self._runner.sleep(self._cfg.drain_seconds)
        return results

    def worker_argv(self, topology: Topology, client_index: int) -> list[str]:
        ns = topology.clients[client_index - 1]
        argv: list[str] = []
        if self._cpu_plan is not None:
            argv += ["taskset", "-c", str(self._cpu_plan.client_cpu(client_index))]
        argv += ab_argv(
            proxy_https_url(topology, client_index),
            tls_version=self._cfg.tls_version,
            pem_path=str(self._pem_path),
            rate=self._cfg.offered_requests_per_second,
            duration_s=self._cfg.trial_duration_s,
        )
        return netns_exec(ns.name, *argv)

    def run_trial(self, topology: Topology, ordinal: int) -> TrialResult:
        launched: List[_Launched] = []
        try:
            for ns in topology.clients:
                path = self._workdir / f"ab-{ns.index}.txt"
                proc = self._runner.spawn(self.worker_argv(topology, ns.index), output_path=path)
                launched.append(_Launched(ns.index, path, proc))

            returncodes = {}
            for worker in launched:
                returncodes[worker.client_index] = worker.process.wait()
        except BaseException:
            for worker in launched:
                worker.process.terminate()
            self._remove_outputs(launched)
            raise

        try:
            return self._collect(ordinal, launched, returncodes)
        finally:
            self._remove_outputs(launched)

    def _collect(self, ordinal: int, launched: List[_Launched], returncodes: dict[int, int]) -> TrialResult:
        policy = self._cfg.bench.missing_worker_policy
        samples: List[WorkerSample] = []
        missing: List[int] = []
        for worker in launched:
            rc = returncodes[worker.client_index]
            try:
                text = worker.output_path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                text = ""
            rps = parse_requests_per_second(text)
            if rps is not None:
                if rc != 0:
                    log.warning("client%d exited %d but reported %.2f req/s", worker.client_index, rc, rps)
                samples.append(WorkerSample(worker.client_index, rps))
                continue

            missing.append(worker.client_index)
            detail = f"client{worker.client_index} produced no throughput figure in run {ordinal} (exit {rc})"
            if policy == "fail":
                raise MeasurementError(detail)
            if policy == "zero":
                log.warning("%s; counting it as 0", detail)
                samples.append(WorkerSample(worker.client_index, 0.0))
            else:
                log.warning("%s; excluded from the aggregate", detail)

        aggregate = sum(sample.requests_per_second for sample in samples)
        log.info(
            "run %d: %.2f req/s from %d of %d clients",
            ordinal,
            aggregate,
            len(launched) - len(missing),
            len(launched),
        )
        return TrialResult(
            ordinal=ordinal,
            samples=tuple(samples),
            missing=tuple(missing),
            aggregate=aggregate,
        )

    @staticmethod
    def _remove_outputs(launched: List[_Launched]) -> None:
        for worker in launched:
            worker.output_path.unlink(missing_ok=True)
