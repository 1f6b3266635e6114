from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from proxybench.bench.orchestrator import BenchmarkOrchestrator, TrialResult
from proxybench.checks.preflight import raise_open_file_limits, validate_startup
from proxybench.checks.sanity import SanityChecker
from proxybench.config import SUPPORTED_PROXIES, BenchConfig, load_bench_config
from proxybench.errors import BenchError, ConfigError
from proxybench.eval.report import render_report, write_result_artifacts
from proxybench.eval.stats import RunResult, run_result
from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Impairment, Topology
from proxybench.runtime.cleanup import Cleanup
from proxybench.runtime.commands import CommandRunner, RecordingRunner, SubprocessRunner
from proxybench.runtime.netem import NetemShaper
from proxybench.runtime.netns import Provisioner
from proxybench.runtime.services import ServiceHandle, ServiceManager
from proxybench.services.backend import backend_services
from proxybench.services.certs import CertificateBundle, create_certificate
from proxybench.services.offload import start_offload_engine
from proxybench.services.registry import load_proxy

log = logging.getLogger("proxybench")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2
EXIT_ABORTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="proxybench",
        description="Benchmark TLS termination throughput of a reverse proxy on a netns star topology.",
    )
    parser.add_argument("--config", default=None, help="YAML config file (all keys optional).")
    parser.add_argument("--workdir", default=None, help="Directory for generated configs and results.")
    parser.add_argument("--proxy", default=None, choices=list(SUPPORTED_PROXIES), help="Proxy under test.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Record the setup commands instead of running them and print the plan.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args(argv)


@dataclass
class Environment:
    topology: Topology
    certs: CertificateBundle
    cpu_plan: Optional[CpuPlan]


def set_up(cfg: BenchConfig, runner: CommandRunner, cleanup: Cleanup) -> Environment:
    workdir = cfg.workdir_path
    workdir.mkdir(parents=True, exist_ok=True)
    cpu_plan = CpuPlan.from_config(cfg) if cfg.use_cpu_pinning else None
    provisioner = Provisioner(runner, prefix=cfg.netns_prefix, impairment=Impairment.from_config(cfg))
    manager = ServiceManager(
        runner,
        ready_grace_s=cfg.services.ready_grace_s,
        offload_grace_s=cfg.services.offload_grace_s,
        use_hardware_offload=cfg.use_hardware_offload,
        stop_timeout_s=cfg.services.stop_timeout_s,
    )
    handle = ServiceHandle()

    # registered before anything exists; LIFO order stops services before namespaces go
    planned = provisioner.plan(cfg.server_count, cfg.client_count)
    cleanup.register("teardown topology", lambda: provisioner.teardown(planned))
    cleanup.register("stop services", lambda: manager.stop(handle))

    log.info(">>> Setting up test environment")
    if cfg.use_hardware_offload:
        start_offload_engine(runner)
    topology = provisioner.provision(cfg.server_count, cfg.client_count)
    NetemShaper(runner).apply(topology)
    certs = create_certificate(runner, workdir)

    specs = backend_services(topology, workdir, cpu_plan=cpu_plan)
    specs.append(load_proxy(cfg.proxy)(cfg, topology, workdir, certs, cpu_plan))
    manager.start(topology, specs, handle)
    return Environment(topology=topology, certs=certs, cpu_plan=cpu_plan)


def run_benchmark(
    cfg: BenchConfig,
    runner: CommandRunner,
    cleanup: Cleanup,
    *,
    available_cpus: Optional[int] = None,
) -> tuple[RunResult, List[TrialResult]]:
    env = set_up(cfg, runner, cleanup)
    SanityChecker(runner, cfg, available_cpus=available_cpus).ensure(env.topology)

    orchestrator = BenchmarkOrchestrator(
        runner,
        cfg,
        pem_path=env.certs.pem,
        workdir=cfg.workdir_path,
        cpu_plan=env.cpu_plan,
    )
    trials = orchestrator.run_trials(env.topology)
    result = run_result(trial.aggregate for trial in trials)
    write_result_artifacts(cfg.workdir_path, cfg, result, trials)
    return result, trials


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if args.workdir is not None:
        out["workdir"] = str(Path(args.workdir))
    if args.proxy is not None:
        out["proxy"] = args.proxy
    return out


def main(argv: Optional[List[str]] = None, *, out: TextIO | None = None) -> int:
    args = parse_args(argv)
    out = out or sys.stdout
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_bench_config(args.config, overrides=_overrides(args))
    except ConfigError as exc:
        log.error("%s", exc)
        return EXIT_USAGE
    if cfg.num_trials == 1 and not args.dry_run:
        # a single trial cannot produce the report, so refuse before touching the host
        log.error("num_trials is 1: the sample standard deviation is undefined; use at least 2 trials")
        return EXIT_USAGE

    try:
        if args.dry_run:
            runner = RecordingRunner()
            with Cleanup() as cleanup:
                set_up(cfg, runner, cleanup)
            out.write(runner.render_plan() + "\n")
            return EXIT_OK

        validate_startup(cfg)
        raise_open_file_limits()
        with Cleanup() as cleanup:
            cleanup.install_signal_handlers()
            result, _ = run_benchmark(cfg, SubprocessRunner(), cleanup)
    except KeyboardInterrupt:
        log.error("aborted by operator; topology and services were cleaned up")
        return EXIT_ABORTED
    except BenchError as exc:
        log.error("%s", exc)
        return EXIT_FATAL

    out.write(render_report(cfg, result))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
