from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from proxybench.bench.orchestrator import TrialResult
from proxybench.config import BenchConfig
from proxybench.eval.stats import RunResult
from proxybench.model.affinity import CpuPlan, format_cpu_range


def render_report(cfg: BenchConfig, result: RunResult) -> str:
    lines = [
        "",
        f"{cfg.num_trials} test runs of {cfg.trial_duration_s} seconds each",
        f"{cfg.proxy_thread_count} proxy threads",
        f"{cfg.server_count} servers, {cfg.client_count} clients at "
        f"{cfg.offered_requests_per_second} requests per second",
    ]
    if cfg.network.enabled:
        net = cfg.network
        lines.append(
            f"simulated network latency {net.latency_ms:g}ms, jitter {net.jitter_ms:g}ms, "
            f"loss {net.loss_percent:g}%"
        )
    if cfg.use_cpu_pinning:
        plan = CpuPlan.from_config(cfg)
        lines += [
            "CPU pinning is enabled.",
            f"proxy using CPUs: {format_cpu_range(plan.proxy)}",
            f"httpd using CPUs: {format_cpu_range(plan.servers)}",
            f"https clients using CPUs: {format_cpu_range(plan.clients)}",
        ]
    lines += [
        "",
        f"Requests Per Second (mean): {result.mean:.2f}",
        f"stddev: {result.stddev:.2f}",
    ]
    return "\n".join(lines) + "\n"


def dump_json(path: str | Path, obj: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2, sort_keys=True)


def write_result_artifacts(
    workdir: Path,
    cfg: BenchConfig,
    result: RunResult,
    trials: Sequence[TrialResult],
) -> None:
    workdir = Path(workdir)
    (workdir / "mean").write_text(f"{result.mean:.2f}\n", encoding="utf-8")
    (workdir / "stddev").write_text(f"{result.stddev:.2f}\n", encoding="utf-8")
    dump_json(
        workdir / "summary.json",
        {
            "config": cfg.to_dict(),
            "mean": result.mean,
            "stddev": result.stddev,
            "trials": [
                {
                    "run": trial.ordinal,
                    "aggregate": trial.aggregate,
                    "samples": {str(s.client_index): s.requests_per_second for s in trial.samples},
                    "missing_clients": list(trial.missing),
                }
                for trial in trials
            ],
        },
    )
