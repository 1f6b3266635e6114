from __future__ import annotations

from pathlib import Path

import pytest

from proxybench.config import BenchConfig, NetworkConfig

AB_TEMPLATE = """This is ApacheBench, Version 2.3 <$Revision: 1903618 $>
Benchmarking 10.222.1.1 (be patient)

Server Software:
Server Hostname:        10.222.1.1
Server Port:            4443
SSL/TLS Protocol:       TLSv1.2,ECDHE-RSA-AES256-GCM-SHA384,2048,256

Concurrency Level:      1024
Time taken for tests:   60.001 seconds
Complete requests:      50000
Failed requests:        0
Requests per second:    {rps} [#/sec] (mean)
Time per request:       1228.821 [ms] (mean)
"""


def ab_output(rps: float) -> str:
    return AB_TEMPLATE.format(rps=f"{rps:.2f}")


@pytest.fixture
def small_cfg(tmp_path: Path) -> BenchConfig:
    return BenchConfig(
        num_trials=3,
        trial_duration_s=60,
        server_count=2,
        client_count=3,
        offered_requests_per_second=1024,
        proxy_thread_count=4,
        use_cpu_pinning=False,
        network=NetworkConfig(latency_ms=None),
        workdir=str(tmp_path),
    )
