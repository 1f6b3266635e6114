from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

RPS_RE = re.compile(r"^Requests per second:\s+(?P<rps>[0-9]+(?:\.[0-9]+)?)", re.MULTILINE)
# ab -n needs a ceiling above what -t allows; 10 spare seconds worth of requests
REQUEST_HEADROOM_S = 10


@dataclass(frozen=True)
class WorkerSample:
    client_index: int
    requests_per_second: float


def ab_protocol(tls_version: str) -> str:
    # ab -f takes "TLS1.2", not "TLSv1.2"
    return tls_version.replace("v", "")


def ab_argv(
    url: str,
    *,
    tls_version: str,
    pem_path: str,
    rate: int,
    duration_s: int,
) -> list[str]:
    return [
        "ab",
        "-f",
        ab_protocol(tls_version),
        "-E",
        pem_path,
        "-c",
        str(rate),
        "-n",
        str(rate * (duration_s + REQUEST_HEADROOM_S)),
        "-t",
        str(duration_s),
        url,
    ]


def parse_requests_per_second(text: str) -> Optional[float]:
    matches = RPS_RE.findall(text)
    if not matches:
        return None
    return float(matches[-1])
