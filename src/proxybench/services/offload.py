from __future__ import annotations

import logging

from proxybench.errors import CommandError, ProvisioningError
from proxybench.runtime.commands import CommandRunner

log = logging.getLogger("proxybench.offload")

QAT_SERVICE = "qat"


def start_offload_engine(runner: CommandRunner, service: str = QAT_SERVICE) -> None:
    """Bring up the QAT host service before any proxy loads the engine."""
    # newer qatengine builds trip older SELinux policies
    res = runner.run(["setenforce", "0"], check=False)
    if not res.ok:
        log.debug("setenforce 0 failed: %s", res.output.strip())
    log.info("starting hardware offload service %s", service)
    try:
        runner.run(["systemctl", "start", service])
    except CommandError as exc:
        raise ProvisioningError(f"could not start hardware offload service {service}: {exc}") from exc
