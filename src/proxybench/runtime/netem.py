from __future__ import annotations

import logging

from proxybench.errors import CommandError, ProvisioningError
from proxybench.model.topology import Endpoint, Impairment, Link, Role, Topology
from proxybench.runtime.commands import CommandRunner, netns_exec

log = logging.getLogger("proxybench.netem")


def _ms(value: float) -> str:
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return f"{text}ms"


def netem_args(impairment: Impairment) -> list[str]:
    delay, jitter = impairment.per_direction()
    args = ["limit", str(impairment.queue_limit), "delay", _ms(delay)]
    if jitter > 0:
        args.append(_ms(jitter))
    args += ["loss", "random", f"{float(impairment.loss_percent):g}%"]
    return args


def tc(end: Endpoint, *args: str) -> list[str]:
    return netns_exec(end.namespace, "tc", *args)


class NetemShaper:
    """Applies identical netem shaping to both ends of every client link."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def impair(self, link: Link, impairment: Impairment) -> None:
        if link.role is not Role.CLIENT:
            raise ValueError(f"only client links are impaired, got {link.role.value} link {link.index}")
        args = netem_args(impairment)
        for end in link.endpoints:
            self._runner.run(tc(end, "qdisc", "replace", "dev", end.ifname, "root", "netem", *args))

    def apply(self, topology: Topology) -> int:
        shaped = 0
        try:
            for link in topology.client_links:
                if link.impairment is None:
                    continue
                self.impair(link, link.impairment)
                shaped += 1
        except CommandError as exc:
            raise ProvisioningError(f"netem setup failed: {exc}") from exc
        if shaped:
            imp = next(link.impairment for link in topology.client_links if link.impairment is not None)
            log.info(
                "shaped %d client links: latency %gms, jitter %gms, loss %g%%, limit %d",
                shaped,
                imp.latency_ms,
                imp.jitter_ms,
                imp.loss_percent,
                imp.queue_limit,
            )
        return shaped

    def clear(self, link: Link) -> None:
        for end in link.endpoints:
            res = self._runner.run(tc(end, "qdisc", "del", "dev", end.ifname, "root"), check=False)
            if not res.ok:
                log.debug("no qdisc to remove on %s/%s", end.namespace, end.ifname)
