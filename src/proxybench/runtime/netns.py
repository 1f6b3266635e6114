from __future__ import annotations

import logging
from typing import List, Optional

from proxybench.errors import CommandError, ProvisioningError
from proxybench.model.topology import AddressPlan, Impairment, Link, Topology, build_topology
from proxybench.runtime.commands import CommandRunner

log = logging.getLogger("proxybench.netns")


def ip(*args: str, ns: str | None = None) -> list[str]:
    argv = ["ip"]
    if ns is not None:
        argv += ["-n", ns]
    return argv + list(args)


class Provisioner:
    """Owns namespace and veth lifecycle for one run."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        prefix: str = "pb-",
        impairment: Optional[Impairment] = None,
        plan: Optional[AddressPlan] = None,
    ) -> None:
        if not prefix:
            raise ValueError("netns prefix must be non-empty")
        self._runner = runner
        self._prefix = prefix
        self._impairment = impairment
        self._plan = plan or AddressPlan()

    def plan(self, server_count: int, client_count: int) -> Topology:
        return build_topology(
            self._prefix,
            server_count,
            client_count,
            impairment=self._impairment,
            plan=self._plan,
        )

    def list_netns(self) -> List[str]:
        res = self._runner.run(["ip", "netns", "list"], check=False)
        if not res.ok:
            return []
        names = []
        for line in res.output.strip().splitlines():
            if line.strip():
                # "name (id: 3)"
                names.append(line.split()[0])
        return names

    def teardown(self, topology: Optional[Topology] = None) -> None:
        """Best-effort removal of every namespace carrying our prefix."""
        stale = {name for name in self.list_netns() if name.startswith(self._prefix)}
        if topology is not None:
            stale.update(topology.namespace_names)
            # a crash between "link add" and "link set netns" leaves the pair in the root namespace
            for link in topology.links:
                self._quiet(["ip", "link", "del", link.proxy_end.ifname])
        for name in sorted(stale):
            self._quiet(["ip", "netns", "del", name])

    def provision(self, server_count: int, client_count: int) -> Topology:
        topology = self.plan(server_count, client_count)
        self.teardown(topology)
        log.info(
            "creating topology: 1 proxy, %d servers, %d clients (prefix %s)",
            server_count,
            client_count,
            self._prefix,
        )
        try:
            for ns in topology.namespaces:
                self._runner.run(["ip", "netns", "add", ns.name])
                self._runner.run(ip("link", "set", "lo", "up", ns=ns.name))
            for link in topology.links:
                self._create_link(link)
        except CommandError as exc:
            raise ProvisioningError(f"topology creation failed: {exc}") from exc
        return topology

    def _create_link(self, link: Link) -> None:
        proxy_end = link.proxy_end
        peer_end = link.peer_end
        self._runner.run(["ip", "link", "add", proxy_end.ifname, "type", "veth", "peer", "name", peer_end.ifname])
        self._runner.run(["ip", "link", "set", peer_end.ifname, "netns", peer_end.namespace])
        self._runner.run(["ip", "link", "set", proxy_end.ifname, "netns", proxy_end.namespace])
        for end in (peer_end, proxy_end):
            self._runner.run(ip("link", "set", end.ifname, "up", ns=end.namespace))
        for end in (peer_end, proxy_end):
            self._runner.run(ip("addr", "add", end.cidr, "dev", end.ifname, ns=end.namespace))

    def _quiet(self, argv: list[str]) -> None:
        res = self._runner.run(argv, check=False)
        if not res.ok:
            log.debug("cleanup ignored failure: %s -> %s", " ".join(argv), res.output.strip())
