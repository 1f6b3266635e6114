from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from proxybench.config import MAX_PEERS_PER_ROLE, BenchConfig


class Role(str, Enum):
    PROXY = "proxy"
    SERVER = "server"
    CLIENT = "client"


@dataclass(frozen=True)
class Impairment:
    latency_ms: float
    jitter_ms: float
    loss_percent: float
    queue_limit: int

    @classmethod
    def from_config(cls, cfg: BenchConfig) -> Optional["Impairment"]:
        # latency is the on/off switch for the whole set
        if not cfg.network.enabled:
            return None
        return cls(
            latency_ms=float(cfg.network.latency_ms),
            jitter_ms=float(cfg.network.jitter_ms),
            loss_percent=float(cfg.network.loss_percent),
            queue_limit=int(cfg.queue_limit),
        )

    def per_direction(self) -> Tuple[float, float]:
        """Delay and jitter for one endpoint; both endpoints sum to the nominal path."""
        return self.latency_ms / 2.0, self.jitter_ms / 2.0


@dataclass(frozen=True)
class Namespace:
    role: Role
    index: int
    name: str
    interfaces: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Endpoint:
    namespace: str
    ifname: str
    address: str
    prefixlen: int

    @property
    def cidr(self) -> str:
        return f"{self.address}/{self.prefixlen}"


@dataclass(frozen=True)
class Link:
    role: Role
    index: int
    proxy_end: Endpoint
    peer_end: Endpoint
    impairment: Optional[Impairment] = None

    @property
    def endpoints(self) -> Tuple[Endpoint, Endpoint]:
        return self.peer_end, self.proxy_end


class AddressPlan:
    """Maps ``(role, index)`` to a /24; servers and clients use disjoint /16 families."""

    def __init__(self, server_base: str = "10.111.0.0/16", client_base: str = "10.222.0.0/16") -> None:
        self._bases = {
            Role.SERVER: ipaddress.IPv4Network(server_base, strict=True),
            Role.CLIENT: ipaddress.IPv4Network(client_base, strict=True),
        }
        for net in self._bases.values():
            if net.prefixlen > 16:
                raise ValueError(f"address family too small for {MAX_PEERS_PER_ROLE} peers: {net}")
        if self._bases[Role.SERVER].overlaps(self._bases[Role.CLIENT]):
            raise ValueError("server and client address families overlap")

    def subnet(self, role: Role, index: int) -> ipaddress.IPv4Network:
        if role not in self._bases:
            raise ValueError(f"no address family for role: {role.value}")
        if index < 1 or index > MAX_PEERS_PER_ROLE:
            raise ValueError(f"{role.value} index out of range: {index}")
        base = self._bases[role]
        return ipaddress.IPv4Network((int(base.network_address) + (index << 8), 24))

    def proxy_address(self, role: Role, index: int) -> str:
        return str(self.subnet(role, index).network_address + 1)

    def peer_address(self, role: Role, index: int) -> str:
        return str(self.subnet(role, index).network_address + 2)


@dataclass(frozen=True)
class Topology:
    prefix: str
    proxy: Namespace
    servers: Tuple[Namespace, ...]
    clients: Tuple[Namespace, ...]
    links: Tuple[Link, ...]

    @property
    def namespaces(self) -> Tuple[Namespace, ...]:
        return (self.proxy, *self.servers, *self.clients)

    @property
    def namespace_names(self) -> Tuple[str, ...]:
        return tuple(ns.name for ns in self.namespaces)

    @property
    def server_links(self) -> Tuple[Link, ...]:
        return tuple(link for link in self.links if link.role is Role.SERVER)

    @property
    def client_links(self) -> Tuple[Link, ...]:
        return tuple(link for link in self.links if link.role is Role.CLIENT)

    def link_for(self, role: Role, index: int) -> Link:
        for link in self.links:
            if link.role is role and link.index == index:
                return link
        raise KeyError(f"no {role.value} link with index {index}")

    def namespace_for(self, role: Role, index: int = 0) -> Namespace:
        for ns in self.namespaces:
            if ns.role is role and ns.index == index:
                return ns
        raise KeyError(f"no {role.value} namespace with index {index}")


def namespace_name(prefix: str, role: Role, index: int = 0) -> str:
    if role is Role.PROXY:
        return f"{prefix}proxy"
    return f"{prefix}{_peer_label(role)}{index}"


def _peer_label(role: Role) -> str:
    return "app" if role is Role.SERVER else "client"


def build_topology(
    prefix: str,
    server_count: int,
    client_count: int,
    *,
    impairment: Optional[Impairment] = None,
    plan: Optional[AddressPlan] = None,
) -> Topology:
    """Describe the star topology without touching the host."""
    if server_count < 1 or client_count < 1:
        raise ValueError("server_count and client_count must be >= 1")
    plan = plan or AddressPlan()
    proxy_name = namespace_name(prefix, Role.PROXY)

    peers: list[Namespace] = []
    links: list[Link] = []
    for role, count in ((Role.SERVER, server_count), (Role.CLIENT, client_count)):
        for index in range(1, count + 1):
            label = f"{_peer_label(role)}{index}"
            ns_name = namespace_name(prefix, role, index)
            subnet = plan.subnet(role, index)
            links.append(
                Link(
                    role=role,
                    index=index,
                    proxy_end=Endpoint(proxy_name, f"{label}-ha", plan.proxy_address(role, index), subnet.prefixlen),
                    peer_end=Endpoint(ns_name, label, plan.peer_address(role, index), subnet.prefixlen),
                    # server links stay clean
                    impairment=impairment if role is Role.CLIENT else None,
                )
            )
            peers.append(Namespace(role=role, index=index, name=ns_name, interfaces=(label,)))

    proxy = Namespace(
        role=Role.PROXY,
        index=0,
        name=proxy_name,
        interfaces=tuple(link.proxy_end.ifname for link in links),
    )
    return Topology(
        prefix=prefix,
        proxy=proxy,
        servers=tuple(ns for ns in peers if ns.role is Role.SERVER),
        clients=tuple(ns for ns in peers if ns.role is Role.CLIENT),
        links=tuple(links),
    )
