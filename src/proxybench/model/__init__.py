"""Topology and CPU affinity models."""

from proxybench.model.affinity import CpuPlan, format_cpu_range
from proxybench.model.topology import (
    AddressPlan,
    Endpoint,
    Impairment,
    Link,
    Namespace,
    Role,
    Topology,
    build_topology,
)

__all__ = [
    "AddressPlan",
    "CpuPlan",
    "Endpoint",
    "Impairment",
    "Link",
    "Namespace",
    "Role",
    "Topology",
    "build_topology",
    "format_cpu_range",
]
