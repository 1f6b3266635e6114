"""Host-side runtime: commands, namespaces, shaping, services, cleanup."""

from proxybench.runtime.cleanup import Cleanup
from proxybench.runtime.commands import CommandResult, CommandRunner, RecordingRunner, SubprocessRunner
from proxybench.runtime.netem import NetemShaper
from proxybench.runtime.netns import Provisioner
from proxybench.runtime.services import ServiceHandle, ServiceManager, ServiceSpec

__all__ = [
    "Cleanup",
    "CommandResult",
    "CommandRunner",
    "NetemShaper",
    "Provisioner",
    "RecordingRunner",
    "ServiceHandle",
    "ServiceManager",
    "ServiceSpec",
    "SubprocessRunner",
]
