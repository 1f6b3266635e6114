from __future__ import annotations

import pytest

from proxybench.errors import ProvisioningError
from proxybench.model.topology import Impairment, Role
from proxybench.runtime.commands import RecordingRunner
from proxybench.runtime.netns import Provisioner


def test_provision_teardown_provision_is_identical() -> None:
    runner = RecordingRunner()
    prov = Provisioner(runner, prefix="pb-")

    first = prov.provision(8, 16)
    prov.teardown(first)
    second = prov.provision(8, 16)

    assert first == second
    assert first.namespace_names == second.namespace_names


def test_teardown_removes_stale_prefixed_namespaces_and_ignores_errors() -> None:
    def responder(cmd):  # type: ignore[no-untyped-def]
        if cmd == ("ip", "netns", "list"):
            return 0, "pb-proxy (id: 0)\npb-client99\nother-ns\n"
        if cmd[:3] == ("ip", "netns", "del"):
            return 1, "Cannot remove namespace file: No such file or directory"
        return None

    runner = RecordingRunner(responder)
    Provisioner(runner, prefix="pb-").teardown()

    deleted = {cmd[3] for cmd in runner.commands() if cmd[:3] == ("ip", "netns", "del")}
    assert deleted == {"pb-proxy", "pb-client99"}


def test_provision_tears_down_before_creating() -> None:
    runner = RecordingRunner()
    Provisioner(runner, prefix="pb-").provision(1, 1)
    cmds = runner.commands()
    first_add = cmds.index(("ip", "netns", "add", "pb-proxy"))
    dels = [i for i, cmd in enumerate(cmds) if cmd[:3] == ("ip", "netns", "del")]
    assert dels
    assert max(dels) < first_add


def test_link_setup_order_is_create_move_up_address() -> None:
    runner = RecordingRunner()
    Provisioner(runner, prefix="pb-").provision(2, 1)
    cmds = runner.commands()

    created = cmds.index(("ip", "link", "add", "app2-ha", "type", "veth", "peer", "name", "app2"))
    moved_peer = cmds.index(("ip", "link", "set", "app2", "netns", "pb-app2"))
    moved_proxy = cmds.index(("ip", "link", "set", "app2-ha", "netns", "pb-proxy"))
    up_peer = cmds.index(("ip", "-n", "pb-app2", "link", "set", "app2", "up"))
    up_proxy = cmds.index(("ip", "-n", "pb-proxy", "link", "set", "app2-ha", "up"))
    addr_peer = cmds.index(("ip", "-n", "pb-app2", "addr", "add", "10.111.2.2/24", "dev", "app2"))
    addr_proxy = cmds.index(("ip", "-n", "pb-proxy", "addr", "add", "10.111.2.1/24", "dev", "app2-ha"))

    assert created < min(moved_peer, moved_proxy)
    assert max(moved_peer, moved_proxy) < min(up_peer, up_proxy)
    assert max(up_peer, up_proxy) < min(addr_peer, addr_proxy)


def test_loopback_is_brought_up_everywhere() -> None:
    runner = RecordingRunner()
    topo = Provisioner(runner, prefix="pb-").provision(1, 2)
    cmds = runner.commands()
    for name in topo.namespace_names:
        assert ("ip", "-n", name, "link", "set", "lo", "up") in cmds


def test_creation_failure_is_fatal() -> None:
    def responder(cmd):  # type: ignore[no-untyped-def]
        if cmd == ("ip", "netns", "add", "pb-app2"):
            return 1, "Cannot create namespace file: File exists"
        return None

    with pytest.raises(ProvisioningError, match="pb-app2"):
        Provisioner(RecordingRunner(responder), prefix="pb-").provision(2, 1)


def test_impairment_lands_on_client_links_only() -> None:
    imp = Impairment(latency_ms=50, jitter_ms=4, loss_percent=0.1, queue_limit=2048)
    topo = Provisioner(RecordingRunner(), prefix="pb-", impairment=imp).provision(2, 2)
    assert all(link.impairment == imp for link in topo.client_links)
    assert all(link.impairment is None for link in topo.server_links)
    assert topo.link_for(Role.SERVER, 1).impairment is None
