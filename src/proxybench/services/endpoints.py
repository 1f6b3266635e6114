from __future__ import annotations

from proxybench.model.topology import Role, Topology

BACKEND_PORT = 8080
PROXY_HTTP_PORT = 8080
PROXY_HTTPS_PORT = 4443
DOCUMENT = "index.html"
MARKER = "Hello World"
DOCUMENT_BODY = f"{MARKER}!\n"


def backend_url(topology: Topology, index: int) -> str:
    addr = topology.link_for(Role.SERVER, index).peer_end.address
    return f"http://{addr}:{BACKEND_PORT}/{DOCUMENT}"


def proxy_http_url(topology: Topology, index: int) -> str:
    addr = topology.link_for(Role.CLIENT, index).proxy_end.address
    return f"http://{addr}:{PROXY_HTTP_PORT}/{DOCUMENT}"


def proxy_https_url(topology: Topology, index: int) -> str:
    addr = topology.link_for(Role.CLIENT, index).proxy_end.address
    return f"https://{addr}:{PROXY_HTTPS_PORT}/{DOCUMENT}"
