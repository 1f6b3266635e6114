from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from proxybench.config import BenchConfig
from proxybench.errors import ProvisioningError
from proxybench.model.affinity import CpuPlan
from proxybench.model.topology import Role, build_topology
from proxybench.runtime.commands import RecordingRunner
from proxybench.services.backend import backend_services, httpd_config
from proxybench.services.certs import CertificateBundle, create_certificate
from proxybench.services.haproxy import haproxy_config
from proxybench.services.nginx import cpu_affinity_masks, nginx_config
from proxybench.services.registry import available_proxies, load_proxy


def _certs(tmp_path: Path) -> CertificateBundle:
    return CertificateBundle(key=tmp_path / "t.key", crt=tmp_path / "t.crt", pem=tmp_path / "t.pem")


def test_haproxy_binds_every_client_link_and_lists_servers(tmp_path: Path) -> None:
    cfg = BenchConfig(server_count=2, client_count=2)
    topo = build_topology("pb-", 2, 2)
    text = haproxy_config(
        cfg, topo, pem_path=tmp_path / "t.pem", pid_path=tmp_path / "h.pid", cpu_plan=CpuPlan.from_config(cfg)
    )
    assert "    bind 10.222.1.1:8080\n" in text
    assert f"    bind 10.222.2.1:4443 ssl crt {tmp_path / 't.pem'}\n" in text
    assert "    server  app1 10.111.1.2:8080\n" in text
    assert "    server  app2 10.111.2.2:8080\n" in text
    assert "ssl-min-ver TLSv1.2 ssl-max-ver TLSv1.2" in text
    assert "ssl-default-bind-ciphers ECDHE-RSA-AES256-GCM-SHA384" in text
    assert "    nbthread 4\n" in text
    assert "    cpu-map auto:1/1-4 0-3\n" in text
    assert "qatengine" not in text


def test_haproxy_tls13_and_offload(tmp_path: Path) -> None:
    cfg = BenchConfig(
        tls_version="TLSv1.3",
        tls_cipher="TLS_AES_256_GCM_SHA384",
        use_hardware_offload=True,
        server_count=1,
        client_count=1,
    )
    text = haproxy_config(cfg, build_topology("pb-", 1, 1), pem_path=tmp_path / "p", pid_path=tmp_path / "q")
    assert "ssl-default-bind-ciphersuites TLS_AES_256_GCM_SHA384" in text
    assert "ssl-engine qatengine algo ALL" in text
    assert "ssl-mode-async" in text
    assert "cpu-map" not in text


def test_nginx_config_layout(tmp_path: Path) -> None:
    cfg = BenchConfig(server_count=2, client_count=2)
    text = nginx_config(
        cfg,
        build_topology("pb-", 2, 2),
        certs=_certs(tmp_path),
        pid_path=tmp_path / "n.pid",
        error_log=tmp_path / "err.log",
        cpu_plan=CpuPlan.from_config(cfg),
    )
    assert "worker_processes 4;" in text
    assert "worker_cpu_affinity 0001 0010 0100 1000;" in text
    assert "        server 10.111.2.2:8080;" in text
    assert "        listen 10.222.1.1:8080;" in text
    assert "        listen 10.222.2.1:4443 ssl;" in text
    assert "ssl_protocols TLSv1.2;" in text
    assert "ssl_ciphers ECDHE-RSA-AES256-GCM-SHA384;" in text
    assert "ssl_asynch" not in text
    assert "load_module" not in text
    assert text.count("proxy_pass http://backend;") == 2


def test_nginx_tls13_offload(tmp_path: Path) -> None:
    cfg = BenchConfig(tls_version="TLSv1.3", tls_cipher="TLS_AES_128_GCM_SHA256", use_hardware_offload=True)
    text = nginx_config(
        cfg, build_topology("pb-", 1, 1), certs=_certs(tmp_path), pid_path=tmp_path / "n.pid", error_log=tmp_path / "e"
    )
    assert "ssl_asynch on;" in text
    assert "use_engine qatengine;" in text
    assert "ssl_conf_command Ciphersuites TLS_AES_128_GCM_SHA256;" in text
    assert "worker_cpu_affinity" not in text


def test_cpu_affinity_masks_offset_range() -> None:
    assert cpu_affinity_masks(range(2, 4)) == ["0100", "1000"]


def test_backend_services_write_configs_and_pin(tmp_path: Path) -> None:
    cfg = BenchConfig(server_count=2, client_count=1, proxy_thread_count=2)
    topo = build_topology("pb-", 2, 1)
    specs = backend_services(topo, tmp_path, cpu_plan=CpuPlan.from_config(cfg))

    assert (tmp_path / "index.html").read_text(encoding="utf-8") == "Hello World!\n"
    assert [s.name for s in specs] == ["httpd-app-1", "httpd-app-2"]
    assert [s.cpus for s in specs] == ["2", "3"]
    assert all(s.role is Role.SERVER for s in specs)
    conf = (tmp_path / "httpd-app-2.conf").read_text(encoding="utf-8")
    assert "ServerName 10.111.2.2" in conf
    assert "Listen 8080" in conf
    assert specs[1].argv == ("httpd", "-d", str(tmp_path), "-f", str(tmp_path / "httpd-app-2.conf"))
    assert specs[1].pid_file == str(tmp_path / "httpd-app-2.pid")


def test_httpd_config_modules_dir() -> None:
    text = httpd_config(
        server_name="10.111.1.2",
        docroot=Path("/srv"),
        log_path=Path("/srv/e.log"),
        pid_path=Path("/srv/h.pid"),
        modules_dir="/opt/modules",
    )
    assert "LoadModule mpm_event_module /opt/modules/mod_mpm_event.so" in text
    assert 'DocumentRoot "/srv"' in text


def test_registry_renders_proxy_spec(tmp_path: Path) -> None:
    assert available_proxies() == ["haproxy", "nginx"]
    cfg = replace(BenchConfig(server_count=1, client_count=1), proxy="nginx")
    spec = load_proxy("nginx")(cfg, build_topology("pb-", 1, 1), tmp_path, _certs(tmp_path), None)
    assert spec.role is Role.PROXY
    assert spec.argv == ("nginx", "-c", str(tmp_path / "nginx.conf"))
    assert (tmp_path / "nginx.conf").is_file()
    with pytest.raises(KeyError):
        load_proxy("envoy")


def test_create_certificate_bundles_crt_and_key(tmp_path: Path) -> None:
    def responder(cmd):  # type: ignore[no-untyped-def]
        key = Path(cmd[cmd.index("-keyout") + 1])
        crt = Path(cmd[cmd.index("-out") + 1])
        key.write_text("KEY\n", encoding="utf-8")
        crt.write_text("CRT\n", encoding="utf-8")
        return None

    bundle = create_certificate(RecordingRunner(responder), tmp_path)
    assert bundle.pem == tmp_path / "testing.pem"
    assert bundle.pem.read_text(encoding="utf-8") == "CRT\nKEY\n"


def test_create_certificate_failure(tmp_path: Path) -> None:
    runner = RecordingRunner(lambda cmd: (1, "unable to write key"))
    with pytest.raises(ProvisioningError, match="certificate"):
        create_certificate(runner, tmp_path)
