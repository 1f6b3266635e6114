from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from proxybench.errors import CommandError, ProvisioningError
from proxybench.runtime.commands import CommandRunner

log = logging.getLogger("proxybench.certs")

SUBJECT = "/C=XX/ST=StateName/L=CityName/O=CompanyName/OU=CompanySectionName/CN=CommonNameOrHostname"


@dataclass(frozen=True)
class CertificateBundle:
    key: Path
    crt: Path
    pem: Path


def openssl_argv(key: Path, crt: Path, *, bits: int = 2048, days: int = 1) -> list[str]:
    return [
        "openssl",
        "req",
        "-x509",
        "-newkey",
        f"rsa:{bits}",
        "-keyout",
        str(key),
        "-out",
        str(crt),
        "-sha256",
        "-days",
        str(days),
        "-nodes",
        "-subj",
        SUBJECT,
    ]


def create_certificate(runner: CommandRunner, workdir: Path, name: str = "testing") -> CertificateBundle:
    """Self-signed certificate plus a crt+key PEM bundle for the proxy and ab."""
    workdir = Path(workdir)
    bundle = CertificateBundle(
        key=workdir / f"{name}.key",
        crt=workdir / f"{name}.crt",
        pem=workdir / f"{name}.pem",
    )
    log.info("creating self-signed certificate %s", bundle.pem)
    try:
        runner.run(openssl_argv(bundle.key, bundle.crt))
    except CommandError as exc:
        raise ProvisioningError(f"certificate generation failed: {exc}") from exc
    try:
        crt = bundle.crt.read_text(encoding="utf-8")
        key = bundle.key.read_text(encoding="utf-8")
    except OSError:
        # a recording runner does not produce files
        crt, key = "", ""
    bundle.pem.write_text(crt + key, encoding="utf-8")
    return bundle
