# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/backend/virsh.py

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import requests

from ..errors import (
    BackendCommandError,
    BackendUnavailableError,
    RetryError,
)
from ..execution.runner import CommandRunner
from ..state.resources import Domain, Network, Pool, ResourceKind, Volume
from ..utils.retry import retry, retry_call
from .documents import (
    DocumentRenderer,
    parse_domain_xml,
    parse_network_xml,
    parse_pool_xml,
    parse_volume_xml,
)
from .interface import NodePayload

log = logging.getLogger("romulus")

DEFAULT_URI = "qemu:///system"
DEFAULT_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 300
BOOTSTRAP_VOLUME_SIZE = "10M"

_UNAVAILABLE_MARKERS = (
    "failed to connect to the hypervisor",
    "failed to connect socket",
    "no connection driver available",
)
_INACTIVE_MARKERS = (
    "is not active",
    "not running",
    "domain is not running",
)
_MISSING_VOLUME_MARKERS = (
    "storage vol not found",
    "no storage vol with matching",
)


def _is_unavailable(output: str) -> bool:
    lowered = output.lower()
    return any(m in lowered for m in _UNAVAILABLE_MARKERS)


def _is_inactive(output: str) -> bool:
    lowered = output.lower()
    return any(m in lowered for m in _INACTIVE_MARKERS)


def _is_missing_volume(output: str) -> bool:
    lowered = output.lower()
    return any(m in lowered for m in _MISSING_VOLUME_MARKERS)


def parse_table(output: str) -> List[List[str]]:
    """
    Rows of a virsh listing table (everything after the dashed rule),
    whitespace-split. Empty listings return [].
    """
    rows: List[List[str]] = []
    seen_rule = False
    for line in output.splitlines():
        stripped = line.strip()
        if not seen_rule:
            seen_rule = stripped.startswith("---")
            continue
        if stripped:
            rows.append(stripped.split())
    return rows


def parse_info(output: str) -> dict:
    """'Key:   value' lines of net-info/pool-info/dominfo."""
    info = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            info[key.strip()] = value.strip()
    return info


class VirshBackend:
    """
    Backend driving a libvirt host through the `virsh` CLI.
    - Every call is `virsh -c <uri> ...` as an argv list.
    - Testable by mocking subprocess.run.
    """

    def __init__(
        self,
        uri: str = DEFAULT_URI,
        runner: Optional[CommandRunner] = None,
        timeout: float = DEFAULT_TIMEOUT,
        download_timeout: float = DOWNLOAD_TIMEOUT,
        documents: Optional[DocumentRenderer] = None,
    ):
        self.uri = uri
        self.timeout = timeout
        self.download_timeout = download_timeout
        self.runner = runner or CommandRunner(label="virsh", timeout=timeout)
        self.documents = documents or DocumentRenderer()

    # ------------------------- internal helpers -------------------------

    def _argv(self, args: Sequence[str]) -> List[str]:
        return ["virsh", "-c", self.uri, *[str(a) for a in args]]

    def _virsh(self, args: Sequence[str], timeout: Optional[float] = None) -> str:
        argv = self._argv(args)
        try:
            cp = self.runner.run(argv, timeout=timeout or self.timeout, label="virsh")
        except BackendUnavailableError:
            raise
        except BackendCommandError as e:
            if _is_unavailable(e.output):
                raise BackendUnavailableError(e.argv, e.exit_code, e.output) from e
            raise
        return cp.stdout or ""

    def _stop(self, args: Sequence[str]) -> None:
        """destroy-style calls; stopping something already stopped is fine."""
        try:
            self._virsh(args)
        except BackendUnavailableError:
            raise
        except BackendCommandError as e:
            if not _is_inactive(e.output):
                raise
            log.debug(f"{args[0]} {args[-1]}: already inactive")

    @contextmanager
    def _xml_file(self, xml: str) -> Iterator[str]:
        """Scoped temp file holding an XML definition; removed on every exit path."""
        tf = tempfile.NamedTemporaryFile("w", suffix=".xml", prefix="romulus-", delete=False)
        try:
            with tf:
                tf.write(xml)
            yield tf.name
        finally:
            Path(tf.name).unlink(missing_ok=True)

    def _define(self, command: str, xml: str) -> None:
        with self._xml_file(xml) as path:
            self._virsh([command, path])

    @retry(retries=3, delay=5, retry_on=(requests.RequestException,))
    def _download(self, url: str, dest: Path) -> None:
        log.info(f"downloading {url}")
        with requests.get(url, stream=True, timeout=self.download_timeout) as r:
            r.raise_for_status()
            with dest.open("wb") as f:
                for chunk in r.iter_content(chunk_size=1 << 20):
                    if chunk:
                        f.write(chunk)

    @contextmanager
    def _fetched(self, source: str) -> Iterator[Path]:
        """Local copy of a volume source; downloads land in a scoped temp dir."""
        if source.startswith("file://"):
            yield Path(source[len("file://"):])
            return
        if os.path.isabs(source):
            yield Path(source)
            return
        with tempfile.TemporaryDirectory(prefix="romulus-download-") as tmp:
            dest = Path(tmp) / "image"
            try:
                self._download(source, dest)
            except RetryError as e:
                raise BackendCommandError(["download", source], None, str(e)) from e
            yield dest

    def _pool_names(self) -> List[str]:
        return [row[0] for row in parse_table(self._virsh(["pool-list", "--all"]))]

    # ------------------------- connectivity -------------------------

    def ping(self) -> None:
        """Verify the hypervisor answers; a few attempts before giving up."""
        try:
            retry_call(
                lambda: self._virsh(["version"]),
                max_attempts=3,
                delay=2,
                retry_on=(BackendCommandError,),
            )
        except RetryError as e:
            raise BackendUnavailableError(self._argv(["version"]), None, str(e)) from e

    # ------------------------- listings -------------------------

    def list_networks(self) -> List[Network]:
        networks = []
        for row in parse_table(self._virsh(["net-list", "--all"])):
            name, state = row[0], row[1] if len(row) > 1 else ""
            xml = self._virsh(["net-dumpxml", "--inactive", name])
            networks.append(parse_network_xml(xml, active=(state == "active")))
        return networks

    def list_pools(self) -> List[Pool]:
        pools = []
        for row in parse_table(self._virsh(["pool-list", "--all"])):
            name, state = row[0], row[1] if len(row) > 1 else ""
            xml = self._virsh(["pool-dumpxml", "--inactive", name])
            pools.append(parse_pool_xml(xml, active=(state in ("active", "running"))))
        return pools

    def list_volumes(self, pool: str) -> List[Volume]:
        volumes = []
        for row in parse_table(self._virsh(["vol-list", "--pool", pool])):
            xml = self._virsh(["vol-dumpxml", "--pool", pool, row[0]])
            volumes.append(parse_volume_xml(xml, pool=pool))
        return volumes

    def list_domains(self) -> List[Domain]:
        domains = []
        for row in parse_table(self._virsh(["list", "--all"])):
            # " Id   Name   State" where State may be two words ("shut off")
            if len(row) < 2:
                continue
            name, state = row[1], " ".join(row[2:])
            xml = self._virsh(["dumpxml", "--inactive", name])
            domains.append(parse_domain_xml(xml, state=state))
        return domains

    # ------------------------- create -------------------------

    def create_network(self, network: Network) -> None:
        self._define("net-define", self.documents.network_xml(network))
        self._virsh(["net-start", network.name])
        self._virsh(["net-autostart", network.name])

    def create_pool(self, pool: Pool) -> None:
        self._define("pool-define", self.documents.pool_xml(pool))
        self._virsh(["pool-build", pool.name])
        self._virsh(["pool-start", pool.name])
        self._virsh(["pool-autostart", pool.name])

    def create_volume(self, volume: Volume) -> None:
        fmt = volume.format or "qcow2"
        if volume.source:
            with self._fetched(volume.source) as image:
                size = image.stat().st_size
                self._virsh(["vol-create-as", volume.pool, volume.name, str(size), "--format", fmt])
                self._virsh(
                    ["vol-upload", "--pool", volume.pool, volume.name, str(image)],
                    timeout=self.download_timeout,
                )
        elif volume.base_volume:
            self._virsh(
                ["vol-clone", volume.base_volume, volume.name, "--pool", volume.pool],
                timeout=self.download_timeout,
            )
            if volume.size:
                self._virsh(["vol-resize", "--pool", volume.pool, volume.name, volume.size])
        else:
            size = volume.size or BOOTSTRAP_VOLUME_SIZE
            self._virsh(["vol-create-as", volume.pool, volume.name, size, "--format", fmt])

    def create_domain(self, domain: Domain) -> None:
        self._define("define", self.documents.domain_xml(domain))
        self._virsh(["autostart", domain.name])
        if domain.running is not False:
            self._virsh(["start", domain.name])

    # ------------------------- update -------------------------

    def update_network(self, network: Network) -> None:
        # persistent definition; a running network picks it up on its next start
        self._define("net-define", self.documents.network_xml(network))
        info = parse_info(self._virsh(["net-info", network.name]))
        if info.get("Active") != "yes":
            self._virsh(["net-start", network.name])

    def update_pool(self, pool: Pool) -> None:
        self._define("pool-define", self.documents.pool_xml(pool))
        info = parse_info(self._virsh(["pool-info", pool.name]))
        if info.get("State") != "running":
            self._virsh(["pool-start", pool.name])

    def update_volume(self, volume: Volume) -> None:
        if not volume.size:
            log.debug(f"volume {volume.name}: nothing to reconcile in place")
            return
        self._virsh(["vol-resize", "--pool", volume.pool, volume.name, volume.size])

    def update_domain(self, domain: Domain) -> None:
        # memory/vcpu land in the persistent config and apply on next boot
        self._define("define", self.documents.domain_xml(domain))
        state = self._virsh(["domstate", domain.name]).strip()
        if domain.running and state != "running":
            self._virsh(["start", domain.name])
        elif domain.running is False and state == "running":
            self._virsh(["shutdown", domain.name])

    # ------------------------- delete -------------------------

    def delete_network(self, name: str) -> None:
        self._stop(["net-destroy", name])
        self._virsh(["net-undefine", name])

    def delete_pool(self, name: str) -> None:
        self._stop(["pool-destroy", name])
        self._virsh(["pool-undefine", name])

    def delete_volume(self, name: str, pool: str) -> None:
        try:
            self._virsh(["vol-delete", name, "--pool", pool])
        except BackendUnavailableError:
            raise
        except BackendCommandError as e:
            # already removed along with the domain that used it
            if not _is_missing_volume(e.output):
                raise
            log.debug(f"volume {name} already gone from pool {pool}")

    def delete_domain(self, name: str) -> None:
        self._stop(["destroy", name])
        self._virsh(["undefine", name, "--remove-all-storage"])

    # ------------------------- probes -------------------------

    def exists(self, kind: ResourceKind, name: str) -> bool:
        if kind is ResourceKind.VOLUME:
            try:
                pools = self._pool_names()
            except BackendCommandError:
                return False
            return any(self._probe(["vol-info", "--pool", p, name]) for p in pools)

        probe = {
            ResourceKind.NETWORK: "net-info",
            ResourceKind.POOL: "pool-info",
            ResourceKind.DOMAIN: "dominfo",
        }[kind]
        return self._probe([probe, name])

    def _probe(self, args: Sequence[str]) -> bool:
        try:
            self._virsh(args)
        except BackendCommandError:
            return False
        return True

    # ------------------------- bootstrap payload -------------------------

    def write_bootstrap_payload(self, volume: str, pool: str, payload: NodePayload) -> None:
        """Pack the cloud-init documents into a NoCloud ISO and upload it into `volume`."""
        with tempfile.TemporaryDirectory(prefix="romulus-cidata-") as tmp:
            src = Path(tmp) / "cidata"
            src.mkdir()
            (src / "user-data").write_text(payload.user_data)
            (src / "meta-data").write_text(payload.meta_data)
            (src / "network-config").write_text(payload.network_config)

            iso = Path(tmp) / f"{volume}"
            self.runner.run(
                ["genisoimage", "-output", str(iso), "-volid", "cidata", "-joliet", "-rock", str(src)],
                timeout=self.timeout,
                label="genisoimage",
            )
            self._virsh(["vol-upload", "--pool", pool, volume, str(iso)])
