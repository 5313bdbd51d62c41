import threading
import time
import textwrap
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from romulus.errors import BackendCommandError, BackendUnavailableError
from romulus.state.resources import Domain, Network, Pool, ResourceKind, Volume


class FakeBackend:
    """
    In-memory libvirt host. Enforces the same dependencies libvirt does
    (volumes need their pool, domains need network and volumes, a pool
    with volumes cannot be removed) so ordering mistakes show up as failures.
    """

    uri = "test:///fake"

    def __init__(
        self,
        fail: Optional[Set[Tuple[str, str]]] = None,
        unavailable: bool = False,
        delay: float = 0.0,
        unavailable_on: Optional[Set[Tuple[str, str]]] = None,
    ):
        self.networks: Dict[str, Network] = {}
        self.pools: Dict[str, Pool] = {}
        self.volumes: Dict[str, Volume] = {}
        self.domains: Dict[str, Domain] = {}
        self.payloads: Dict[str, object] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail = fail or set()
        self.unavailable = unavailable
        self.unavailable_on = unavailable_on or set()
        self.delay = delay
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def _record(self, op: str, name: str) -> None:
        with self._lock:
            self.calls.append((op, name))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        if (self.unavailable and op != "list") or (op, name) in self.unavailable_on:
            raise BackendUnavailableError(["virsh", op, name], 1, "failed to connect to the hypervisor")
        if (op, name) in self.fail:
            raise BackendCommandError(["virsh", op, name], 1, f"{op} {name} failed")

    # seeding helpers
    def seed(self, *resources):
        for r in resources:
            table = {
                ResourceKind.NETWORK: self.networks,
                ResourceKind.POOL: self.pools,
                ResourceKind.VOLUME: self.volumes,
                ResourceKind.DOMAIN: self.domains,
            }[r.kind]
            table[r.name] = r
        return self

    def ping(self):
        if self.unavailable:
            raise BackendUnavailableError(["virsh", "version"], 1, "failed to connect to the hypervisor")

    def list_networks(self):
        self._record("list", "networks")
        return list(self.networks.values())

    def list_pools(self):
        self._record("list", "pools")
        return list(self.pools.values())

    def list_volumes(self, pool):
        self._record("list", f"volumes:{pool}")
        return [v for v in self.volumes.values() if v.pool == pool]

    def list_domains(self):
        self._record("list", "domains")
        return list(self.domains.values())

    def create_network(self, network):
        self._record("create_network", network.name)
        self.networks[network.name] = replace(network, active=True)

    def create_pool(self, pool):
        self._record("create_pool", pool.name)
        self.pools[pool.name] = replace(pool, active=True)

    def create_volume(self, volume):
        self._record("create_volume", volume.name)
        with self._lock:
            if volume.pool not in self.pools:
                raise BackendCommandError(["vol-create-as"], 1, f"pool {volume.pool} not found")
            if volume.base_volume and volume.base_volume not in self.volumes:
                raise BackendCommandError(["vol-clone"], 1, f"volume {volume.base_volume} not found")
            self.volumes[volume.name] = volume

    def create_domain(self, domain):
        self._record("create_domain", domain.name)
        with self._lock:
            if domain.network and domain.network not in self.networks:
                raise BackendCommandError(["define"], 1, f"network {domain.network} not found")
            for vol in (domain.disk_volume, domain.bootstrap_volume):
                if vol and vol not in self.volumes:
                    raise BackendCommandError(["define"], 1, f"volume {vol} not found")
            self.domains[domain.name] = replace(domain, state="running")

    def update_network(self, network):
        self._record("update_network", network.name)
        self.networks[network.name] = replace(network, active=True)

    def update_pool(self, pool):
        self._record("update_pool", pool.name)
        self.pools[pool.name] = replace(pool, active=True)

    def update_volume(self, volume):
        self._record("update_volume", volume.name)
        self.volumes[volume.name] = volume

    def update_domain(self, domain):
        self._record("update_domain", domain.name)
        self.domains[domain.name] = replace(domain, state="running")

    def delete_network(self, name):
        self._record("delete_network", name)
        with self._lock:
            if any(d.network == name for d in self.domains.values()):
                raise BackendCommandError(["net-undefine"], 1, f"network {name} in use")
            self.networks.pop(name)

    def delete_pool(self, name):
        self._record("delete_pool", name)
        with self._lock:
            if any(v.pool == name for v in self.volumes.values()):
                raise BackendCommandError(["pool-undefine"], 1, f"pool {name} not empty")
            self.pools.pop(name)

    def delete_volume(self, name, pool):
        self._record("delete_volume", name)
        with self._lock:
            self.volumes.pop(name)

    def delete_domain(self, name):
        self._record("delete_domain", name)
        with self._lock:
            self.domains.pop(name)

    def exists(self, kind, name):
        table = {
            ResourceKind.NETWORK: self.networks,
            ResourceKind.POOL: self.pools,
            ResourceKind.VOLUME: self.volumes,
            ResourceKind.DOMAIN: self.domains,
        }[kind]
        return name in table

    def write_bootstrap_payload(self, volume, pool, payload):
        self._record("write_bootstrap_payload", volume)
        self.payloads[volume] = payload

    def mutations(self):
        return [c for c in self.calls if c[0] != "list"]


class FakePayloads:
    def __init__(self, fail_for: Optional[str] = None):
        self.calls = []
        self.fail_for = fail_for

    def generate_node_payload(self, role, index, config):
        self.calls.append((role, index))
        if self.fail_for == f"{role}-{index}":
            raise ValueError("template exploded")
        from romulus.backend.interface import NodePayload
        return NodePayload(user_data="#cloud-config\n", network_config="version: 2\n", meta_data="")


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


CONFIG_YAML = textwrap.dedent("""
    cluster:
      name: lab
      domain: k8s.lab
    network:
      name: k8s-net
      cidr: 10.10.10.0/24
    storage:
      pool_name: k8s-pool
      pool_path: /var/lib/libvirt/images/k8s
      base_image:
        name: debian-12-base.qcow2
        url: https://cloud.debian.org/images/cloud/bookworm/latest/debian-12-generic-amd64.qcow2
    nodes:
      masters:
        count: 1
        memory: 4096
        vcpus: 2
        disk_size: 30
        ip_prefix: 10.10.10.1
      workers:
        count: 2
        memory: 8192
        vcpus: 4
        disk_size: 50
        ip_prefix: 10.10.10.2
    ssh:
      public_key_path: {key}
""")


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def ssh_key(tmp_path: Path) -> Path:
    key = tmp_path / "id_ed25519.pub"
    key.write_text("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITestKey ops@lab\n")
    return key


@pytest.fixture
def config_file(tmp_path: Path, ssh_key: Path) -> Path:
    f = tmp_path / "romulus.yaml"
    f.write_text(CONFIG_YAML.format(key=ssh_key))
    return f


@pytest.fixture
def config(config_file: Path):
    from romulus.config.loader import load_config
    return load_config(config_file)


@pytest.fixture
def fake_payloads():
    return FakePayloads
