# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/state/resources.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, Union


class ResourceKind(str, Enum):
    POOL = "pool"
    NETWORK = "network"
    VOLUME = "volume"
    DOMAIN = "domain"

    @property
    def priority(self) -> int:
        return KIND_ORDER.index(self)


# creation order; destruction walks it backwards
KIND_ORDER: Tuple[ResourceKind, ...] = (
    ResourceKind.POOL,
    ResourceKind.NETWORK,
    ResourceKind.VOLUME,
    ResourceKind.DOMAIN,
)


def observed(default: Any = None) -> Any:
    """A field reported by the backend but never diffed."""
    return field(default=default, compare=False)


@dataclass(frozen=True)
class Network:
    kind: ClassVar[ResourceKind] = ResourceKind.NETWORK

    name: str
    mode: Optional[str] = "nat"
    domain: Optional[str] = None
    addresses: Optional[Tuple[str, ...]] = None
    dhcp: Optional[bool] = True
    dns: Optional[bool] = True
    uuid: Optional[str] = observed()
    active: Optional[bool] = observed()


@dataclass(frozen=True)
class Pool:
    kind: ClassVar[ResourceKind] = ResourceKind.POOL

    name: str
    type: Optional[str] = "dir"
    path: Optional[str] = None
    uuid: Optional[str] = observed()
    active: Optional[bool] = observed()
    capacity: Optional[int] = observed()
    allocation: Optional[int] = observed()


@dataclass(frozen=True)
class Volume:
    kind: ClassVar[ResourceKind] = ResourceKind.VOLUME

    name: str
    pool: Optional[str] = None
    format: Optional[str] = "qcow2"
    size: Optional[str] = None          # "20G"; None means whatever the source provides
    base_volume: Optional[str] = None   # clone source within the same pool
    source: Optional[str] = None        # URL to download
    purpose: Optional[str] = None       # "base" | "disk" | "bootstrap"
    path: Optional[str] = observed()
    capacity: Optional[int] = observed()


@dataclass(frozen=True)
class Domain:
    kind: ClassVar[ResourceKind] = ResourceKind.DOMAIN

    name: str
    memory: Optional[int] = None        # MiB
    vcpu: Optional[int] = None
    network: Optional[str] = None
    pool: Optional[str] = None
    disk_volume: Optional[str] = None
    bootstrap_volume: Optional[str] = None
    ip_address: Optional[str] = None
    running: Optional[bool] = True
    uuid: Optional[str] = observed()
    state: Optional[str] = observed()
    role: Optional[str] = observed()
    index: Optional[int] = observed()


Resource = Union[Network, Pool, Volume, Domain]

RESOURCE_TYPES: Dict[ResourceKind, Type] = {
    ResourceKind.POOL: Pool,
    ResourceKind.NETWORK: Network,
    ResourceKind.VOLUME: Volume,
    ResourceKind.DOMAIN: Domain,
}


def comparable_fields(resource: Resource) -> Tuple[str, ...]:
    return tuple(f.name for f in fields(resource) if f.compare and f.name != "name")


def changed_fields(current: Resource, desired: Resource) -> Tuple[str, ...]:
    """
    Field names whose values differ. A value of None on either side means
    "not observed" or "not specified" and is skipped.
    """
    changed = []
    for name in comparable_fields(desired):
        have = getattr(current, name)
        want = getattr(desired, name)
        if have is None or want is None:
            continue
        if have != want:
            changed.append(name)
    return tuple(changed)


def describe(resource: Resource) -> str:
    return f"{resource.kind.value} {resource.name}"


def resource_dict(resource: Resource) -> Dict[str, Any]:
    d = asdict(resource)
    d["kind"] = resource.kind.value
    if d.get("addresses") is not None:
        d["addresses"] = list(d["addresses"])
    return d
