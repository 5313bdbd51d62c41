# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/state/state.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple

from ..backend.documents import subnet_24
from ..config.models import RomulusConfig
from ..errors import DuplicateResourceError, ReferentialIntegrityError
from .resources import (
    KIND_ORDER,
    Domain,
    Network,
    Pool,
    Resource,
    ResourceKind,
    Volume,
    describe,
    resource_dict,
)

log = logging.getLogger("romulus")

NODE_ROLES: Tuple[str, ...] = ("master", "worker")


def node_name(role: str, index: int) -> str:
    return f"k8s-{role}-{index}"


def disk_volume_name(node: str) -> str:
    return f"{node}-disk"


def bootstrap_volume_name(node: str) -> str:
    return f"{node}-init.iso"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class State:
    """Immutable inventory snapshot: either what the host has or what the config wants."""

    networks: Tuple[Network, ...] = ()
    pools: Tuple[Pool, ...] = ()
    volumes: Tuple[Volume, ...] = ()
    domains: Tuple[Domain, ...] = ()
    # inactive pools whose volumes could not be listed
    unlisted_pools: Tuple[str, ...] = ()
    timestamp: str = field(default_factory=_now, compare=False)

    # ------------------------- constructors -------------------------

    @classmethod
    def empty(cls) -> "State":
        return cls()

    @classmethod
    def fetch_current(cls, backend) -> "State":
        """
        Query the backend for everything it holds. The first backend error
        propagates. An inactive pool cannot list its volumes: it is named in
        `unlisted_pools` so the planner leaves its volumes alone this run.
        """
        log.debug("fetching current state from backend")
        networks = tuple(backend.list_networks())
        pools = tuple(backend.list_pools())

        volumes: List[Volume] = []
        unlisted: List[str] = []
        for pool in pools:
            if pool.active is False:
                log.warning(f"pool {pool.name} is inactive; its volumes are planned once it runs again")
                unlisted.append(pool.name)
                continue
            volumes.extend(backend.list_volumes(pool.name))

        domains = tuple(backend.list_domains())
        state = cls(
            networks=networks,
            pools=pools,
            volumes=tuple(volumes),
            domains=domains,
            unlisted_pools=tuple(unlisted),
        )
        log.debug(f"current state: {state.counts()}")
        return state

    @classmethod
    def from_config(cls, config: RomulusConfig) -> "State":
        """Derive the desired inventory. Pure: no I/O, same config gives the same State."""
        net = config.network
        storage = config.storage
        image = storage.base_image

        network = Network(
            name=net.name,
            mode=net.mode,
            domain=config.cluster.domain,
            addresses=(subnet_24(net.cidr),),
            dhcp=net.dhcp,
            dns=net.dns,
        )
        pool = Pool(name=storage.pool_name, type="dir", path=storage.pool_path)
        base = Volume(
            name=image.name,
            pool=pool.name,
            format=image.format,
            source=image.url,
            purpose="base",
        )

        volumes: List[Volume] = [base]
        domains: List[Domain] = []
        for role in NODE_ROLES:
            group = config.nodes.group(role)
            for i in range(1, group.count + 1):
                node = node_name(role, i)
                disk = Volume(
                    name=disk_volume_name(node),
                    pool=pool.name,
                    format="qcow2",
                    size=f"{group.disk_size}G",
                    base_volume=base.name,
                    purpose="disk",
                )
                boot = Volume(
                    name=bootstrap_volume_name(node),
                    pool=pool.name,
                    format="raw",
                    purpose="bootstrap",
                )
                volumes.extend([disk, boot])
                domains.append(
                    Domain(
                        name=node,
                        memory=group.memory,
                        vcpu=group.vcpus,
                        network=network.name,
                        pool=pool.name,
                        disk_volume=disk.name,
                        bootstrap_volume=boot.name,
                        ip_address=f"{group.ip_prefix}{i}",
                        running=True,
                        role=role,
                        index=i,
                    )
                )

        state = cls(
            networks=(network,),
            pools=(pool,),
            volumes=tuple(volumes),
            domains=tuple(domains),
        )
        state.check_unique_names()
        return state

    # ------------------------- queries -------------------------

    def resources(self, kind: ResourceKind) -> Tuple[Resource, ...]:
        return {
            ResourceKind.POOL: self.pools,
            ResourceKind.NETWORK: self.networks,
            ResourceKind.VOLUME: self.volumes,
            ResourceKind.DOMAIN: self.domains,
        }[kind]

    def by_name(self, kind: ResourceKind) -> Dict[str, Resource]:
        return {r.name: r for r in self.resources(kind)}

    def names(self, kind: ResourceKind) -> set:
        return {r.name for r in self.resources(kind)}

    def all_resources(self) -> Iterable[Resource]:
        for kind in KIND_ORDER:
            yield from self.resources(kind)

    def counts(self) -> Dict[str, int]:
        return {kind.value: len(self.resources(kind)) for kind in KIND_ORDER}

    def is_empty(self) -> bool:
        return not any(self.resources(kind) for kind in KIND_ORDER)

    def check_unique_names(self) -> None:
        for kind in KIND_ORDER:
            seen = set()
            for r in self.resources(kind):
                if r.name in seen:
                    raise DuplicateResourceError(
                        f"Duplicate {kind.value} name '{r.name}'", resource=describe(r)
                    )
                seen.add(r.name)

    def union(self, other: "State") -> "State":
        """Name-deduplicated union; entries from `other` win on collision."""

        def merge(kind: ResourceKind) -> tuple:
            merged = self.by_name(kind)
            merged.update(other.by_name(kind))
            return tuple(merged.values())

        return State(
            networks=merge(ResourceKind.NETWORK),
            pools=merge(ResourceKind.POOL),
            volumes=merge(ResourceKind.VOLUME),
            domains=merge(ResourceKind.DOMAIN),
            unlisted_pools=tuple(dict.fromkeys(self.unlisted_pools + other.unlisted_pools)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "networks": [resource_dict(r) for r in self.networks],
            "pools": [resource_dict(r) for r in self.pools],
            "volumes": [resource_dict(r) for r in self.volumes],
            "domains": [resource_dict(r) for r in self.domains],
            "unlisted_pools": list(self.unlisted_pools),
        }


def managed_subset(current: State, desired: State) -> State:
    """
    The part of `current` this configuration owns: resources named in
    `desired`, volumes in a desired pool, and domains attached to a desired
    pool or network. Other host inventory is left out.
    """
    pools = desired.names(ResourceKind.POOL)
    networks = desired.names(ResourceKind.NETWORK)

    def owned(kind: ResourceKind, r: Resource) -> bool:
        if r.name in desired.names(kind):
            return True
        if kind is ResourceKind.VOLUME:
            return r.pool in pools
        if kind is ResourceKind.DOMAIN:
            return r.pool in pools or r.network in networks
        return False

    def pick(kind: ResourceKind) -> tuple:
        return tuple(r for r in current.resources(kind) if owned(kind, r))

    kept_pools = pick(ResourceKind.POOL)
    kept_pool_names = {p.name for p in kept_pools}
    return State(
        networks=pick(ResourceKind.NETWORK),
        pools=kept_pools,
        volumes=pick(ResourceKind.VOLUME),
        domains=pick(ResourceKind.DOMAIN),
        unlisted_pools=tuple(p for p in current.unlisted_pools if p in kept_pool_names),
        timestamp=current.timestamp,
    )


def validate_references(state: State) -> None:
    """
    Every pool, network or base volume a resource points at must exist in `state`.
    Raises ReferentialIntegrityError for the first dangling reference.
    """
    pools = state.names(ResourceKind.POOL)
    networks = state.names(ResourceKind.NETWORK)
    volumes = state.names(ResourceKind.VOLUME)

    for vol in state.volumes:
        if vol.pool is not None and vol.pool not in pools:
            raise ReferentialIntegrityError(describe(vol), f"pool {vol.pool}")
        if vol.base_volume is not None and vol.base_volume not in volumes:
            raise ReferentialIntegrityError(describe(vol), f"volume {vol.base_volume}")

    for dom in state.domains:
        if dom.network is not None and dom.network not in networks:
            raise ReferentialIntegrityError(describe(dom), f"network {dom.network}")
        if dom.pool is not None and dom.pool not in pools:
            raise ReferentialIntegrityError(describe(dom), f"pool {dom.pool}")
