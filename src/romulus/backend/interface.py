# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/backend/interface.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

from ..state.resources import Domain, Network, Pool, ResourceKind, Volume


@dataclass(frozen=True)
class NodePayload:
    """Rendered cloud-init documents for one node."""

    user_data: str
    network_config: str
    meta_data: str


class Backend(Protocol):
    """
    Contract between the engine and a virtualization host.
    Implementations raise BackendCommandError (or a subclass) on failure.
    """

    def ping(self) -> None: ...

    def list_networks(self) -> List[Network]: ...
    def list_pools(self) -> List[Pool]: ...
    def list_volumes(self, pool: str) -> List[Volume]: ...
    def list_domains(self) -> List[Domain]: ...

    def create_network(self, network: Network) -> None: ...
    def create_pool(self, pool: Pool) -> None: ...
    def create_volume(self, volume: Volume) -> None: ...
    def create_domain(self, domain: Domain) -> None: ...

    def update_network(self, network: Network) -> None: ...
    def update_pool(self, pool: Pool) -> None: ...
    def update_volume(self, volume: Volume) -> None: ...
    def update_domain(self, domain: Domain) -> None: ...

    def delete_network(self, name: str) -> None: ...
    def delete_pool(self, name: str) -> None: ...
    def delete_volume(self, name: str, pool: str) -> None: ...
    def delete_domain(self, name: str) -> None: ...

    def exists(self, kind: ResourceKind, name: str) -> bool: ...

    def write_bootstrap_payload(self, volume: str, pool: str, payload: NodePayload) -> None: ...
