# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/config/models.py

from __future__ import annotations

import ipaddress
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ClusterSpec(BaseModel):
    name: str
    domain: str


class NetworkSpec(BaseModel):
    name: str
    mode: Literal["nat", "route", "open", "isolated"] = "nat"
    cidr: str
    dhcp: bool = True
    dns: bool = True

    @field_validator("cidr")
    @classmethod
    def _valid_cidr(cls, v: str) -> str:
        if ipaddress.ip_network(v, strict=False).version != 4:
            raise ValueError("only IPv4 networks are supported")
        return v


class BaseImageSpec(BaseModel):
    name: str
    url: str
    format: str = "qcow2"


class StorageSpec(BaseModel):
    pool_name: str
    pool_path: str
    base_image: BaseImageSpec


class NodeGroupSpec(BaseModel):
    count: int = Field(ge=0)
    memory: int = Field(gt=0, description="MiB")
    vcpus: int = Field(gt=0)
    disk_size: int = Field(gt=0, description="GiB")
    ip_prefix: str


class NodesSpec(BaseModel):
    masters: NodeGroupSpec
    workers: NodeGroupSpec

    def group(self, role: str) -> NodeGroupSpec:
        if role == "master":
            return self.masters
        if role == "worker":
            return self.workers
        raise ValueError(f"unknown node role '{role}'")


class SSHSpec(BaseModel):
    public_key_path: str
    user: str = "debian"


class KubernetesSpec(BaseModel):
    version: str = "1.28"
    pod_subnet: str = "10.244.0.0/16"
    service_subnet: str = "10.96.0.0/12"


class BootstrapSpec(BaseModel):
    cni: str = "flannel"
    ingress: str = "nginx"
    storage: str = "rook-ceph"
    monitoring: str = "prometheus"
    logging: str = "loki"


class RomulusConfig(BaseModel):
    cluster: ClusterSpec
    network: NetworkSpec
    storage: StorageSpec
    nodes: NodesSpec
    ssh: SSHSpec
    kubernetes: KubernetesSpec = Field(default_factory=KubernetesSpec)
    bootstrap: Optional[BootstrapSpec] = None
