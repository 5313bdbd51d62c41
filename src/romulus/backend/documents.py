# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/backend/documents.py

"""
Libvirt XML in both directions: jinja2 templates render definitions for
net-define/pool-define/define, and the parse_* helpers turn *-dumpxml output
back into resources.
"""

from __future__ import annotations

import ipaddress
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..state.resources import Domain, Network, Pool, Volume

TEMPLATES_DIR = Path(__file__).parent / "templates"

_UNITS: Dict[str, int] = {
    "b": 1,
    "bytes": 1,
    "k": 1024,
    "kib": 1024,
    "m": 1024**2,
    "mib": 1024**2,
    "g": 1024**3,
    "gib": 1024**3,
    "t": 1024**4,
    "tib": 1024**4,
    "kb": 1000,
    "mb": 1000**2,
    "gb": 1000**3,
    "tb": 1000**4,
}

_NODE_NAME = re.compile(r"^k8s-(master|worker)-(\d+)$")


@dataclass(frozen=True)
class AddressBlock:
    gateway: str
    netmask: str
    dhcp_start: str
    dhcp_end: str


# ------------------------- sizes -------------------------

def parse_size(value: str) -> int:
    """'20G' -> bytes. Bare numbers are bytes."""
    m = re.fullmatch(r"\s*(\d+)\s*([A-Za-z]*)\s*", str(value))
    if not m:
        raise ValueError(f"invalid size '{value}'")
    number, unit = m.groups()
    factor = _UNITS.get(unit.lower() or "b")
    if factor is None:
        raise ValueError(f"unknown size unit '{unit}' in '{value}'")
    return int(number) * factor


def format_size(num_bytes: int) -> str:
    """Bytes -> the largest binary unit that divides exactly ('20G', '10M', '1536K')."""
    for suffix, factor in (("T", 1024**4), ("G", 1024**3), ("M", 1024**2), ("K", 1024)):
        if num_bytes and num_bytes % factor == 0:
            return f"{num_bytes // factor}{suffix}"
    return f"{num_bytes}B"


def to_mib(value: str, unit: Optional[str]) -> int:
    return int(value) * _UNITS[(unit or "KiB").lower()] // 1024**2


# ------------------------- addressing -------------------------

def _octets(cidr: str) -> str:
    """First three octets of the network address: '10.20.0.0/16' -> '10.20.0'."""
    net = ipaddress.ip_network(cidr, strict=False)
    if net.version != 4:
        raise ValueError(f"network {cidr} is not IPv4")
    return str(net.network_address).rsplit(".", 1)[0]


def subnet_24(cidr: str) -> str:
    """The /24 the libvirt network actually serves for `cidr`."""
    return f"{_octets(cidr)}.0/24"


def address_block(cidr: str) -> AddressBlock:
    """
    Fixed convention, whatever the prefix length: the first three octets of
    the network address give gateway a.b.c.1, netmask 255.255.255.0 and
    DHCP a.b.c.100 - a.b.c.254.
    """
    base = _octets(cidr)
    return AddressBlock(
        gateway=f"{base}.1",
        netmask="255.255.255.0",
        dhcp_start=f"{base}.100",
        dhcp_end=f"{base}.254",
    )


# ------------------------- rendering -------------------------

class DocumentRenderer:
    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            undefined=StrictUndefined,
            autoescape=True,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, template_name: str, **context) -> str:
        return self.env.get_template(template_name).render(**context)

    def network_xml(self, network: Network) -> str:
        blocks = [address_block(a) for a in (network.addresses or ())]
        return self._render("network.xml.j2", network=network, addresses=blocks)

    def pool_xml(self, pool: Pool) -> str:
        if not pool.path:
            raise ValueError(f"pool {pool.name} has no target path")
        return self._render("pool.xml.j2", pool=pool)

    def domain_xml(self, domain: Domain) -> str:
        if domain.memory is None or domain.vcpu is None:
            raise ValueError(f"domain {domain.name} needs memory and vcpu")
        return self._render("domain.xml.j2", domain=domain)


# ------------------------- parsing -------------------------

def _text(root: ET.Element, path: str) -> Optional[str]:
    el = root.find(path)
    return el.text.strip() if el is not None and el.text else None


def _int(root: ET.Element, path: str) -> Optional[int]:
    value = _text(root, path)
    return int(value) if value is not None else None


def parse_network_xml(xml: str, active: Optional[bool] = None) -> Network:
    root = ET.fromstring(xml)
    forward = root.find("forward")
    domain = root.find("domain")
    dns = root.find("dns")

    addresses: List[str] = []
    dhcp = False
    for ip in root.findall("ip"):
        if ip.get("family", "ipv4") != "ipv4" or not ip.get("address"):
            continue
        mask = ip.get("netmask") or ip.get("prefix") or "24"
        addresses.append(str(ipaddress.ip_interface(f"{ip.get('address')}/{mask}").network))
        dhcp = dhcp or ip.find("dhcp") is not None

    return Network(
        name=_text(root, "name"),
        mode=forward.get("mode", "nat") if forward is not None else "isolated",
        domain=domain.get("name") if domain is not None else None,
        addresses=tuple(addresses),
        dhcp=dhcp,
        dns=not (dns is not None and dns.get("enable") == "no"),
        uuid=_text(root, "uuid"),
        active=active,
    )


def parse_pool_xml(xml: str, active: Optional[bool] = None) -> Pool:
    root = ET.fromstring(xml)
    return Pool(
        name=_text(root, "name"),
        type=root.get("type"),
        path=_text(root, "target/path"),
        uuid=_text(root, "uuid"),
        active=active,
        capacity=_int(root, "capacity"),
        allocation=_int(root, "allocation"),
    )


def parse_volume_xml(xml: str, pool: str) -> Volume:
    root = ET.fromstring(xml)
    fmt = root.find("target/format")
    capacity_el = root.find("capacity")
    capacity = None
    if capacity_el is not None and capacity_el.text:
        unit = capacity_el.get("unit", "bytes")
        capacity = int(capacity_el.text) * _UNITS[unit.lower()]
    return Volume(
        name=_text(root, "name"),
        pool=pool,
        format=fmt.get("type") if fmt is not None else None,
        size=format_size(capacity) if capacity else None,
        path=_text(root, "target/path"),
        capacity=capacity,
    )


def parse_domain_xml(xml: str, state: Optional[str] = None) -> Domain:
    root = ET.fromstring(xml)
    name = _text(root, "name")

    memory_el = root.find("memory")
    memory = None
    if memory_el is not None and memory_el.text:
        memory = to_mib(memory_el.text.strip(), memory_el.get("unit"))

    disk_volume = bootstrap_volume = pool = None
    for disk in root.findall("devices/disk"):
        source = disk.find("source")
        if disk.get("type") != "volume" or source is None:
            continue
        pool = pool or source.get("pool")
        if disk.get("device") == "cdrom":
            bootstrap_volume = source.get("volume")
        elif disk.get("device", "disk") == "disk" and disk_volume is None:
            disk_volume = source.get("volume")

    network = None
    for iface in root.findall("devices/interface"):
        source = iface.find("source")
        if iface.get("type") == "network" and source is not None:
            network = source.get("network")
            break

    role = index = None
    m = _NODE_NAME.match(name or "")
    if m:
        role, index = m.group(1), int(m.group(2))

    return Domain(
        name=name,
        memory=memory,
        vcpu=_int(root, "vcpu"),
        network=network,
        pool=pool,
        disk_volume=disk_volume,
        bootstrap_volume=bootstrap_volume,
        running=(state == "running") if state is not None else None,
        uuid=_text(root, "uuid"),
        state=state,
        role=role,
        index=index,
    )
