# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/cloudinit/renderer.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from ..backend.documents import address_block
from ..backend.interface import NodePayload
from ..config.models import RomulusConfig
from ..errors import PayloadRenderError
from ..state.state import NODE_ROLES, node_name

log = logging.getLogger("romulus")

TEMPLATES_DIR = Path(__file__).parent / "templates"


class CloudInitRenderer:
    """
    Renders per-node NoCloud documents (user-data, network-config, meta-data).
    Output is checked to be valid YAML before it is handed to the backend.
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = Path(templates_dir or TEMPLATES_DIR)
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def _read_ssh_key(self, config: RomulusConfig) -> str:
        path = Path(config.ssh.public_key_path).expanduser()
        try:
            key = path.read_text().strip()
        except OSError as e:
            raise PayloadRenderError(f"Cannot read SSH public key {path}: {e}") from e
        if not key:
            raise PayloadRenderError(f"SSH public key {path} is empty")
        return key

    def context(self, role: str, index: int, config: RomulusConfig) -> Dict[str, Any]:
        if role not in NODE_ROLES:
            raise PayloadRenderError(f"unknown node role '{role}'")
        group = config.nodes.group(role)
        try:
            gateway = address_block(config.network.cidr).gateway
        except ValueError as e:
            raise PayloadRenderError(f"Cannot address network {config.network.cidr}: {e}") from e
        return {
            "hostname": node_name(role, index),
            "index": index,
            "domain": config.cluster.domain,
            "cluster_name": config.cluster.name,
            "ip_address": f"{group.ip_prefix}{index}",
            # the libvirt network always serves a /24
            "prefix_length": 24,
            "gateway": gateway,
            "control_plane_ip": f"{config.nodes.masters.ip_prefix}1",
            "ssh_user": config.ssh.user,
            "ssh_key": self._read_ssh_key(config),
            "kubernetes": config.kubernetes,
        }

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        try:
            text = self.env.get_template(template_name).render(**context)
        except TemplateError as e:
            raise PayloadRenderError(f"Failed to render {template_name}: {e}") from e
        try:
            yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise PayloadRenderError(f"{template_name} rendered invalid YAML: {e}") from e
        return text

    def generate_node_payload(self, role: str, index: int, config: RomulusConfig) -> NodePayload:
        ctx = self.context(role, index, config)
        hostname = ctx["hostname"]
        log.debug(f"rendering cloud-init for {hostname}")
        return NodePayload(
            user_data=self._render(f"user-data-{role}.yaml.j2", ctx),
            network_config=self._render("network-config.yaml.j2", ctx),
            meta_data=f"instance-id: {hostname}\nlocal-hostname: {hostname}\n",
        )
