# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/inventory/probe.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import paramiko

from ..errors import RetryError
from ..observers.dispatcher import EventBus
from ..observers.events import NodeReachable, NodeUnreachable, new_ctx
from ..state.resources import Domain
from ..utils.retry import retry_call

log = logging.getLogger("romulus")


@dataclass
class ProbeResult:
    name: str
    address: Optional[str]
    reachable: bool
    attempts: int = 0
    error: Optional[str] = None


def private_key_for(public_key_path: str) -> Optional[str]:
    """~/.ssh/id_ed25519.pub -> ~/.ssh/id_ed25519 when that file exists."""
    path = Path(public_key_path).expanduser()
    if path.suffix == ".pub" and path.with_suffix("").is_file():
        return str(path.with_suffix(""))
    return None


class SSHProbe:
    """
    Waits until freshly provisioned domains accept SSH logins.
    This is the hand-off point to the Kubernetes bootstrap.
    """

    def __init__(
        self,
        user: str,
        key_path: Optional[str] = None,
        port: int = 22,
        connect_timeout: float = 10.0,
        attempts: int = 30,
        delay: float = 10.0,
        observers: Optional[List] = None,
        run_ctx: Optional[dict] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.user = user
        self.key_path = key_path
        self.port = port
        self.connect_timeout = connect_timeout
        self.attempts = attempts
        self.delay = delay
        self.bus = EventBus(observers or [])
        self.run_ctx = run_ctx or new_ctx(env="romulus", context=None)
        self.client_factory = client_factory
        self.sleep = sleep

    def check(self, address: str) -> None:
        """One connection attempt; raises on failure."""
        client = self.client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=address,
                port=self.port,
                username=self.user,
                key_filename=self.key_path,
                timeout=self.connect_timeout,
                allow_agent=True,
                look_for_keys=self.key_path is None,
            )
        finally:
            client.close()

    def wait_for(self, domain: Domain) -> ProbeResult:
        if not domain.ip_address:
            return ProbeResult(domain.name, None, False, error="no IP address known")

        tries = {"n": 0}

        def attempt() -> None:
            tries["n"] += 1
            self.check(domain.ip_address)

        def on_retry(n: int, exc: Exception) -> None:
            log.debug(f"{domain.name} ({domain.ip_address}) not reachable yet (attempt {n}): {exc}")

        try:
            retry_call(
                attempt,
                max_attempts=self.attempts,
                delay=self.delay,
                retry_on=(paramiko.SSHException, OSError),
                on_retry=on_retry,
                sleep=self.sleep,
            )
        except RetryError as e:
            self.bus.emit(NodeUnreachable(name=domain.name, address=domain.ip_address, error=str(e), **self.run_ctx))
            return ProbeResult(domain.name, domain.ip_address, False, attempts=tries["n"], error=str(e))

        self.bus.emit(NodeReachable(name=domain.name, address=domain.ip_address, attempts=tries["n"], **self.run_ctx))
        return ProbeResult(domain.name, domain.ip_address, True, attempts=tries["n"])

    def wait_all(self, domains: Iterable[Domain]) -> Dict[str, ProbeResult]:
        return {d.name: self.wait_for(d) for d in domains}
