# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/romulus/execution/runner.py

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..errors import BackendCommandError, BackendTimeoutError


@dataclass
class CommandRunner:
    """
    Runs argv lists (never a shell string) with stderr folded into stdout
    and a per-call timeout. Non-zero exits raise BackendCommandError.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("romulus"))
    label: Optional[str] = None
    timeout: float = 30.0

    def run(
        self,
        cmd: Sequence[str],
        *,
        timeout: Optional[float] = None,
        allow_rc: Optional[set] = None,
        label: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        label = label or self.label or "cmd"
        argv = [str(c) for c in cmd]
        allow_rc = allow_rc or {0}
        timeout = timeout if timeout is not None else self.timeout

        self.logger.debug(f"[{label}] $ {' '.join(argv)}")
        start = time.time()

        try:
            result = subprocess.run(
                argv,
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output if isinstance(e.output, str) else ""
            self.logger.debug(f"[{label}][timeout after {timeout}s]")
            raise BackendTimeoutError(argv, None, f"timed out after {timeout}s\n{output}") from e
        except FileNotFoundError as e:
            raise BackendCommandError(argv, 127, f"executable not found: {argv[0]}") from e

        duration = time.time() - start
        output = result.stdout or ""
        if output:
            self.logger.debug(f"[{label}][output]\n{output.rstrip()}")
        self.logger.debug(f"[{label}][exit {result.returncode}] ({duration:.2f}s)")

        if result.returncode not in allow_rc:
            raise BackendCommandError(argv, result.returncode, output.strip())
        return result
