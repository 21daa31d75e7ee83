"""Sandboxed evaluation for custom-logic (code) nodes.

Two layers:
1. ``check_code`` - a static, pattern-based pre-filter that rejects oversized
   code and known escape patterns before anything runs.
2. ``SandboxedEvaluator`` - runs the snippet in a separate ``python -I``
   process with a reduced builtins table, a wall-clock deadline (the process
   is killed) and an address-space limit where ``resource`` is available.

SECURITY: the pattern filter is NOT a security boundary. Regexes over source
text can be bypassed by encoding tricks; they only catch obvious mistakes and
casual abuse. Isolation comes from the child process and its limits, and even
that is same-host execution without a syscall filter. Do not run code from
untrusted users without an OS-level sandbox (container, seccomp) around it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any

from nodeflow.core.cancellation import CancellationToken
from nodeflow.core.config import SandboxLimits
from nodeflow.core.errors import DeadlineExceededError, FlowValidationError, NodeExecutionError

logger = logging.getLogger(__name__)

RUNNER_PATH = Path(__file__).with_name("_runner.py")

# (pattern, description) - checked in order, first match wins
DENY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (
        re.compile(r"\b(globals|locals|vars)\s*\(\s*\)\s*\[|__builtins__\s*\[|__dict__\s*\["),
        "dynamic access into global objects",
    ),
    (
        re.compile(
            r"__(class|bases|base|mro|subclasses|globals|code|closure|func|self|"
            r"getattribute|init_subclass|reduce|reduce_ex|loader|spec)__"
        ),
        "class/constructor escape",
    ),
    (
        re.compile(
            r"\b(globals|locals|vars|eval|exec|compile|open|breakpoint|getattr|setattr|"
            r"delattr|__import__)\s*\(|\b__builtins__\b|\bbuiltins\b"
        ),
        "reference to a global execution context",
    ),
    (re.compile(r"^\s*(import|from)\s+\w", re.MULTILINE), "import statement"),
    (re.compile(r"\b(sys|os|subprocess|importlib|ctypes|socket)\s*\."), "system module access"),
    (
        re.compile(
            r"\bwhile\s*\(?\s*(True|1|not\s+False)\s*\)?\s*:|"
            r"\bitertools\s*\.\s*(count|cycle|repeat)\b"
        ),
        "unbounded loop",
    ),
    (re.compile(r"\b(async|await)\b"), "asynchronous control keyword"),
]


def check_code(code: str, max_length: int = SandboxLimits.max_code_length) -> None:
    """Reject code before execution. Raises FlowValidationError."""
    if not code or not code.strip():
        raise FlowValidationError("No code to evaluate")
    if len(code) > max_length:
        raise FlowValidationError(
            f"Code exceeds maximum length ({len(code)} > {max_length} characters)"
        )
    for pattern, description in DENY_PATTERNS:
        match = pattern.search(code)
        if match:
            raise FlowValidationError(
                f"Code rejected: {description} ('{match.group(0).strip()}')"
            )


class SandboxedEvaluator:
    """Evaluate custom code in a child interpreter.

    The snippet sees ``input`` (primary input text) and ``inputs`` (port ->
    value) and must assign ``output``. Non-string outputs are JSON-encoded.
    """

    def __init__(self, limits: SandboxLimits | None = None, python: str | None = None):
        self.limits = limits or SandboxLimits()
        self.python = python or sys.executable

    async def evaluate(
        self,
        code: str,
        inputs: dict[str, Any],
        token: CancellationToken | None = None,
        node_id: str | None = None,
    ) -> str:
        check_code(code, self.limits.max_code_length)
        if token is not None:
            return await token.guard(self._run(code, inputs, node_id), node_id=node_id)
        return await self._run(code, inputs, node_id)

    async def _run(self, code: str, inputs: dict[str, Any], node_id: str | None) -> str:
        primary = inputs.get("input")
        if primary is None and inputs:
            primary = next(iter(inputs.values()))
        job = json.dumps(
            {
                "code": code,
                "input": primary if primary is not None else "",
                "inputs": inputs,
                "memory_limit_mb": self.limits.memory_limit_mb,
            }
        ).encode("utf-8")

        proc = await asyncio.create_subprocess_exec(
            self.python,
            "-I",
            str(RUNNER_PATH),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(job), timeout=self.limits.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise DeadlineExceededError(
                f"Custom code timed out after {self.limits.timeout}s", node_id=node_id
            )
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        return self._parse_result(stdout, stderr, proc.returncode, node_id)

    def _parse_result(
        self, stdout: bytes, stderr: bytes, returncode: int | None, node_id: str | None
    ) -> str:
        if len(stdout) > self.limits.max_output_bytes:
            raise NodeExecutionError(
                f"Custom code output exceeded {self.limits.max_output_bytes} bytes",
                node_id=node_id,
            )
        try:
            result = json.loads(stdout.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            message = detail[-1] if detail else f"exit code {returncode}"
            logger.error(f"Custom code process failed: {message}")
            raise NodeExecutionError(f"Custom code failed: {message}", node_id=node_id)

        if not result.get("ok"):
            raise NodeExecutionError(
                f"Custom code error: {result.get('error', 'unknown error')}", node_id=node_id
            )
        return result["output"]
