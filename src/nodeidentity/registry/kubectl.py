"""Node registry backed by the kubectl binary."""

from __future__ import annotations

import json
import os
import subprocess

from nodeidentity.errors import (
    ConflictError,
    NodeIdentityError,
    NotFoundError,
    TransientError,
    ValidationError,
    not_found_message,
)
from nodeidentity.k8s.rbac_diagnostics import ForbiddenDiagnostic, parse_forbidden
from nodeidentity.models import Node
from nodeidentity.registry.base import DEFAULT_TIMEOUT_S


class ForbiddenError(NodeIdentityError):
    def __init__(self, message: str, diagnostic: ForbiddenDiagnostic | None) -> None:
        super().__init__(message)
        self.diagnostic = diagnostic


def _run_cmd(argv: list[str], timeout_s: float = DEFAULT_TIMEOUT_S) -> dict:
    """Run command capturing stdout/stderr. Never raises; returns a dict."""
    try:
        cp = subprocess.run(argv, capture_output=True, text=True, timeout=timeout_s)
        return {
            "argv": argv,
            "ok": cp.returncode == 0,
            "rc": cp.returncode,
            "stdout": cp.stdout,
            "stderr": cp.stderr,
            "error": None,
        }
    except FileNotFoundError as e:
        return {
            "argv": argv,
            "ok": False,
            "rc": 127,
            "stdout": "",
            "stderr": str(e),
            "error": "not_found",
        }
    except subprocess.TimeoutExpired as e:
        return {
            "argv": argv,
            "ok": False,
            "rc": 124,
            "stdout": e.stdout or "",
            "stderr": e.stderr or "",
            "error": "timeout",
        }


def _error_from_result(res: dict, name: str, verb: str) -> NodeIdentityError:
    stderr = (res.get("stderr") or "").strip()
    if res.get("error") == "not_found":
        return NodeIdentityError(f"kubectl binary not found: {stderr}")
    if res.get("error") == "timeout":
        return TransientError(f"kubectl {verb} node {name} timed out")
    if "(NotFound)" in stderr:
        return NotFoundError(not_found_message(name))
    if "(Conflict)" in stderr or "the object has been modified" in stderr:
        return ConflictError(stderr)
    if "(Forbidden)" in stderr:
        diagnostic = parse_forbidden(stderr)
        message = f"kubectl {verb} node {name} forbidden"
        if diagnostic is not None:
            message = f"{message}: {diagnostic.hint()}"
        return ForbiddenError(message, diagnostic)
    return TransientError(f"kubectl {verb} node {name} failed (rc={res.get('rc')}): {stderr}")


def _parse_node(stdout: str) -> Node:
    try:
        payload = json.loads(stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ValidationError(f"kubectl returned invalid node JSON: {exc}") from exc
    return Node.from_dict(payload)


class KubectlNodeRegistry:
    def __init__(
        self,
        kubectl: str | None = None,
        context: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.kubectl = kubectl or os.environ.get("KUBECTL", "kubectl")
        self.context = context
        self.timeout_s = timeout_s

    def _argv(self, *args: str) -> list[str]:
        argv = [self.kubectl]
        if self.context:
            argv.extend(["--context", self.context])
        argv.extend(args)
        return argv

    def _timeout(self, timeout_s: float | None) -> float:
        return self.timeout_s if timeout_s is None else timeout_s

    def get(self, name: str, timeout_s: float | None = None) -> Node:
        res = _run_cmd(self._argv("get", "node", name, "-o", "json"), timeout_s=self._timeout(timeout_s))
        if not res["ok"]:
            raise _error_from_result(res, name, "get")
        return _parse_node(res["stdout"])

    def patch(self, name: str, patch: dict, timeout_s: float | None = None) -> Node:
        body = json.dumps(patch, sort_keys=True, separators=(",", ":"))
        res = _run_cmd(
            self._argv("patch", "node", name, "--type", "merge", "-p", body, "-o", "json"),
            timeout_s=self._timeout(timeout_s),
        )
        if not res["ok"]:
            raise _error_from_result(res, name, "patch")
        return _parse_node(res["stdout"])
