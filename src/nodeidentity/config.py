"""Cloud config loading.

The file is the YAML cloud config read by the cloud controller manager:

    global:
      clusterName: prod
      preferIPv6: false
      endpoints: ["10.0.0.2"]
    features:
      approveNodeCSR: true
    sync:
      attempts: 5
      backoffSeconds: 0.2

Environment variables override the file: NODEIDENTITY_CLUSTER_NAME,
NODEIDENTITY_PREFER_IPV6. KUBECTL selects the kubectl binary.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import yaml

from nodeidentity.errors import ValidationError
from nodeidentity.identity.labels import DEFAULT_SYNC_ATTEMPTS, DEFAULT_SYNC_BACKOFF_S
from nodeidentity.net.addresses import PlatformPolicy

ENV_CLUSTER_NAME = "NODEIDENTITY_CLUSTER_NAME"
ENV_PREFER_IPV6 = "NODEIDENTITY_PREFER_IPV6"
ENV_KUBECTL = "KUBECTL"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class GlobalConfig:
    cluster_name: str = ""
    prefer_ipv6: bool = False
    endpoints: list[str] = field(default_factory=list)


@dataclass
class FeaturesConfig:
    approve_node_csr: bool = True


@dataclass
class SyncConfig:
    attempts: int = DEFAULT_SYNC_ATTEMPTS
    backoff_s: float = DEFAULT_SYNC_BACKOFF_S


@dataclass
class CloudConfig:
    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    kubectl: str = "kubectl"

    def policy(self, platform: str, provided_ip: str = "") -> PlatformPolicy:
        return PlatformPolicy(
            platform=platform,
            prefer_ipv6=self.global_config.prefer_ipv6,
            provided_ip=provided_ip,
        )


def _section(payload: dict, key: str) -> dict:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"config section '{key}' must be a mapping")
    return value


def _bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ValidationError(f"config '{key}' must be a boolean")


def _str(value: object, key: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"config '{key}' must be a string")
    return value.strip()


def parse_cloud_config(payload: object) -> CloudConfig:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("cloud config must be a mapping")

    glob = _section(payload, "global")
    endpoints = glob.get("endpoints") or []
    if not isinstance(endpoints, list) or not all(isinstance(e, str) for e in endpoints):
        raise ValidationError("config 'global.endpoints' must be a list of strings")

    features = _section(payload, "features")
    sync = _section(payload, "sync")

    attempts = sync.get("attempts", DEFAULT_SYNC_ATTEMPTS)
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise ValidationError("config 'sync.attempts' must be a positive integer")
    backoff = sync.get("backoffSeconds", DEFAULT_SYNC_BACKOFF_S)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 0:
        raise ValidationError("config 'sync.backoffSeconds' must be a non-negative number")

    return CloudConfig(
        global_config=GlobalConfig(
            cluster_name=_str(glob.get("clusterName"), "global.clusterName"),
            prefer_ipv6=_bool(glob.get("preferIPv6", False), "global.preferIPv6"),
            endpoints=[e.strip() for e in endpoints if e.strip()],
        ),
        features=FeaturesConfig(
            approve_node_csr=_bool(features.get("approveNodeCSR", True), "features.approveNodeCSR"),
        ),
        sync=SyncConfig(attempts=attempts, backoff_s=float(backoff)),
    )


def load_cloud_config(path: Path | None = None, environ: Mapping[str, str] | None = None) -> CloudConfig:
    env = os.environ if environ is None else environ
    payload: object = {}
    if path is not None:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ValidationError(f"failed to read cloud config {path}: {exc}") from exc
        try:
            payload = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValidationError(f"failed to parse cloud config {path}: {exc}") from exc

    config = parse_cloud_config(payload)

    cluster_name = env.get(ENV_CLUSTER_NAME)
    if cluster_name is not None and cluster_name.strip():
        config.global_config.cluster_name = cluster_name.strip()
    prefer_ipv6 = env.get(ENV_PREFER_IPV6)
    if prefer_ipv6 is not None:
        config.global_config.prefer_ipv6 = _bool(prefer_ipv6, ENV_PREFER_IPV6)
    config.kubectl = (env.get(ENV_KUBECTL) or "").strip() or "kubectl"
    return config
