"""Parsing of Kubernetes RBAC Forbidden errors returned by kubectl."""

from __future__ import annotations

import re
from dataclasses import dataclass


_FORBIDDEN_PATTERN = re.compile(
    r'User\s+"(?P<user>[^"]+)"\s+cannot\s+(?P<verb>[a-z]+)\s+resource\s+"(?P<resource>[^"]+)"\s+'
    r'in\s+API\s+group\s+"(?P<api_group>[^"]*)"'
    r'(?:\s+in\s+the\s+namespace\s+"(?P<namespace>[^"]+)")?',
    re.IGNORECASE,
)

_NAME_PATTERN = re.compile(r'"(?P<name>[^"]+)"\s+is forbidden:', re.IGNORECASE)


@dataclass(frozen=True)
class ForbiddenDiagnostic:
    user: str
    verb: str
    resource: str
    api_group: str
    namespace: str | None
    name: str | None

    @property
    def scope(self) -> str:
        return "namespaced" if self.namespace else "cluster"

    def suggested_rule(self) -> dict:
        rule = {
            "apiGroups": [self.api_group],
            "resources": [self.resource],
            "verbs": [self.verb],
        }
        if self.name:
            rule["resourceNames"] = [self.name]
        return rule

    def hint(self) -> str:
        if self.namespace:
            role, binding = f'Role in namespace "{self.namespace}"', "RoleBinding"
        else:
            role, binding = "ClusterRole", "ClusterRoleBinding"
        return (
            f"grant a {role} allowing {self.verb} on {self.resource} "
            f'and bind it to "{self.user}" with a {binding}'
        )

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "verb": self.verb,
            "resource": self.resource,
            "api_group": self.api_group,
            "namespace": self.namespace,
            "name": self.name,
            "scope": self.scope,
            "suggested_rule": self.suggested_rule(),
            "hint": self.hint(),
        }


def parse_forbidden(text: object) -> ForbiddenDiagnostic | None:
    if not isinstance(text, str):
        return None
    raw = text.strip()
    lower = raw.lower()
    if "forbidden" not in lower or "cannot" not in lower:
        return None

    match = _FORBIDDEN_PATTERN.search(raw)
    if not match:
        return None
    name_match = _NAME_PATTERN.search(raw)
    return ForbiddenDiagnostic(
        user=match.group("user"),
        verb=match.group("verb").lower(),
        resource=match.group("resource"),
        api_group=match.group("api_group"),
        namespace=match.group("namespace"),
        name=name_match.group("name") if name_match else None,
    )
