#!/usr/bin/python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT

"""Self-contained Pod linter module for Ansible.

Lints every Pod of a Kubernetes cluster against a small set of health rules
and reports severity-classified issues per pod. The module connects to the
K8s API from the Ansible control node and works on a point-in-time list of
pods. Each pod is evaluated by its own linter; rules only look at presence or
absence of declarations and at the last reported status.

All API calls are read-only (list). Zero writes to the cluster.
"""

from __future__ import annotations

DOCUMENTATION = r"""
---
module: pod_lint_check
short_description: Lint Kubernetes pods for health and best-practice issues
version_added: "1.0.0"
description:
  - Lists pods in a Kubernetes cluster and runs a fixed set of lint rules
    against each pod - pod phase, container readiness, resource
    declarations, liveness and readiness probes.
  - Every issue carries a severity (ok, info, warn, error). Each pod is
    rolled up to the highest severity it produced.
  - Completely read-only. All API calls are list operations.
options:
  kubeconfig:
    description: Path to the kubeconfig file.
    type: path
    default: ~/.kube/config
  context:
    description: Kubeconfig context to use. Defaults to current context.
    type: str
  namespace:
    description: Limit linting to a single namespace. Omit for all namespaces.
    type: str
  severity_threshold:
    description: Minimum severity to include in results.
    type: str
    default: info
    choices: [info, warn, error]
  exclude_namespaces:
    description: Namespaces whose pods are skipped.
    type: list
    elements: str
    default: []
  workers:
    description: Number of worker threads used to lint pods.
    type: int
    default: 1
requirements:
  - kubernetes (Python package, same requirement as kubernetes.core collection)
author:
  - pod-lint contributors
"""

EXAMPLES = r"""
- name: Lint all pods in the current context
  pod_lint_check:
  register: lint

- name: Lint a single namespace, only report warnings and errors
  pod_lint_check:
    namespace: my-app
    severity_threshold: warn
  register: lint

- name: Skip system namespaces
  pod_lint_check:
    exclude_namespaces:
      - kube-system
      - kube-public
  register: lint

- name: Fail playbook if any pod has errors
  pod_lint_check:
  register: lint
  failed_when: lint.summary.error_count > 0
"""

RETURN = r"""
pods:
  description: Per-pod lint reports, only pods with issues at or above the threshold.
  type: list
  returned: always
  elements: dict
  sample:
    - resource: "Pod/default/my-pod"
      max_severity: "error"
      issues:
        - severity: "error"
          message: "container 'app' is running but not ready"
          group: "app"
summary:
  description: Overall lint summary.
  type: dict
  returned: always
  sample:
    overall_severity: "error"
    total_issues: 7
    error_count: 1
    warn_count: 2
    info_count: 4
    pod_count: 12
    pods_with_issues: 3
report_text:
  description: Human-readable text report.
  type: str
  returned: always
"""

import logging
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger("pod_lint_check")


# =====================================================================
# Models
# =====================================================================

class Severity(str, Enum):
    OK = "ok"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str) -> Severity:
        text = str(value).strip().lower()
        if text == "warning":
            text = "warn"
        for sev in cls:
            if sev.value == text:
                return sev
        raise ValueError(f"unknown severity {value!r}")


_SEVERITY_RANK = {
    Severity.OK: 0,
    Severity.INFO: 1,
    Severity.WARN: 2,
    Severity.ERROR: 3,
}


def max_severity(severities: Iterable[Severity]) -> Severity:
    return max(severities, key=lambda s: s.rank, default=Severity.OK)


@dataclass(frozen=True)
class ResourceKey:
    kind: str
    name: str
    namespace: str = ""

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class Issue:
    severity: Severity
    message: str
    group: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "group": self.group,
        }


class IssueCollector:
    """Ordered, append-only list of issues for one lint pass.

    The first issue in sequence is used by some consumers as a summary, so
    insertion order is part of the contract.
    """

    def __init__(self) -> None:
        self._issues: list[Issue] = []

    def append(self, severity: Severity, message: str, group: str | None = None) -> Issue:
        issue = Issue(severity=severity, message=message, group=group)
        self._issues.append(issue)
        return issue

    def all(self) -> tuple[Issue, ...]:
        return tuple(self._issues)

    def max_severity(self) -> Severity:
        return max_severity(i.severity for i in self._issues)

    def __len__(self) -> int:
        return len(self._issues)

    def __iter__(self) -> Iterator[Issue]:
        return iter(tuple(self._issues))


# =====================================================================
# Pod Snapshot
# =====================================================================

class PodPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class ContainerState(str, Enum):
    RUNNING = "Running"
    WAITING = "Waiting"
    TERMINATED = "Terminated"
    UNSET = "Unset"


@dataclass(frozen=True)
class ContainerStatusView:
    name: str = ""
    ready: bool = False
    state: ContainerState = ContainerState.UNSET


@dataclass(frozen=True)
class ContainerView:
    name: str
    has_resource_request: bool = False
    has_resource_limit: bool = False
    has_liveness_probe: bool = False
    has_readiness_probe: bool = False


@dataclass(frozen=True)
class PodSnapshot:
    name: str = ""
    namespace: str = ""
    phase: PodPhase | str = PodPhase.UNKNOWN.value
    containers: tuple[ContainerView, ...] = ()
    container_statuses: tuple[ContainerStatusView, ...] = ()
    init_container_statuses: tuple[ContainerStatusView, ...] = ()

    @property
    def key(self) -> ResourceKey:
        return ResourceKey("Pod", self.name or "unknown", self.namespace)


RESOURCE_NAMES = ("cpu", "memory")


def _field(obj: Any, attr: str, key: str | None = None) -> Any:
    """Read a field from a kubernetes client model or a manifest dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key or attr)
    return getattr(obj, attr, None)


def _declares(resource_list) -> bool:
    return any(name in RESOURCE_NAMES for name in (resource_list or {}))


def _container_view(container) -> ContainerView:
    resources = _field(container, "resources")
    return ContainerView(
        name=_field(container, "name") or "",
        has_resource_request=_declares(_field(resources, "requests")),
        has_resource_limit=_declares(_field(resources, "limits")),
        has_liveness_probe=_field(container, "liveness_probe", "livenessProbe") is not None,
        has_readiness_probe=_field(container, "readiness_probe", "readinessProbe") is not None,
    )


def _container_state(state) -> ContainerState:
    if _field(state, "running") is not None:
        return ContainerState.RUNNING
    if _field(state, "waiting") is not None:
        return ContainerState.WAITING
    if _field(state, "terminated") is not None:
        return ContainerState.TERMINATED
    return ContainerState.UNSET


def _status_view(cs) -> ContainerStatusView:
    return ContainerStatusView(
        name=_field(cs, "name") or "",
        ready=bool(_field(cs, "ready")),
        state=_container_state(_field(cs, "state")),
    )


def snapshot_from_pod(pod) -> PodSnapshot:
    """Build a PodSnapshot from a V1Pod or a pod manifest dict."""
    meta = _field(pod, "metadata")
    spec = _field(pod, "spec")
    status = _field(pod, "status")
    return PodSnapshot(
        name=_field(meta, "name") or "",
        namespace=_field(meta, "namespace") or "",
        phase=_field(status, "phase") or PodPhase.UNKNOWN.value,
        containers=tuple(_container_view(c) for c in _field(spec, "containers") or []),
        container_statuses=tuple(
            _status_view(cs) for cs in _field(status, "container_statuses", "containerStatuses") or []
        ),
        init_container_statuses=tuple(
            _status_view(cs) for cs in _field(status, "init_container_statuses", "initContainerStatuses") or []
        ),
    )


# =====================================================================
# Pod Rules
# =====================================================================

PHASE_HEALTHY = (PodPhase.RUNNING.value, PodPhase.SUCCEEDED.value)
KNOWN_PHASES = tuple(p.value for p in PodPhase)


def check_status(collector: IssueCollector, phase: PodPhase | str | None) -> None:
    phase = getattr(phase, "value", phase)
    if phase in PHASE_HEALTHY:
        return
    if phase in KNOWN_PHASES:
        collector.append(Severity.ERROR, f"Pod is in an unhealthy phase ({phase})")
        return
    collector.append(Severity.ERROR, f"Pod reports an unrecognized phase ({phase or 'none'})")


def check_container_status(
    collector: IssueCollector,
    statuses: Iterable[ContainerStatusView],
    is_init: bool,
) -> None:
    kind = "init container" if is_init else "container"
    for cs in statuses:
        if cs.ready:
            continue
        if cs.state == ContainerState.RUNNING:
            collector.append(Severity.ERROR, f"{kind} '{cs.name}' is running but not ready", cs.name)
        elif cs.state == ContainerState.TERMINATED:
            collector.append(Severity.WARN, f"{kind} '{cs.name}' has terminated and is not ready", cs.name)
        elif cs.state == ContainerState.WAITING:
            collector.append(Severity.WARN, f"{kind} '{cs.name}' is waiting to start", cs.name)
        else:
            # no state reported yet, same as waiting
            collector.append(Severity.WARN, f"{kind} '{cs.name}' has not reported a state yet", cs.name)


def check_containers(collector: IssueCollector, containers: Iterable[ContainerView]) -> None:
    for co in containers:
        if not (co.has_resource_request or co.has_resource_limit):
            collector.append(Severity.INFO, f"container '{co.name}' declares no resource requests or limits", co.name)
        if not co.has_liveness_probe:
            collector.append(Severity.INFO, f"container '{co.name}' has no liveness probe", co.name)
        if not co.has_readiness_probe:
            collector.append(Severity.INFO, f"container '{co.name}' has no readiness probe", co.name)


def check_probes(collector: IssueCollector, containers: Iterable[ContainerView]) -> None:
    for co in containers:
        if not co.has_liveness_probe:
            collector.append(Severity.INFO, f"container '{co.name}' has no liveness probe", co.name)
        if not co.has_readiness_probe:
            collector.append(Severity.INFO, f"container '{co.name}' has no readiness probe", co.name)


# =====================================================================
# Linters
# =====================================================================

class Linter:
    """Base for per-resource linters. One instance lints one resource."""

    kind = "Unknown"

    def __init__(self) -> None:
        self.collector = IssueCollector()

    def issues(self) -> tuple[Issue, ...]:
        return self.collector.all()

    def max_severity(self) -> Severity:
        return self.collector.max_severity()


class PodLinter(Linter):
    kind = "Pod"

    def lint(self, snap: PodSnapshot) -> tuple[Issue, ...]:
        logger.debug("linting %s", snap.key)
        check_status(self.collector, snap.phase)
        check_container_status(self.collector, snap.init_container_statuses, True)
        check_container_status(self.collector, snap.container_statuses, False)
        check_containers(self.collector, snap.containers)
        logger.debug("%s: %d issues, max severity %s", snap.key, len(self.collector), self.max_severity().value)
        return self.issues()

    def lint_pod(self, pod) -> tuple[Issue, ...]:
        return self.lint(snapshot_from_pod(pod))


# =====================================================================
# Cluster Pass
# =====================================================================

@dataclass
class PodReport:
    resource: ResourceKey
    issues: list[Issue] = field(default_factory=list)

    @property
    def max_severity(self) -> Severity:
        return max_severity(i.severity for i in self.issues)

    def count(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": str(self.resource),
            "max_severity": self.max_severity.value,
            "issues": [i.to_dict() for i in self.issues],
        }


def collect_pods(api_client, namespace: str | None = None) -> list[Any]:
    from kubernetes.client import CoreV1Api

    core = CoreV1Api(api_client)
    if namespace:
        result = core.list_namespaced_pod(namespace=namespace)
    else:
        result = core.list_pod_for_all_namespaces()
    logger.debug("listed %d pods", len(result.items))
    return list(result.items)


def _lint_one(pod) -> PodReport:
    snap = snapshot_from_pod(pod)
    linter = PodLinter()
    issues = linter.lint(snap)
    return PodReport(resource=snap.key, issues=list(issues))


def lint_pods(pods: Iterable[Any], exclude_namespaces: Iterable[str] = (), workers: int = 1) -> list[PodReport]:
    excluded = set(exclude_namespaces)
    selected = [p for p in pods if _field(_field(p, "metadata"), "namespace") not in excluded]
    if workers <= 1 or len(selected) < 2:
        return [_lint_one(p) for p in selected]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_lint_one, selected))


def filter_reports(reports: Iterable[PodReport], threshold: Severity) -> list[PodReport]:
    return [
        PodReport(resource=r.resource, issues=[i for i in r.issues if i.severity >= threshold])
        for r in reports
    ]


def build_summary(reports: list[PodReport]) -> dict[str, Any]:
    errors = sum(r.count(Severity.ERROR) for r in reports)
    warns = sum(r.count(Severity.WARN) for r in reports)
    infos = sum(r.count(Severity.INFO) for r in reports)
    return {
        "overall_severity": max_severity(r.max_severity for r in reports).value,
        "total_issues": sum(len(r.issues) for r in reports),
        "error_count": errors,
        "warn_count": warns,
        "info_count": infos,
        "pod_count": len(reports),
        "pods_with_issues": sum(1 for r in reports if r.issues),
    }


def generate_report_text(reports: list[PodReport], summary: dict[str, Any]) -> str:
    lines = [
        "# Pod Lint Report",
        f"Pods: {summary['pod_count']} | With issues: {summary['pods_with_issues']}",
        "",
        f"## Summary: {summary['total_issues']} issues "
        f"({summary['error_count']} error, {summary['warn_count']} warn, {summary['info_count']} info)",
    ]

    for report in reports:
        if not report.issues:
            continue
        lines.append(f"\n### {report.resource} [{report.max_severity.value.upper()}]")
        groups: dict[str, list[Issue]] = {}
        for issue in report.issues:
            groups.setdefault(issue.group or "", []).append(issue)
        for group, issues in groups.items():
            indent = "- "
            if group:
                lines.append(f"- {group}")
                indent = "    - "
            for i in sorted(issues, key=lambda x: -x.severity.rank):
                lines.append(f"{indent}[{i.severity.value.upper()}] {i.message}")

    return "\n".join(lines)


# =====================================================================
# Ansible Module Entry Point
# =====================================================================

def run_module():
    from ansible.module_utils.basic import AnsibleModule

    module = AnsibleModule(
        argument_spec=dict(
            kubeconfig=dict(type="path", default="~/.kube/config"),
            context=dict(type="str", default=None),
            namespace=dict(type="str", default=None),
            severity_threshold=dict(type="str", default="info", choices=["info", "warn", "error"]),
            exclude_namespaces=dict(type="list", elements="str", default=[]),
            workers=dict(type="int", default=1),
        ),
        supports_check_mode=True,
    )

    # Verify kubernetes package is available
    try:
        from kubernetes import client, config
        from kubernetes.config.config_exception import ConfigException
    except ImportError:
        module.fail_json(msg="The 'kubernetes' Python package is required. Install with: pip install kubernetes")
        return

    kubeconfig = module.params["kubeconfig"]
    context = module.params["context"]
    threshold = Severity.parse(module.params["severity_threshold"])

    try:
        try:
            config.load_kube_config(config_file=kubeconfig, context=context)
        except ConfigException:
            config.load_incluster_config()
        api_client = client.ApiClient()
    except Exception as e:
        module.fail_json(msg=f"Failed to connect to Kubernetes cluster: {e}")
        return

    try:
        pods = collect_pods(api_client, namespace=module.params["namespace"])
    except Exception as e:
        module.fail_json(msg=f"Failed to list pods: {e}")
        return

    reports = lint_pods(
        pods,
        exclude_namespaces=module.params["exclude_namespaces"],
        workers=module.params["workers"],
    )
    filtered = filter_reports(reports, threshold)
    summary = build_summary(filtered)

    module.exit_json(
        changed=False,
        summary=summary,
        pods=[r.to_dict() for r in filtered if r.issues],
        report_text=generate_report_text(filtered, summary),
    )


def main():
    run_module()


if __name__ == "__main__":
    main()
