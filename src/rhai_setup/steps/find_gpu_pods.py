from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, List, Tuple

import urllib3
from kubernetes import client as k8s_client, config as k8s_config
from kubernetes.config.config_exception import ConfigException

from rhai_setup.functions import announce
from rhai_setup.exceptions import CheckFailed, NotLoggedIn, SetupError, ToolUnavailable

GPU_RESOURCE = "nvidia.com/gpu"


@dataclass
class GpuPod:
    namespace: str
    name: str
    gpus: int

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


def _is_set(value) -> bool:
    return value not in (None, "", "<none>", "null")


def _gpu_quantity(value) -> int:
    if not _is_set(value):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        announce(f"⚠️ Ignoring unexpected {GPU_RESOURCE} quantity {value!r}")
        return 0


def container_gpu_rows(pods) -> Iterable[Tuple[str, str, str, object, object]]:
    """Yield (namespace, pod, container, requested gpus, gpu limit) per container."""
    for pod in pods:
        for container in pod.spec.containers or []:
            resources = container.resources
            requests = (resources.requests if resources else None) or {}
            limits = (resources.limits if resources else None) or {}
            yield (
                pod.metadata.namespace,
                pod.metadata.name,
                container.name,
                requests.get(GPU_RESOURCE),
                limits.get(GPU_RESOURCE),
            )


def aggregate_gpu_pods(rows) -> List[GpuPod]:
    """
    Sum GPUs per pod. A container counts its limit when set, else its request.
    Only containers with at least one GPU contribute; result is sorted by
    namespace/pod.
    """
    pod_gpus = defaultdict(int)
    for namespace, pod_name, _container, request_gpu, limit_gpu in rows:
        if not pod_name:
            continue
        gpu_count = _gpu_quantity(limit_gpu if _is_set(limit_gpu) else request_gpu)
        if gpu_count >= 1:
            pod_gpus[(namespace, pod_name)] += gpu_count

    return [GpuPod(namespace, name, gpus) for (namespace, name), gpus in sorted(pod_gpus.items())]


def format_report(gpu_pods: List[GpuPod]) -> str:
    lines = [f"{'POD':<60} {'GPUs':<10}", f"{'---':<60} {'----':<10}"]
    for pod in gpu_pods:
        lines.append(f"{pod.key:<60} {pod.gpus:<10}")
    return "\n".join(lines)


def list_pods(core_api: k8s_client.CoreV1Api, namespace: str = None):
    try:
        if namespace:
            return core_api.list_namespaced_pod(namespace=namespace).items
        return core_api.list_pod_for_all_namespaces().items
    except k8s_client.ApiException as e:
        if e.status in (401, 403):
            raise NotLoggedIn(f"Not allowed to list pods ({e.status}). Please run 'oc login' first.") from e
        raise CheckFailed(f"Failed to fetch pods: {e.reason}") from e
    except urllib3.exceptions.HTTPError as e:
        raise CheckFailed(f"Failed to fetch pods: {e}") from e


def find_gpu_pods(core_api: k8s_client.CoreV1Api, ev: dict) -> int:
    announce("🔍 Finding pods using GPUs...")
    if ev["all_namespaces"]:
        announce("Searching all namespaces...")
        namespace = None
    else:
        namespace = ev["oc_project"]
        announce(f"Searching in project: {namespace}")

    pods = list_pods(core_api, namespace)
    if not pods:
        announce("⚠️ No pods found.")
        return 0

    gpu_pods = aggregate_gpu_pods(container_gpu_rows(pods))
    if not gpu_pods:
        announce("⚠️ No pods found using GPUs.")
        return 0

    announce(f"✅ Found {len(gpu_pods)} pod(s) using GPUs:")
    print(format_report(gpu_pods))
    announce(f"Total GPUs in use: {sum(pod.gpus for pod in gpu_pods)}")
    return 0


def run(ev: dict) -> int:
    try:
        try:
            k8s_config.load_kube_config(config_file=ev["kubeconfig"])
        except (ConfigException, FileNotFoundError) as e:
            raise ToolUnavailable(f"Could not load kubeconfig: {e}") from e
        return find_gpu_pods(k8s_client.CoreV1Api(), ev)
    except SetupError as e:
        announce(f"❌ {e}")
        return 1
