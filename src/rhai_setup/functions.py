import os
from datetime import datetime
from typing import List

import pykube
from pykube.exceptions import PyKubeError

import logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from rhai_setup.exceptions import ToolUnavailable


DEFAULT_PROJECT_NAME = "demo-rh-ai-3-0"
DEFAULT_DISPLAY_NAME = "Demo RH AI 3.0"

DEFAULT_MODEL_URIS = [
    "oci://registry.redhat.io/rhelai1/modelcar-granite-8b-lab-v1:1.4.0",
    "oci://registry.redhat.io/rhelai1/modelcar-qwen2-5-7b-instruct-fp8-dynamic:1.5",
    "oci://registry.redhat.io/rhelai1/modelcar-mistral-small-24b-instruct-2501:1.5",
    "oci://registry.redhat.io/rhelai1/modelcar-kimi-k2-instruct-quantized-w4a16:1.5",
    "oci://registry.redhat.io/rhelai1/modelcar-llama-3-1-8b-instruct-fp8-dynamic:1.5",
]


def announce(message: str, logfile : str = None):
    work_dir = os.getenv("WORK_DIR", '.')
    log_dir = os.path.join(work_dir, 'logs')

    # ensure logs dir exists
    os.makedirs(log_dir, exist_ok=True)

    if not logfile:
        cur_step = os.getenv("CURRENT_STEP", 'step')
        logfile = cur_step + '.log'

    logpath = os.path.join(log_dir, logfile)

    logger.info(message)

    try:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        log_line = f"{timestamp} : {message}"
        with open(logpath, 'a', encoding='utf-8') as f:
            f.write(log_line + '\n')
    except IOError as e:
        logger.error(f"Could not write to log file '{logpath}'. Reason: {e}")


def kube_connect(config_path : str = None) -> pykube.HTTPClient:
    """
    Build a pykube client.

    Uses ``config_path`` when given, otherwise the in-cluster service account,
    ``$KUBECONFIG`` or ``~/.kube/config`` in that order.
    """
    try:
        if config_path:
            config = pykube.KubeConfig.from_file(os.path.expanduser(config_path))
        else:
            config = pykube.KubeConfig.from_env()
    except FileNotFoundError as e:
        raise ToolUnavailable(
            f"Kubeconfig file not found ({e}). Ensure you are logged into a cluster ('oc login')."
        ) from e
    except PyKubeError as e:
        raise ToolUnavailable(f"Could not load kubeconfig: {e}") from e

    return pykube.HTTPClient(config)


FLAG_KEYS = ["modelmesh_enabled", "odh_dashboard_enabled", "apply_secrets", "all_namespaces", "verbose", "dry_run"]


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def environment_variable_to_dict(ev: dict) -> dict:
    """
    Fill ``ev`` with the settings read from the environment.

    Keys are the lower-cased variable names. Unset variables get their
    default, "true"/"false" flag values become booleans and the wait settings
    become integers.
    """
    user = os.getenv("USER", "user")
    defaults = {
        "project_name": DEFAULT_PROJECT_NAME,
        "display_name": DEFAULT_DISPLAY_NAME,
        "requester": f"{user}@redhat.com",
        "modelmesh_enabled": "false",
        "odh_dashboard_enabled": "true",
        "pod_security_audit": "baseline",
        "pod_security_audit_version": "latest",
        "pod_security_warn": "baseline",
        "pod_security_warn_version": "latest",
        "max_wait_time": "300",
        "poll_interval": "5",
        "oc_project": "",
        "secrets_dir": "secrets",
        "apply_secrets": "true",
        "model_uris": ",".join(DEFAULT_MODEL_URIS),
        "models_dir": "models",
        "model_file": "llmd.yaml",
        "all_namespaces": "true",
        "kubeconfig": "",
        "work_dir": ".",
        "verbose": "false",
        "dry_run": "false",
    }

    for key, default in defaults.items():
        ev[key] = os.environ.get(key.upper(), default)

    # Convert true/false to boolean values
    for key in FLAG_KEYS:
        value = ev[key]
        if type(value) == str:
            lowered = value.lower()
            if lowered == "true":
                ev[key] = True
            if lowered == "false":
                ev[key] = False

    for int_key in ["max_wait_time", "poll_interval"]:
        try:
            ev[int_key] = int(ev[int_key])
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"{int_key.upper()} must be an integer number of seconds, got {ev[int_key]!r}"
            ) from e

    if isinstance(ev["model_uris"], str):
        ev["model_uris"] = _split_list(ev["model_uris"])

    # secrets, deployments and gpu lookups target OC_PROJECT when it is set
    ev["oc_project"] = ev["oc_project"] or ev["project_name"]
    ev["kubeconfig"] = ev["kubeconfig"] or None

    return ev
