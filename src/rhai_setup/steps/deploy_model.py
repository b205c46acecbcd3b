from dataclasses import dataclass
from pathlib import Path
from typing import List

import pykube
import requests
import yaml
from pykube.exceptions import PyKubeError

from rhai_setup.functions import announce, kube_connect
from rhai_setup.cluster import ProjectResource, whoami
from rhai_setup.connections import apply_secret, description_from_uri, render_connection_secret, secret_exists
from rhai_setup.exceptions import CheckFailed, ManifestError, SetupError

CONNECTIONS_ANNOTATION = "opendatahub.io/connections"


@dataclass
class ModelManifest:
    path: Path
    documents: List[dict]
    model_name: str
    connection_secret: str = ""
    model_uri: str = ""


def find_key(obj, key: str):
    """Depth-first search for the first value stored under ``key``."""
    if isinstance(obj, dict):
        if key in obj and isinstance(obj[key], str):
            return obj[key]
        for value in obj.values():
            found = find_key(value, key)
            if found:
                return found
    elif isinstance(obj, list):
        for item in obj:
            found = find_key(item, key)
            if found:
                return found
    return ""


def load_manifest(model_path: Path) -> ModelManifest:
    if not model_path.is_file():
        raise ManifestError(f"Model file not found: {model_path}")

    try:
        documents = [doc for doc in yaml.safe_load_all(model_path.read_text(encoding="utf-8")) if doc]
    except yaml.YAMLError as e:
        raise ManifestError(f"Could not parse {model_path}: {e}") from e

    if not documents or not isinstance(documents[0], dict):
        raise ManifestError(f"No resource found in {model_path}")

    first = documents[0]
    metadata = first.get("metadata") or {}
    model_name = metadata.get("name")
    if not model_name:
        raise ManifestError(f"Could not extract model name from {model_path}")

    return ModelManifest(
        path=model_path,
        documents=documents,
        model_name=model_name,
        connection_secret=(metadata.get("annotations") or {}).get(CONNECTIONS_ANNOTATION, ""),
        model_uri=find_key(first, "uri"),
    )


def create_secret_if_needed(api: pykube.HTTPClient, secret_name: str, uri: str, description: str,
                            namespace: str, dry_run: bool = False) -> int:
    announce(f"🔍 Checking if secret {secret_name} exists...")
    try:
        if secret_exists(api, secret_name, namespace):
            announce(f"Secret {secret_name} already exists. Skipping creation.")
            return 0
    except (PyKubeError, requests.exceptions.RequestException) as e:
        raise CheckFailed(f"Error checking secret {secret_name}: {e}") from e

    announce(f"🔑 Creating secret {secret_name}...")
    try:
        apply_secret(api, render_connection_secret(secret_name, uri, description), namespace, dry_run=dry_run)
    except (PyKubeError, requests.exceptions.RequestException) as e:
        announce(f"❌ Failed to create secret {secret_name}: {e}")
        return 1

    announce(f"✅ Secret {secret_name} created successfully")
    return 0


def apply_document(api: pykube.HTTPClient, doc: dict, namespace: str, dry_run: bool = False):
    kind = doc.get("kind")
    name = (doc.get("metadata") or {}).get("name")
    if not doc.get("apiVersion") or not kind or not name:
        raise ManifestError(f"Resource is missing apiVersion, kind or metadata.name: {doc}")

    if dry_run:
        announce(f'[DRY RUN] Would have applied {kind} "{name}" to project "{namespace}".')
        return

    resource_class = pykube.object_factory(api, doc["apiVersion"], kind)
    if issubclass(resource_class, pykube.objects.NamespacedAPIObject):
        doc["metadata"]["namespace"] = namespace

    obj = resource_class(api, doc)
    if obj.exists():
        obj.update()
    else:
        obj.create()


def deploy_model(api: pykube.HTTPClient, manifest: ModelManifest, namespace: str, dry_run: bool = False) -> int:
    announce(f"🚀 Deploying model from {manifest.path}...")
    announce(f"Deploying {manifest.documents[0].get('kind', 'resource')}: {manifest.model_name}")

    try:
        for doc in manifest.documents:
            apply_document(api, doc, namespace, dry_run=dry_run)
    # object_factory raises ValueError for a kind the API server does not serve
    except (PyKubeError, ValueError, requests.exceptions.RequestException) as e:
        announce(f"❌ Failed to deploy model {manifest.model_name}")
        announce(f"  {e}")
        return 1

    announce(f"✅ Model {manifest.model_name} deployed successfully")
    return 0


def deploy(api: pykube.HTTPClient, ev: dict) -> int:
    namespace = ev["oc_project"]
    dry_run = ev["dry_run"]

    announce("Starting model deployment...")
    announce(f"Project: {namespace}")

    if not ProjectResource(api).exists(namespace):
        announce(f"❌ Project {namespace} does not exist. Please create it first.")
        return 1

    manifest = load_manifest(Path(ev["models_dir"]) / ev["model_file"])

    if not manifest.connection_secret:
        announce("⚠️ No connection secret specified in model file. Skipping secret creation.")
    else:
        description = ""
        if manifest.model_uri:
            description = description_from_uri(manifest.model_uri)
        if not description:
            description = manifest.connection_secret

        if create_secret_if_needed(api, manifest.connection_secret, manifest.model_uri,
                                   description, namespace, dry_run=dry_run) != 0:
            announce("❌ Failed to create required secret. Aborting deployment.")
            return 1

    if deploy_model(api, manifest, namespace, dry_run=dry_run) != 0:
        announce("❌ Failed to deploy model. Aborting.")
        return 1

    announce("✅ Model deployment complete!")
    announce(f"Check status with: oc get {manifest.documents[0].get('kind', '').lower()} -n {namespace}")
    announce(f"Check pods with: oc get pods -n {namespace} | grep {manifest.model_name}")
    return 0


def run(ev: dict) -> int:
    if ev["dry_run"]:
        announce("DRY RUN enabled. No actual changes will be made.")

    try:
        api = kube_connect(ev["kubeconfig"])
        whoami(api)
        return deploy(api, ev)
    except SetupError as e:
        announce(f"❌ {e}")
        return 1
