from pathlib import Path

import requests
from pykube.exceptions import PyKubeError

from rhai_setup.functions import announce, kube_connect
from rhai_setup.cluster import whoami
from rhai_setup.connections import apply_secret, parse_model_uri, write_connection_secret
from rhai_setup.exceptions import InvalidModelUri, SetupError


def connect_for_apply(ev: dict):
    """Return a logged-in client, or None when secrets can only be written to disk."""
    try:
        api = kube_connect(ev["kubeconfig"])
        user = whoami(api)
    except SetupError as e:
        announce(f"⚠️ {e}")
        announce("⚠️ oc command not available or not logged in. Secrets will only be generated as YAML files.")
        return None

    announce(f"Secrets will be applied to project: {ev['oc_project']} (as {user})")
    return api


def generate_secrets(ev: dict, api=None) -> int:
    secrets_dir = Path(ev["secrets_dir"])
    namespace = ev["oc_project"]
    dry_run = ev["dry_run"]

    announce("Starting secret generation...")
    if not secrets_dir.is_dir():
        announce(f"Creating secrets directory: {secrets_dir}")
        try:
            secrets_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            announce(f"❌ Could not create secrets directory {secrets_dir}: {e}")
            return 1

    generated_count = 0
    applied_count = 0
    failures = 0

    for uri in ev["model_uris"]:
        announce(f"Processing URI: {uri}")
        try:
            model_uri = parse_model_uri(uri)
        except InvalidModelUri as e:
            announce(f"❌ Failed to extract model info from URI: {e}")
            failures += 1
            continue

        try:
            yaml_file = write_connection_secret(secrets_dir, model_uri)
        except OSError as e:
            announce(f"❌ Failed to write secret YAML for {uri}: {e}")
            failures += 1
            continue
        generated_count += 1

        if api is None:
            continue

        announce(f"Applying secret {model_uri.secret_name} to project {namespace}...")
        try:
            apply_secret(api, yaml_file.read_text(encoding="utf-8"), namespace, dry_run=dry_run)
        except (PyKubeError, requests.exceptions.RequestException) as e:
            announce(f"❌ Failed to apply secret {model_uri.secret_name} to project {namespace}: {e}")
            failures += 1
            continue
        announce(f"✅ Secret {model_uri.secret_name} applied successfully to project {namespace}")
        applied_count += 1

    announce("✅ Secret generation complete!")
    announce(f"Generated {generated_count} secret(s) in {secrets_dir}")
    if api is not None:
        announce(f"Applied {applied_count} secret(s) to project {namespace}")

    return 1 if failures else 0


def run(ev: dict) -> int:
    api = None
    if ev["apply_secrets"]:
        api = connect_for_apply(ev)
    else:
        announce("Skipping secret application (APPLY_SECRETS=false)")
    return generate_secrets(ev, api)
