import yaml
import requests
from pykube.exceptions import PyKubeError

from rhai_setup.functions import announce, kube_connect
from rhai_setup.cluster import ProjectResource, whoami
from rhai_setup.exceptions import SetupError


def _flag(value) -> str:
    return str(value).lower()


def project_labels(ev: dict) -> dict:
    return {
        "kubernetes.io/metadata.name": ev["project_name"],
        "modelmesh-enabled": _flag(ev["modelmesh_enabled"]),
        "opendatahub.io/dashboard": _flag(ev["odh_dashboard_enabled"]),
        "pod-security.kubernetes.io/audit": ev["pod_security_audit"],
        "pod-security.kubernetes.io/audit-version": ev["pod_security_audit_version"],
        "pod-security.kubernetes.io/warn": ev["pod_security_warn"],
        "pod-security.kubernetes.io/warn-version": ev["pod_security_warn_version"],
    }


def project_annotations(ev: dict) -> dict:
    return {
        "openshift.io/display-name": ev["display_name"],
        "openshift.io/description": "",
        "openshift.io/requester": ev["requester"],
    }


def project_summary(project) -> str:
    metadata = project.obj.get("metadata", {})
    summary = {
        "name": metadata.get("name"),
        "displayName": metadata.get("annotations", {}).get("openshift.io/display-name", ""),
        "requester": metadata.get("annotations", {}).get("openshift.io/requester", ""),
        "status": project.obj.get("status", {}).get("phase", "Unknown"),
        "labels": metadata.get("labels", {}),
    }
    return yaml.safe_dump(summary, sort_keys=False)


def ensure_project(projects: ProjectResource, ev: dict, dry_run: bool = False) -> int:
    name = ev["project_name"]

    announce(f"🔍 Checking if project {name} exists...")
    if projects.exists(name):
        announce(f"Project {name} already exists. Ensuring configuration is up to date...")
    elif dry_run:
        announce(f'[DRY RUN] Would have created project "{name}" ({ev["display_name"]}).')
    else:
        announce(f"Creating OpenShift project: {name}")
        try:
            projects.create(name, ev["display_name"])
        except (PyKubeError, requests.exceptions.RequestException) as e:
            announce(f"❌ Failed to create project {name}: {e}")
            return 1

    if dry_run:
        announce(f"[DRY RUN] Would have applied labels {project_labels(ev)}")
        announce(f"[DRY RUN] Would have applied annotations {project_annotations(ev)}")
        return 0

    announce("Applying labels to project...")
    try:
        projects.update_metadata(name, labels=project_labels(ev))
        announce("✅ Labels applied successfully")
    except (PyKubeError, requests.exceptions.RequestException) as e:
        announce(f"⚠️ Some labels may have failed to apply, but continuing... ({e})")

    announce("Applying annotations to project...")
    try:
        projects.update_metadata(name, annotations=project_annotations(ev))
        announce("✅ Annotations applied successfully")
    except (PyKubeError, requests.exceptions.RequestException) as e:
        announce(f"⚠️ Some annotations may have failed to apply, but continuing... ({e})")

    announce("Verifying project configuration...")
    try:
        project = projects.get(name)
    except SetupError as e:
        announce(f"⚠️ Could not retrieve project details, but setup operations completed. ({e})")
        announce(f"✅ Setup operations completed for project '{ev['display_name']}'.")
        return 0

    print(project_summary(project))
    announce(f"✅ Setup complete! Project '{ev['display_name']}' is ready to use.")
    return 0


def run(ev: dict) -> int:
    dry_run = ev["dry_run"]
    if dry_run:
        announce("DRY RUN enabled. No actual changes will be made.")

    try:
        api = kube_connect(ev["kubeconfig"])
        whoami(api)
        return ensure_project(ProjectResource(api), ev, dry_run=dry_run)
    except SetupError as e:
        announce(f"❌ {e}")
        return 1
