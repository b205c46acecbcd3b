import time

from rhai_setup.functions import announce, kube_connect
from rhai_setup.cluster import ProjectResource, whoami
from rhai_setup.exceptions import SetupError
from rhai_setup.waiter import DeletionConfig, DeletionResult, Outcome, ResourceDeletionWaiter

PRECONDITION_FAILED = 1


def report(result: DeletionResult, project_name: str):
    if result.outcome is Outcome.DELETED:
        announce(f"✅ {result.message}")
    elif result.outcome is Outcome.NOTHING_TO_DELETE:
        announce(f"⚠️ {result.message}")
    elif result.outcome is Outcome.TIMED_OUT:
        announce(f"⚠️ {result.message}")
        announce(f"You can check the status manually with: oc get project {project_name}")
    else:
        announce(f"❌ {result.message}")


def delete_project(projects: ProjectResource, project_name: str, config: DeletionConfig,
                   dry_run: bool = False, sleep=time.sleep) -> DeletionResult:
    waiter = ResourceDeletionWaiter(projects, config=config, sleep=sleep)
    result = waiter.run(project_name, dry_run=dry_run)
    report(result, project_name)
    return result


def run(ev: dict, sleep=time.sleep) -> int:
    project_name = ev["project_name"]

    if ev["dry_run"]:
        announce("DRY RUN enabled. No actual changes will be made.")

    try:
        config = DeletionConfig.from_env(ev)
    except ValueError as e:
        announce(f"❌ {e}")
        return PRECONDITION_FAILED

    try:
        api = kube_connect(ev["kubeconfig"])
        whoami(api)
    except SetupError as e:
        announce(f"❌ {e}")
        return PRECONDITION_FAILED

    announce(f"🔍 Checking project {project_name} ({ev['display_name']})...")
    result = delete_project(ProjectResource(api), project_name, config, dry_run=ev["dry_run"], sleep=sleep)
    return result.exit_code
