#!/usr/bin/env python3

import argparse
import logging
import os
import sys

from rhai_setup.functions import announce, environment_variable_to_dict
from rhai_setup.steps import create_project, create_secrets, delete_project, deploy_model, find_gpu_pods

STEPS = {
    "create-project": create_project,
    "create-secrets": create_secrets,
    "deploy-model": deploy_model,
    "find-gpu-pods": find_gpu_pods,
    "delete-project": delete_project,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rhai-setup",
        description="Provision and tear down an OpenShift project for model serving. "
                    "Defaults come from the environment (PROJECT_NAME, MAX_WAIT_TIME, ...).",
    )
    parser.add_argument("--kubeconfig", type=str, help="Path to the kubeconfig to use (default: $KUBECONFIG or ~/.kube/config).")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Announce changes without making them.")
    parser.add_argument("--verbose", action="store_true", default=None, help="Log debug output, including every deletion check.")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-project", help="Create the project and apply its labels and annotations.")
    p.add_argument("--project", dest="project_name", help="Project name (PROJECT_NAME).")
    p.add_argument("--display-name", dest="display_name", help="Display name (DISPLAY_NAME).")
    p.add_argument("--requester", dest="requester", help="Requester annotation (REQUESTER).")

    p = sub.add_parser("create-secrets", help="Generate connection secrets from OCI model URIs.")
    p.add_argument("--uri", dest="model_uris", action="append", help="OCI model URI, repeatable (MODEL_URIS).")
    p.add_argument("--secrets-dir", dest="secrets_dir", help="Output directory (SECRETS_DIR).")
    p.add_argument("--no-apply", dest="apply_secrets", action="store_false", default=None,
                   help="Only write YAML files (APPLY_SECRETS=false).")
    p.add_argument("--namespace", dest="oc_project", help="Target project (OC_PROJECT).")

    p = sub.add_parser("deploy-model", help="Deploy a model manifest into the project.")
    p.add_argument("--models-dir", dest="models_dir", help="Directory holding manifests (MODELS_DIR).")
    p.add_argument("--model-file", dest="model_file", help="Manifest file name (MODEL_FILE).")
    p.add_argument("--namespace", dest="oc_project", help="Target project (OC_PROJECT).")

    p = sub.add_parser("find-gpu-pods", help="List pods using one GPU or more.")
    scope = p.add_mutually_exclusive_group()
    scope.add_argument("--all-namespaces", dest="all_namespaces", action="store_true", default=None,
                       help="Search every namespace (ALL_NAMESPACES=true).")
    scope.add_argument("--namespace", dest="oc_project", help="Search only this project.")

    p = sub.add_parser("delete-project", help="Delete the project and wait for it to disappear.")
    p.add_argument("--project", dest="project_name", help="Project name (PROJECT_NAME).")
    p.add_argument("--max-wait-time", dest="max_wait_time", type=int, help="Seconds to wait (MAX_WAIT_TIME, default 300).")
    p.add_argument("--poll-interval", dest="poll_interval", type=int, help="Seconds between checks (POLL_INTERVAL, default 5).")

    return parser


def merge_args(ev: dict, args: argparse.Namespace) -> dict:
    """Command line values win over the environment."""
    for key, value in vars(args).items():
        if key == "command" or value is None:
            continue
        ev[key] = value

    # --namespace for find-gpu-pods narrows the search to that project
    if args.command == "find-gpu-pods" and getattr(args, "oc_project", None):
        ev["all_namespaces"] = False
    # the secrets and the deployment follow --project unless OC_PROJECT says otherwise
    if getattr(args, "project_name", None) and not os.environ.get("OC_PROJECT"):
        ev["oc_project"] = args.project_name
    return ev


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    ev = {}
    try:
        environment_variable_to_dict(ev)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    merge_args(ev, args)

    if ev["verbose"]:
        logging.getLogger().setLevel(logging.DEBUG)

    os.environ["WORK_DIR"] = str(ev["work_dir"])
    os.environ["CURRENT_STEP"] = args.command

    try:
        return STEPS[args.command].run(ev)
    except KeyboardInterrupt:
        announce(f"Interrupted during {args.command}")
        return 130


if __name__ == "__main__":
    sys.exit(main())
