#!/usr/bin/env python3

"""
Unit tests for the setup steps
The cluster is replaced with mocks; announcements are collected per test.
"""

import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pykube
import urllib3
import yaml
from kubernetes import client as k8s_client
from pykube.exceptions import HTTPError

from rhai_setup.exceptions import CheckFailed, ManifestError, NotLoggedIn, ResourceNotFound, ToolUnavailable
from rhai_setup.steps import create_project, create_secrets, delete_project, deploy_model, find_gpu_pods
from rhai_setup.waiter import DeletionConfig, Outcome


def base_ev(**overrides) -> dict:
    ev = {
        "project_name": "demo-rh-ai-3-0",
        "display_name": "Demo RH AI 3.0",
        "requester": "jdoe@redhat.com",
        "modelmesh_enabled": False,
        "odh_dashboard_enabled": True,
        "pod_security_audit": "baseline",
        "pod_security_audit_version": "latest",
        "pod_security_warn": "baseline",
        "pod_security_warn_version": "latest",
        "max_wait_time": 10,
        "poll_interval": 5,
        "oc_project": "demo-rh-ai-3-0",
        "secrets_dir": "secrets",
        "apply_secrets": True,
        "model_uris": [],
        "models_dir": "models",
        "model_file": "llmd.yaml",
        "all_namespaces": True,
        "kubeconfig": None,
        "work_dir": ".",
        "verbose": False,
        "dry_run": False,
    }
    ev.update(overrides)
    return ev


class StepTestCase(unittest.TestCase):
    module_under_test = None

    def setUp(self):
        self.announce_calls = []

        def mock_announce(message):
            print(f"[TEST ANNOUNCE] {message}")
            self.announce_calls.append(message)

        patcher = patch.object(self.module_under_test, "announce", mock_announce)
        patcher.start()
        self.addCleanup(patcher.stop)

    def announced(self, text) -> bool:
        return any(text in call for call in self.announce_calls)


class TestCreateProject(StepTestCase):
    """Tests for steps.create_project"""
    module_under_test = create_project

    def setUp(self):
        super().setUp()
        self.projects = MagicMock()
        self.projects.get.return_value.obj = {
            "metadata": {
                "name": "demo-rh-ai-3-0",
                "annotations": {"openshift.io/display-name": "Demo RH AI 3.0"},
                "labels": {"modelmesh-enabled": "false"},
            },
            "status": {"phase": "Active"},
        }

    def test_labels(self):
        labels = create_project.project_labels(base_ev())

        self.assertEqual(labels["kubernetes.io/metadata.name"], "demo-rh-ai-3-0")
        self.assertEqual(labels["modelmesh-enabled"], "false")
        self.assertEqual(labels["opendatahub.io/dashboard"], "true")
        self.assertEqual(labels["pod-security.kubernetes.io/warn-version"], "latest")

    def test_annotations(self):
        annotations = create_project.project_annotations(base_ev())

        self.assertEqual(annotations, {
            "openshift.io/display-name": "Demo RH AI 3.0",
            "openshift.io/description": "",
            "openshift.io/requester": "jdoe@redhat.com",
        })

    def test_creates_missing_project(self):
        self.projects.exists.return_value = False

        result = create_project.ensure_project(self.projects, base_ev())

        self.assertEqual(result, 0)
        self.projects.create.assert_called_once_with("demo-rh-ai-3-0", "Demo RH AI 3.0")
        self.assertEqual(self.projects.update_metadata.call_count, 2)
        self.assertTrue(self.announced("Setup complete!"))

    def test_existing_project_is_reconciled(self):
        self.projects.exists.return_value = True

        result = create_project.ensure_project(self.projects, base_ev())

        self.assertEqual(result, 0)
        self.projects.create.assert_not_called()
        self.assertTrue(self.announced("already exists"))

    def test_create_failure_is_fatal(self):
        self.projects.exists.return_value = False
        self.projects.create.side_effect = HTTPError(403, "Forbidden")

        result = create_project.ensure_project(self.projects, base_ev())

        self.assertEqual(result, 1)
        self.projects.update_metadata.assert_not_called()

    def test_label_failure_is_a_warning(self):
        self.projects.exists.return_value = True
        self.projects.update_metadata.side_effect = [HTTPError(422, "invalid label"), None]

        result = create_project.ensure_project(self.projects, base_ev())

        self.assertEqual(result, 0)
        self.assertTrue(self.announced("Some labels may have failed to apply"))
        self.assertTrue(self.announced("Annotations applied successfully"))

    def test_summary_unavailable(self):
        self.projects.exists.return_value = True
        self.projects.get.side_effect = ResourceNotFound("Project", "demo-rh-ai-3-0")

        result = create_project.ensure_project(self.projects, base_ev())

        self.assertEqual(result, 0)
        self.assertTrue(self.announced("Could not retrieve project details"))

    def test_dry_run(self):
        self.projects.exists.return_value = False

        result = create_project.ensure_project(self.projects, base_ev(), dry_run=True)

        self.assertEqual(result, 0)
        self.projects.create.assert_not_called()
        self.projects.update_metadata.assert_not_called()

    def test_summary_yaml(self):
        summary = yaml.safe_load(create_project.project_summary(self.projects.get.return_value))

        self.assertEqual(summary["name"], "demo-rh-ai-3-0")
        self.assertEqual(summary["status"], "Active")

    @patch("rhai_setup.steps.create_project.kube_connect", side_effect=ToolUnavailable("no kubeconfig"))
    def test_run_without_kubeconfig(self, kube_connect):
        self.assertEqual(create_project.run(base_ev()), 1)
        self.assertTrue(self.announced("no kubeconfig"))


class TestCreateSecrets(StepTestCase):
    """Tests for steps.create_secrets"""
    module_under_test = create_secrets

    def setUp(self):
        super().setUp()
        connections_patcher = patch("rhai_setup.connections.announce")
        connections_patcher.start()
        self.addCleanup(connections_patcher.stop)
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.secrets_dir = Path(self.tmp.name) / "secrets"
        self.uris = [
            "oci://registry.redhat.io/rhelai1/modelcar-granite-8b-lab-v1:1.4.0",
            "oci://registry.redhat.io/rhelai1/modelcar-llama-3-1-8b-instruct-fp8-dynamic:1.5",
        ]

    def test_files_only(self):
        ev = base_ev(secrets_dir=str(self.secrets_dir), model_uris=self.uris, apply_secrets=False)

        result = create_secrets.run(ev)

        self.assertEqual(result, 0)
        self.assertEqual(
            sorted(p.name for p in self.secrets_dir.iterdir()),
            ["granite-8b-lab-v1-140.yaml", "llama-3-1-8b-instruct-fp8-dynamic-15.yaml"],
        )
        self.assertTrue(self.announced("Generated 2 secret(s)"))

    @patch("rhai_setup.steps.create_secrets.apply_secret")
    def test_apply(self, apply_secret):
        ev = base_ev(secrets_dir=str(self.secrets_dir), model_uris=self.uris)
        api = MagicMock()

        result = create_secrets.generate_secrets(ev, api)

        self.assertEqual(result, 0)
        self.assertEqual(apply_secret.call_count, 2)
        self.assertEqual(apply_secret.call_args[0][2], "demo-rh-ai-3-0")
        self.assertTrue(self.announced("Applied 2 secret(s) to project demo-rh-ai-3-0"))

    @patch("rhai_setup.steps.create_secrets.apply_secret")
    def test_bad_uri_is_skipped(self, apply_secret):
        ev = base_ev(secrets_dir=str(self.secrets_dir), model_uris=["oci://quay.io/org/catalog:1"] + self.uris)

        result = create_secrets.generate_secrets(ev, MagicMock())

        self.assertEqual(result, 1)
        self.assertEqual(apply_secret.call_count, 2)

    @patch("rhai_setup.steps.create_secrets.apply_secret", side_effect=HTTPError(403, "Forbidden"))
    def test_apply_failure(self, apply_secret):
        ev = base_ev(secrets_dir=str(self.secrets_dir), model_uris=self.uris[:1])

        result = create_secrets.generate_secrets(ev, MagicMock())

        self.assertEqual(result, 1)
        self.assertTrue(self.announced("Applied 0 secret(s)"))

    @patch("rhai_setup.steps.create_secrets.apply_secret")
    @patch("rhai_setup.steps.create_secrets.write_connection_secret", side_effect=PermissionError(13, "Permission denied"))
    def test_write_failure(self, write_connection_secret, apply_secret):
        ev = base_ev(secrets_dir=str(self.secrets_dir), model_uris=self.uris)

        result = create_secrets.generate_secrets(ev, MagicMock())

        self.assertEqual(result, 1)
        self.assertEqual(write_connection_secret.call_count, 2)
        apply_secret.assert_not_called()
        self.assertTrue(self.announced("Generated 0 secret(s)"))

    def test_secrets_dir_is_a_file(self):
        blocker = Path(self.tmp.name) / "blocker"
        blocker.write_text("", encoding="utf-8")
        ev = base_ev(secrets_dir=str(blocker / "secrets"), model_uris=self.uris, apply_secrets=False)

        result = create_secrets.run(ev)

        self.assertEqual(result, 1)
        self.assertTrue(self.announced("Could not create secrets directory"))

    @patch("rhai_setup.steps.create_secrets.whoami", side_effect=NotLoggedIn("Not logged in"))
    @patch("rhai_setup.steps.create_secrets.kube_connect")
    def test_not_logged_in_falls_back_to_files(self, kube_connect, whoami):
        ev = base_ev(secrets_dir=str(self.secrets_dir), model_uris=self.uris)

        result = create_secrets.run(ev)

        self.assertEqual(result, 0)
        self.assertTrue(self.announced("Secrets will only be generated as YAML files"))
        self.assertEqual(len(list(self.secrets_dir.iterdir())), 2)


MANIFEST = """apiVersion: serving.kserve.io/v1alpha1
kind: LLMInferenceService
metadata:
  name: llama-3-2-3b-instruct
  annotations:
    opendatahub.io/connections: llama-32-3b-instruct
spec:
  model:
    uri: oci://quay.io/redhat-ai-services/modelcar-catalog:llama-3.2-3b-instruct
"""


class TestDeployModel(StepTestCase):
    """Tests for steps.deploy_model"""
    module_under_test = deploy_model

    def setUp(self):
        super().setUp()
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.models_dir = Path(self.tmp.name)
        (self.models_dir / "llmd.yaml").write_text(MANIFEST)
        self.ev = base_ev(models_dir=str(self.models_dir))

        patcher = patch("rhai_setup.steps.deploy_model.ProjectResource")
        self.project_resource = patcher.start()
        self.addCleanup(patcher.stop)
        self.project_resource.return_value.exists.return_value = True

    def test_load_manifest(self):
        manifest = deploy_model.load_manifest(self.models_dir / "llmd.yaml")

        self.assertEqual(manifest.model_name, "llama-3-2-3b-instruct")
        self.assertEqual(manifest.connection_secret, "llama-32-3b-instruct")
        self.assertEqual(manifest.model_uri, "oci://quay.io/redhat-ai-services/modelcar-catalog:llama-3.2-3b-instruct")

    def test_missing_manifest(self):
        with self.assertRaises(ManifestError):
            deploy_model.load_manifest(self.models_dir / "absent.yaml")

    def test_manifest_without_name(self):
        path = self.models_dir / "noname.yaml"
        path.write_text("apiVersion: v1\nkind: ConfigMap\nmetadata: {}\n")

        with self.assertRaises(ManifestError):
            deploy_model.load_manifest(path)

    @patch("rhai_setup.steps.deploy_model.apply_document")
    @patch("rhai_setup.steps.deploy_model.apply_secret")
    @patch("rhai_setup.steps.deploy_model.secret_exists", return_value=False)
    def test_creates_secret_then_deploys(self, secret_exists, apply_secret, apply_document):
        result = deploy_model.deploy(MagicMock(), self.ev)

        self.assertEqual(result, 0)
        secret = yaml.safe_load(apply_secret.call_args[0][1])
        self.assertEqual(secret["metadata"]["name"], "llama-32-3b-instruct")
        self.assertEqual(secret["metadata"]["annotations"]["openshift.io/description"], "llama-3.2-3b-instruct")
        apply_document.assert_called_once()
        self.assertTrue(self.announced("Model llama-3-2-3b-instruct deployed successfully"))

    @patch("rhai_setup.steps.deploy_model.apply_document")
    @patch("rhai_setup.steps.deploy_model.apply_secret")
    @patch("rhai_setup.steps.deploy_model.secret_exists", return_value=True)
    def test_existing_secret_is_kept(self, secret_exists, apply_secret, apply_document):
        result = deploy_model.deploy(MagicMock(), self.ev)

        self.assertEqual(result, 0)
        apply_secret.assert_not_called()

    @patch("rhai_setup.steps.deploy_model.apply_document")
    def test_missing_project(self, apply_document):
        self.project_resource.return_value.exists.return_value = False

        result = deploy_model.deploy(MagicMock(), self.ev)

        self.assertEqual(result, 1)
        apply_document.assert_not_called()

    @patch("rhai_setup.steps.deploy_model.apply_document", side_effect=HTTPError(422, "invalid spec"))
    @patch("rhai_setup.steps.deploy_model.secret_exists", return_value=True)
    def test_apply_failure(self, secret_exists, apply_document):
        result = deploy_model.deploy(MagicMock(), self.ev)

        self.assertEqual(result, 1)
        self.assertTrue(self.announced("Failed to deploy model"))

    @patch("rhai_setup.steps.deploy_model.secret_exists", side_effect=HTTPError(500, "boom"))
    def test_secret_check_failure(self, secret_exists):
        with self.assertRaises(CheckFailed):
            deploy_model.deploy(MagicMock(), self.ev)

    def test_apply_document_creates(self):
        created = []

        class FakeInferenceService(pykube.objects.NamespacedAPIObject):
            version = "serving.kserve.io/v1alpha1"
            endpoint = "llminferenceservices"
            kind = "LLMInferenceService"

            def exists(self, ensure=False):
                return False

            def create(self):
                created.append(self.obj)

        doc = yaml.safe_load(MANIFEST)

        with patch("rhai_setup.steps.deploy_model.pykube.object_factory", return_value=FakeInferenceService) as object_factory:
            deploy_model.apply_document(MagicMock(), doc, "demo-rh-ai-3-0")

        self.assertEqual(object_factory.call_args[0][1:], ("serving.kserve.io/v1alpha1", "LLMInferenceService"))
        self.assertEqual(len(created), 1)
        self.assertEqual(created[0]["metadata"]["namespace"], "demo-rh-ai-3-0")

    def test_apply_document_rejects_incomplete(self):
        with self.assertRaises(ManifestError):
            deploy_model.apply_document(MagicMock(), {"kind": "Secret"}, "demo-rh-ai-3-0")


def make_pod(namespace, name, containers):
    return k8s_client.V1Pod(
        metadata=k8s_client.V1ObjectMeta(namespace=namespace, name=name),
        spec=k8s_client.V1PodSpec(containers=[
            k8s_client.V1Container(
                name=container_name,
                resources=k8s_client.V1ResourceRequirements(requests=requests, limits=limits),
            )
            for container_name, requests, limits in containers
        ]),
    )


class TestFindGpuPods(StepTestCase):
    """Tests for steps.find_gpu_pods"""
    module_under_test = find_gpu_pods

    def test_aggregate(self):
        rows = [
            ("ns-b", "vllm-1", "main", "1", "2"),
            ("ns-b", "vllm-1", "sidecar", "1", None),
            ("ns-a", "train-0", "main", "4", ""),
            ("ns-a", "cpu-only", "main", None, None),
            ("ns-a", "zero-limit", "main", "1", "0"),
            ("ns-a", "", "orphan", "1", "1"),
        ]

        gpu_pods = find_gpu_pods.aggregate_gpu_pods(rows)

        self.assertEqual(
            [(p.key, p.gpus) for p in gpu_pods],
            [("ns-a/train-0", 4), ("ns-b/vllm-1", 3)],
        )

    def test_container_rows(self):
        pods = [make_pod("demo", "llm", [("main", {"nvidia.com/gpu": "1"}, {"nvidia.com/gpu": "1"}),
                                          ("proxy", None, None)])]

        rows = list(find_gpu_pods.container_gpu_rows(pods))

        self.assertEqual(rows, [("demo", "llm", "main", "1", "1"), ("demo", "llm", "proxy", None, None)])

    def test_report(self):
        core_api = MagicMock()
        core_api.list_pod_for_all_namespaces.return_value = SimpleNamespace(items=[
            make_pod("demo", "llm", [("main", None, {"nvidia.com/gpu": "2"})]),
            make_pod("demo", "web", [("main", None, None)]),
        ])

        result = find_gpu_pods.find_gpu_pods(core_api, base_ev())

        self.assertEqual(result, 0)
        self.assertTrue(self.announced("Found 1 pod(s) using GPUs"))
        self.assertTrue(self.announced("Total GPUs in use: 2"))

    def test_single_namespace(self):
        core_api = MagicMock()
        core_api.list_namespaced_pod.return_value = SimpleNamespace(items=[])

        result = find_gpu_pods.find_gpu_pods(core_api, base_ev(all_namespaces=False))

        self.assertEqual(result, 0)
        core_api.list_namespaced_pod.assert_called_once_with(namespace="demo-rh-ai-3-0")
        self.assertTrue(self.announced("No pods found"))

    def test_api_failure(self):
        core_api = MagicMock()
        core_api.list_pod_for_all_namespaces.side_effect = k8s_client.ApiException(status=500, reason="Internal")

        with self.assertRaises(CheckFailed):
            find_gpu_pods.list_pods(core_api)

    def test_unreachable_host(self):
        configuration = k8s_client.Configuration()
        configuration.host = "https://127.0.0.1:1"
        configuration.retries = 0
        core_api = k8s_client.CoreV1Api(k8s_client.ApiClient(configuration))

        with self.assertRaises(CheckFailed) as ctx:
            find_gpu_pods.find_gpu_pods(core_api, base_ev())

        self.assertIn("Failed to fetch pods", str(ctx.exception))

    @patch("rhai_setup.steps.find_gpu_pods.k8s_config.load_kube_config")
    @patch("rhai_setup.steps.find_gpu_pods.k8s_client.CoreV1Api")
    def test_run_connection_error(self, core_api_class, load_kube_config):
        core_api_class.return_value.list_pod_for_all_namespaces.side_effect = urllib3.exceptions.MaxRetryError(
            None, "/api/v1/pods", reason="Connection refused")

        result = find_gpu_pods.run(base_ev())

        self.assertEqual(result, 1)
        self.assertTrue(self.announced("Failed to fetch pods"))

    def test_format_report(self):
        report = find_gpu_pods.format_report([find_gpu_pods.GpuPod("ns", "pod", 2)])

        lines = report.splitlines()
        self.assertTrue(lines[0].startswith("POD"))
        self.assertTrue(lines[2].startswith("ns/pod"))


class TestDeleteProject(StepTestCase):
    """Tests for steps.delete_project"""
    module_under_test = delete_project

    def setUp(self):
        super().setUp()
        waiter_patcher = patch("rhai_setup.waiter.announce")
        waiter_patcher.start()
        self.addCleanup(waiter_patcher.stop)
        self.sleeps = []
        self.projects = MagicMock()
        self.projects.kind = "Project"
        self.config = DeletionConfig(max_wait_seconds=10, poll_interval_seconds=5)

    def test_deleted(self):
        self.projects.exists.side_effect = [True, True, False]

        result = delete_project.delete_project(self.projects, "demo-rh-ai-3-0", self.config, sleep=self.sleeps.append)

        self.assertEqual(result.outcome, Outcome.DELETED)
        self.projects.delete.assert_called_once_with("demo-rh-ai-3-0")
        self.assertTrue(self.announced("has been fully deleted"))

    def test_timed_out_prints_follow_up(self):
        self.projects.exists.return_value = True

        result = delete_project.delete_project(self.projects, "demo-rh-ai-3-0", self.config, sleep=self.sleeps.append)

        self.assertEqual(result.outcome, Outcome.TIMED_OUT)
        self.assertEqual(self.sleeps, [5, 5])
        self.assertTrue(self.announced("oc get project demo-rh-ai-3-0"))

    def test_nothing_to_delete(self):
        self.projects.exists.return_value = False

        result = delete_project.delete_project(self.projects, "demo-rh-ai-3-0", self.config, sleep=self.sleeps.append)

        self.assertEqual(result.exit_code, 0)
        self.projects.delete.assert_not_called()
        self.assertTrue(self.announced("Nothing to delete"))

    @patch("rhai_setup.steps.delete_project.whoami", side_effect=NotLoggedIn("Not logged in to OpenShift."))
    @patch("rhai_setup.steps.delete_project.kube_connect")
    def test_run_not_logged_in(self, kube_connect, whoami):
        self.assertEqual(delete_project.run(base_ev()), delete_project.PRECONDITION_FAILED)
        self.assertTrue(self.announced("Not logged in"))

    def test_run_invalid_config(self):
        self.assertEqual(delete_project.run(base_ev(poll_interval=0)), delete_project.PRECONDITION_FAILED)

    @patch("rhai_setup.steps.delete_project.ProjectResource")
    @patch("rhai_setup.steps.delete_project.whoami")
    @patch("rhai_setup.steps.delete_project.kube_connect")
    def test_run_exit_codes(self, kube_connect, whoami, project_resource):
        projects = project_resource.return_value
        projects.kind = "Project"

        projects.exists.side_effect = CheckFailed("Forbidden")
        self.assertEqual(delete_project.run(base_ev(), sleep=self.sleeps.append), 4)

        projects.exists.side_effect = None
        projects.exists.return_value = True
        self.assertEqual(delete_project.run(base_ev(), sleep=self.sleeps.append), 2)


if __name__ == "__main__":
    unittest.main()
