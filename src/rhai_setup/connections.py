"""
URI connection secrets for OCI model images.

OpenShift AI reads model locations from "connection" secrets: an Opaque
Secret whose ``URI`` key holds the base64 encoded ``oci://`` reference and
whose annotations mark it as a ``uri-v1`` connection.
"""

import base64
from dataclasses import dataclass
from pathlib import Path

import pykube
import yaml

from rhai_setup.functions import announce
from rhai_setup.exceptions import InvalidModelUri

MODELCAR_PREFIX = "modelcar-"


@dataclass
class ModelUri:
    uri: str
    model_name: str
    tag: str = ""

    @property
    def secret_name(self) -> str:
        if self.tag:
            return f"{self.model_name}-{self.tag.replace('.', '').replace(':', '')}"
        return self.model_name

    @property
    def description(self) -> str:
        if self.tag:
            return f"{self.model_name}:{self.tag}"
        return self.model_name


def parse_model_uri(uri: str) -> ModelUri:
    """
    Split ``oci://<registry>/<path>/modelcar-<model>[:<tag>]``.

    The model name stops at the first ':' and the tag starts after the last one.
    """
    image_with_tag = uri.rsplit("/", 1)[-1]
    if not image_with_tag.startswith(MODELCAR_PREFIX):
        raise InvalidModelUri(f"URI does not contain '{MODELCAR_PREFIX}' prefix: {uri}")

    model_with_tag = image_with_tag[len(MODELCAR_PREFIX):]
    if ":" in model_with_tag:
        model_name = model_with_tag.split(":", 1)[0]
        tag = model_with_tag.rsplit(":", 1)[1]
    else:
        model_name, tag = model_with_tag, ""

    if not model_name:
        raise InvalidModelUri(f"URI has an empty model name: {uri}")
    return ModelUri(uri=uri, model_name=model_name, tag=tag)


def description_from_uri(uri: str) -> str:
    # oci://quay.io/redhat-ai-services/modelcar-catalog:llama-3.2-3b-instruct -> llama-3.2-3b-instruct
    return uri.rsplit(":", 1)[-1].rsplit("/", 1)[-1]


def encode_uri(uri: str) -> str:
    return base64.b64encode(uri.encode()).decode()


def render_connection_secret(secret_name: str, uri: str, description: str) -> str:
    return f"""kind: Secret
apiVersion: v1
metadata:
  name: {secret_name}
  labels:
    opendatahub.io/dashboard: 'true'
  annotations:
    opendatahub.io/connection-type-protocol: uri
    opendatahub.io/connection-type-ref: uri-v1
    openshift.io/description: '{description}'
    openshift.io/display-name: '{description}'
data:
  URI: {encode_uri(uri)}
type: Opaque
"""


def write_connection_secret(secrets_dir: Path, model_uri: ModelUri) -> Path:
    output_file = Path(secrets_dir) / f"{model_uri.secret_name}.yaml"
    announce(f"Generating secret YAML: {output_file}")
    output_file.write_text(
        render_connection_secret(model_uri.secret_name, model_uri.uri, model_uri.description),
        encoding="utf-8",
    )
    announce(f"✅ Secret YAML generated: {output_file}")
    return output_file


def apply_secret(api: pykube.HTTPClient, secret_yaml: str, namespace: str, dry_run: bool = False) -> str:
    """Create or update the Secret described by ``secret_yaml`` in ``namespace``."""
    secret_obj = yaml.safe_load(secret_yaml)
    secret_obj["metadata"]["namespace"] = namespace
    name = secret_obj["metadata"]["name"]

    if dry_run:
        announce(f'[DRY RUN] Would have applied secret "{name}" to project "{namespace}".')
        return name

    secret = pykube.Secret(api, secret_obj)
    if secret.exists():
        secret.update()
    else:
        secret.create()
    return name


def secret_exists(api: pykube.HTTPClient, name: str, namespace: str) -> bool:
    return pykube.Secret(api, {"metadata": {"name": name, "namespace": namespace}}).exists()
