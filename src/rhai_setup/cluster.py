import pykube
import requests
from pykube.exceptions import HTTPError, ObjectDoesNotExist, PyKubeError

from rhai_setup.functions import announce
from rhai_setup.exceptions import (
    CheckFailed,
    ClusterUnreachable,
    DeletionRequestFailed,
    NotLoggedIn,
    ResourceNotFound,
    ToolUnavailable,
)


class Project(pykube.objects.APIObject):
    version = "project.openshift.io/v1"
    endpoint = "projects"
    kind = "Project"


class ProjectRequest(pykube.objects.APIObject):
    version = "project.openshift.io/v1"
    endpoint = "projectrequests"
    kind = "ProjectRequest"


class User(pykube.objects.APIObject):
    version = "user.openshift.io/v1"
    endpoint = "users"
    kind = "User"


def whoami(api: pykube.HTTPClient) -> str:
    """
    Return the user name the API server associates with our credentials.

    Raises NotLoggedIn when the credentials are rejected, ClusterUnreachable
    when the server cannot be reached and ToolUnavailable when the cluster has
    no OpenShift user API.
    """
    try:
        # "~" resolves to the authenticated user, same as 'oc whoami'
        user = User.objects(api).get(name="~")
    except ObjectDoesNotExist as e:
        raise ToolUnavailable(
            "The OpenShift user API is not available. Is this an OpenShift cluster?"
        ) from e
    except HTTPError as e:
        if e.code in (401, 403):
            raise NotLoggedIn("Not logged in to OpenShift. Please run 'oc login' first.") from e
        raise ClusterUnreachable(f"Unexpected answer from the OpenShift API ({e.code}): {e}") from e
    except requests.exceptions.RequestException as e:
        raise ClusterUnreachable(
            f"Cannot connect to OpenShift cluster. Please check your connection. ({e})"
        ) from e

    return user.name


class ProjectResource:
    """OpenShift projects addressed by name."""

    kind = "Project"

    def __init__(self, api: pykube.HTTPClient):
        self.api = api

    def get(self, name: str) -> Project:
        try:
            return Project.objects(self.api).get(name=name)
        except ObjectDoesNotExist as e:
            raise ResourceNotFound(self.kind, name) from e
        except (PyKubeError, requests.exceptions.RequestException) as e:
            raise CheckFailed(f'Error checking project "{name}": {e}') from e

    def exists(self, name: str) -> bool:
        try:
            self.get(name)
        except ResourceNotFound:
            return False
        return True

    def delete(self, name: str):
        try:
            r = self.api.delete(version=Project.version, url=f"{Project.endpoint}/{name}")
        except requests.exceptions.RequestException as e:
            raise DeletionRequestFailed(f'Failed to initiate deletion of project "{name}": {e}') from e

        if r.status_code == 404:
            raise ResourceNotFound(self.kind, name)

        try:
            self.api.raise_for_status(r)
        except HTTPError as e:
            raise DeletionRequestFailed(
                f'Failed to initiate deletion of project "{name}" ({e.code}): {e}'
            ) from e

    def create(self, name: str, display_name: str, description: str = ""):
        request = ProjectRequest(
            self.api,
            {
                "apiVersion": ProjectRequest.version,
                "kind": ProjectRequest.kind,
                "metadata": {"name": name},
                "displayName": display_name,
                "description": description,
            },
        )
        request.create()
        announce(f'✅ Project "{name}" created successfully')

    def update_metadata(self, name: str, labels: dict = None, annotations: dict = None):
        """Merge labels and annotations onto the project's namespace."""
        ns = pykube.Namespace.objects(self.api).get(name=name)
        if labels:
            ns.labels.update(labels)
        if annotations:
            ns.annotations.update(annotations)
        ns.update()
