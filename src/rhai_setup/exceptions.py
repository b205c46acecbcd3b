"""
Errors raised while driving the cluster.
"""


class SetupError(Exception):
    """Base class for every failure a step reports to the user."""


class ToolUnavailable(SetupError):
    """No usable kubeconfig, or the cluster does not expose the OpenShift APIs."""


class NotLoggedIn(SetupError):
    """The credentials in the kubeconfig were rejected."""


class ClusterUnreachable(SetupError):
    """The API server could not be reached or answered with an unexpected error."""


class ResourceNotFound(SetupError):
    def __init__(self, kind: str, name: str, namespace: str = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f' in namespace "{namespace}"' if namespace else ""
        super().__init__(f'{kind} "{name}" not found{where}')


class DeletionRequestFailed(SetupError):
    """The resource manager rejected a delete request."""


class CheckFailed(SetupError):
    """An existence check or listing failed for a reason other than "not found"."""


class InvalidModelUri(SetupError, ValueError):
    pass


class ManifestError(SetupError):
    """A model manifest is missing or cannot be interpreted."""
