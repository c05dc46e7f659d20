"""Exceptions raised across the cluster engine."""


class ClusterIntelError(Exception):
    """Base exception for the whole project."""

    code = "error"


class NotFoundError(ClusterIntelError):
    """Cluster, collection or suggestion is missing or owned by someone else."""

    code = "not_found"


class ValidationError(ClusterIntelError):
    """Arguments that cannot be acted upon."""

    code = "invalid"


class DuplicateClusterNameError(ValidationError):
    """A cluster with this name already exists for the user."""

    code = "duplicate_name"


class ExternalCollaboratorError(ClusterIntelError):
    """Vector store or text generator call failed."""

    code = "collaborator_failure"


class CollaboratorTimeoutError(ExternalCollaboratorError):
    """Vector store or text generator did not answer in time."""

    code = "collaborator_timeout"


class PersistenceError(ClusterIntelError):
    """A database write failed and was rolled back."""

    code = "persistence_failure"
