"""Exception hierarchy shared by the retrieval pipeline."""


class DevIntelError(Exception):
    """Base class for all devintel errors."""
    pass


class ConfigurationError(DevIntelError):
    """A hard dependency (model deployment, credentials) is not configured."""
    pass


class EmbeddingUnavailableError(ConfigurationError):
    """The requested embedding model class has no configured deployment."""
    pass


class SearchBranchError(DevIntelError):
    """A retrieval branch (vector or lexical) failed against its index."""
    pass


class PlatformError(DevIntelError):
    """Error communicating with a platform collaborator service."""
    pass


class StoreError(DevIntelError):
    """Error returned by the content store."""
    pass
