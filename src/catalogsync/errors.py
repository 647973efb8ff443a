"""Project exceptions.

Remote and transport failures are never raised: the catalog client returns
them as ApiResult values. These exceptions cover programming and
configuration errors that should stop the caller.
"""


class CatalogSyncError(RuntimeError):
    """Base class for catalogsync errors."""


class ConfigurationError(CatalogSyncError):
    """Raised when required settings are missing."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            f"Missing catalog configuration: {', '.join(self.missing)}"
        )


class ImmutableRecordError(CatalogSyncError):
    """Raised on an attempt to rewrite an append-only or monotonic row."""
