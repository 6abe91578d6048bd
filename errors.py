class CacheError(Exception):
    """Base class for failures raised by the local cache layer."""


class StorageError(CacheError):
    """Schema or I/O failure in the persistent store.

    Fatal to the operation that raised it; the store itself stays usable.
    """


class UpstreamFetchError(CacheError):
    """Network or parse failure while pulling data from an upstream source."""


class CredentialError(CacheError):
    """A credential blob could not be written or decrypted."""
