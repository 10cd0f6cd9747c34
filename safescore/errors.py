"""SafeScore Engine: Exception hierarchy"""


class SafetyEngineError(Exception):
    """Base class for every error raised by the engine."""


class InvalidCoordinateError(SafetyEngineError, ValueError):
    """Latitude/longitude outside [-90, 90] x [-180, 180] or not finite."""


class InvalidRecordError(SafetyEngineError, ValueError):
    """An incident or community report failed validation at ingestion."""


class RecordNotFoundError(SafetyEngineError, KeyError):
    pass


class StoreError(SafetyEngineError):
    """The document store could not be reached or answered with an error."""


class RepositoryError(StoreError):
    """Raised inside AreaDataRepository; fetch() converts it to degraded data."""


class CacheStoreError(StoreError):
    """The score cache backend failed. The engine treats this as a miss."""
