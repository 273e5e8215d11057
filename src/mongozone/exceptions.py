from __future__ import annotations


class MongoZoneError(Exception):
    """Brief: Base class for every error raised by the MongoDB zone adapter.

    Inputs:
      - message: Short description of the failure.

    Outputs:
      - Exception instance; callers may catch this to handle any adapter error.
    """

    pass


class ConfigError(MongoZoneError, ValueError):
    """Brief: A zone binding was configured with missing or invalid arguments.

    Inputs:
      - message: Description naming the offending field or argument count.

    Outputs:
      - Exception instance raised before any connection attempt is made.
    """

    pass


class AllocationError(MongoZoneError, MemoryError):
    """Brief: Resources for a zone binding could not be allocated."""

    pass


class StoreConnectionError(MongoZoneError, ConnectionError):
    """Brief: The MongoDB server could not be reached or stopped responding.

    Inputs:
      - message: Description including host/port when known.

    Outputs:
      - Exception instance; the builtin ConnectionError is a base class so
        generic network handlers also catch it.
    """

    pass


class AuthError(MongoZoneError):
    """Brief: MongoDB rejected the credentials, or authentication was attempted
    before a connection existed."""

    pass


class SinkError(MongoZoneError):
    """Brief: The host record sink rejected a record and aborted the query.

    Inputs:
      - message: Description of the rejected record.

    Outputs:
      - Exception instance chained (``raise ... from``) to the sink's own error.
    """

    pass
