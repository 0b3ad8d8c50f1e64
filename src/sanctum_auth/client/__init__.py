"""HTTP plumbing for sanctum_auth.

:mod:`sanctum_auth.client.transport` wraps :mod:`httpx` and normalises its
exceptions; :mod:`sanctum_auth.client.pipeline` runs requests through the
middleware chain and maps failures to
:class:`~sanctum_auth.exceptions.SanctumError`.
"""

from sanctum_auth.client.transport import (
    FailureKind,
    HttpxTransport,
    RequestFailure,
    Transport,
)

__all__ = ["FailureKind", "HttpxTransport", "RequestFailure", "Transport"]
