"""Provider interface and error taxonomy.

A provider performs the side effects for individual resources. The applier
only ever talks to this interface, so backends are interchangeable.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol


class ProviderError(Exception):
    """Base exception for provider failures.

    Attributes:
        retryable: True when the same call may succeed if repeated
        status: HTTP status (or equivalent) when known
    """
    retryable = False

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class TransientError(ProviderError):
    """Throttling, timeouts and other temporary failures."""
    retryable = True


class TerminalError(ProviderError):
    """Validation, quota and permission failures; retrying will not help."""
    retryable = False


class NotFoundError(TerminalError):
    """The resource does not exist (or no longer exists)."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


@dataclass
class ProviderResponse:
    """Outcome of a create/update/read call."""
    external_id: str
    outputs: dict = field(default_factory=dict)


class Provider(Protocol):
    """Operations the applier and rollback controller require."""

    name: str

    def create(self, resource_type: str, name: str, attributes: dict) -> ProviderResponse:
        ...

    def read(self, resource_type: str, external_id: str) -> ProviderResponse:
        ...

    def update(self, resource_type: str, external_id: str, attributes: dict) -> ProviderResponse:
        ...

    def delete(self, resource_type: str, external_id: str) -> None:
        ...

    def find(self, resource_type: str, name: str) -> Optional[ProviderResponse]:
        """Look up an existing resource by its cloud-side name."""
        ...
