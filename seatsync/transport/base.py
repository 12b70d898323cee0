"""
Base transport interface.
"""

from abc import ABC, abstractmethod
from typing import Any

from seatsync.services.results import ApiResult


class Transport(ABC):
    """
    Abstract base class for backend transports.

    All transports should:
    - Resolve to an ApiResult for anything the backend answered
    - Carry a timeout on every call
    - Raise typed ServiceErrors (or resolve a timeout sentinel) for transport failures
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique backend name, used for circuit breakers and logs."""
        ...

    @abstractmethod
    async def invoke(
        self, operation: str, params: list[Any], timeout: float
    ) -> ApiResult:
        """Invoke an operation on the backend."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the transport is properly configured."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
