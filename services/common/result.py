"""
Result Pattern Implementation
Standard success/failure envelope returned by every service operation
"""

from typing import TypeVar, Generic, Optional, Any, Dict, Callable
from dataclasses import dataclass

from services.common.errors import RevenueEngineError

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    Encapsulates either a successful result with data or a failure with an
    error message and a stable error code.

    Examples:
        result = Result.success(client)
        if result.is_success:
            print(result.data.token)

        result = Result.failure("Client 42 not found", code="NOT_FOUND")
        if result.is_failure:
            print(result.error_code)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Error message describing the failure
            code: Optional error code for programmatic handling
            metadata: Optional metadata about the failure
        """
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @classmethod
    def from_error(cls, error: RevenueEngineError) -> 'Result[T]':
        """Create a failure result from a domain error, keeping its code and details."""
        return cls.failure(error.message, code=error.code, metadata=error.details or None)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def unwrap(self) -> T:
        """
        Get the data from a successful result.

        Raises:
            ValueError: If called on a failure result
        """
        if self.is_failure:
            raise ValueError(f"Cannot unwrap a failure result: {self.error}")
        return self.data

    def map(self, func: Callable[[T], Any]) -> 'Result':
        """Transform the data if successful, otherwise return the failure unchanged."""
        if self.is_success:
            return Result.success(func(self.data), self.metadata)
        return self

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
