"""
ApiResult - the uniform result every operation resolves to.

Wire format (shared with both backends):
    {success, data?, error?, errorType?, offline?, timeout?, details?}
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from seatsync.services.errors import ErrorType, infer_error_type


class ApiResult(BaseModel):
    """Typed result of a backend operation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool
    data: Any = None
    error: str | None = None
    error_type: str | None = Field(default=None, alias="errorType")
    offline: bool = False
    timeout: bool = False
    details: dict[str, Any] | None = None

    # Filled in by the client, never sent by a backend
    source: str | None = None
    fallback: bool = False
    operation_id: str | None = None

    @classmethod
    def ok(cls, data: Any = None, source: str | None = None) -> "ApiResult":
        return cls(success=True, data=data, source=source)

    @classmethod
    def fail(
        cls,
        error: str,
        error_type: ErrorType | str | None = None,
        source: str | None = None,
        **kwargs: Any,
    ) -> "ApiResult":
        return cls(
            success=False,
            error=error,
            error_type=_code(error_type),
            source=source,
            **kwargs,
        )

    @classmethod
    def timed_out(cls, operation: str, timeout: float, source: str | None = None):
        """Timeout sentinel: resolves instead of raising."""
        return cls(
            success=False,
            error=f"Request '{operation}' timed out after {timeout}s",
            error_type=ErrorType.TIMEOUT.value,
            timeout=True,
            source=source,
        )

    @classmethod
    def offline_result(
        cls,
        operation: str,
        params: list[Any],
        operation_id: str | None = None,
    ) -> "ApiResult":
        """Result for a call captured (or refused) while disconnected."""
        queued = operation_id is not None
        error_type = ErrorType.OFFLINE_DELEGATE if queued else ErrorType.OFFLINE
        return cls(
            success=False,
            error=error_type.value,
            error_type=error_type.value,
            offline=True,
            operation_id=operation_id,
            details={"functionName": operation, "params": params},
        )

    @property
    def resolved_error_type(self) -> ErrorType | None:
        """Typed error code, inferring one for legacy payloads without errorType."""
        if self.success:
            return None
        if self.timeout:
            return ErrorType.TIMEOUT
        if self.error_type:
            try:
                return ErrorType(self.error_type)
            except ValueError:
                pass
        return infer_error_type(self.error)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with backend field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


def _code(error_type: ErrorType | str | None) -> str | None:
    if isinstance(error_type, ErrorType):
        return error_type.value
    return error_type


def coerce_result(payload: Any, source: str | None = None) -> ApiResult:
    """Turn a raw backend payload into an ApiResult."""
    if isinstance(payload, ApiResult):
        result = payload
    elif isinstance(payload, dict) and "success" in payload:
        result = ApiResult.model_validate(payload)
    else:
        result = ApiResult.ok(payload)
    if source and result.source is None:
        result.source = source
    return result


def is_negative(value: Any) -> bool:
    """True when a value carries an explicit success=False."""
    if isinstance(value, ApiResult):
        return value.success is False
    if isinstance(value, dict):
        return value.get("success") is False
    return getattr(value, "success", None) is False
