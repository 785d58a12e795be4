"""
Explorer RPC Exceptions - Custom exception hierarchy.

Expected upstream conditions (absence, timeouts, malformed bodies) are never
raised past the gateway boundary; they become typed results. Exceptions here
are either internal to the gateway or programmer/configuration errors that
must fail fast at construction time.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class ExplorerRpcError(Exception):
    """Base exception for all explorer RPC errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.component = component
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class GatewayError(ExplorerRpcError):
    """
    Classified failure of a single upstream call.

    Raised by the gateway's request helper and converted into a
    GatewayResult before leaving GatewayProxy.call().
    """

    def __init__(
        self,
        message: str,
        kind: Any,
        status_code: Optional[int] = None,
        request_url: Optional[str] = None,
        response_body: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "gateway", original_error, context)
        self.kind = kind
        self.status_code = status_code
        self.request_url = request_url
        self.response_body = response_body

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "kind": getattr(self.kind, "value", self.kind),
            "status_code": self.status_code,
            "request_url": self.request_url,
            "response_body": self.response_body,
        })
        return data


class ConfigurationError(ExplorerRpcError):
    """Invalid gateway configuration (bad base URL, allowlist or timeouts)."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "config", original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data


class AliasTableError(ExplorerRpcError):
    """Malformed field alias table."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        field_name: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "fields", None, context)
        self.entity = entity
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({"entity": self.entity, "field_name": self.field_name})
        return data


class ProbeTableError(ExplorerRpcError):
    """Malformed search probe plan."""

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "resolver", None, context)
        self.category = category

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["category"] = self.category
        return data
