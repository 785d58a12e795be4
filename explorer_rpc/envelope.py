"""
Envelope Unwrapper - One result shape for wrapped and flat responses.

Upstream builds answer either `{"ok": true, "data": {...}}` or with the
payload fields at the top level. unwrap_envelope() hides the difference.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from explorer_rpc.models import GatewayResult


@dataclass(frozen=True)
class Envelope:
    """Uniform view of a decoded upstream response."""
    ok: bool
    payload: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    rpc_base: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "payload": self.payload,
            "error": self.error,
            "error_code": self.error_code,
            "rpc_base": self.rpc_base,
            "status_code": self.status_code,
        }


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def unwrap_envelope(
    value: Any,
    rpc_base: Optional[str] = None,
    status_code: Optional[int] = None,
) -> Envelope:
    """
    Unwrap a decoded JSON value.

    Rules, in order:
    - an object with explicit `ok: false` is a failure, whatever else it holds;
    - an object with a non-null `data` field yields that field as payload;
    - any other object is itself the payload;
    - an array is the payload;
    - anything else (primitives, None) is a failure.
    """
    if isinstance(value, Mapping):
        if value.get("ok") is False:
            return Envelope(
                ok=False,
                error=_text(value.get("error") or value.get("detail") or value.get("message"))
                or "upstream reported failure",
                error_code=_text(value.get("error_code") or value.get("code")),
                rpc_base=rpc_base,
                status_code=status_code,
            )
        if value.get("data") is not None:
            return Envelope(ok=True, payload=value["data"], rpc_base=rpc_base, status_code=status_code)
        return Envelope(ok=True, payload=value, rpc_base=rpc_base, status_code=status_code)

    if isinstance(value, list):
        return Envelope(ok=True, payload=value, rpc_base=rpc_base, status_code=status_code)

    return Envelope(
        ok=False,
        error=f"unexpected payload type: {type(value).__name__}",
        error_code="invalid_payload",
        rpc_base=rpc_base,
        status_code=status_code,
    )


def unwrap_result(result: GatewayResult) -> Envelope:
    """Unwrap the data of a gateway result; failed calls stay failures."""
    if not result.ok:
        return Envelope(
            ok=False,
            error=result.detail or result.error_kind.value,
            error_code=result.error_kind.value,
            rpc_base=result.rpc_base,
            status_code=result.http_status,
        )
    return unwrap_envelope(result.data, result.rpc_base, result.http_status)
