"""Error taxonomy shared by the pipeline, the runtime gate and the HTTP layer.

- StoreChatError: base class carrying a machine-readable code and HTTP status.
- ScopeError: missing/invalid tenant or site scoping. Fatal, raised before any I/O.
- PolicyViolation: requested source types outside a strict retrieval policy.
- GateError: a runtime gate state failed (site, license, origin, usage).
- RetrievalError: upstream I/O failure (embedding service, vector index, timeout).
  Callers degrade to an ungrounded answer instead of failing the request.
- EmbeddingMismatchError: query vector/model does not match the indexed column.

Budget overruns in context assembly are not errors; they truncate silently.
"""
from typing import Any, Dict, List, Optional


class StoreChatError(Exception):
    """Base error rendered as {"error": {"code", "message", "details"}}."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ScopeError(StoreChatError):
    code = "MISSING_SCOPE"
    status_code = 400


class PolicyViolation(StoreChatError):
    """Raised when a strict policy rejects one or more requested source types."""

    code = "SOURCE_TYPE_NOT_ALLOWED"
    status_code = 400

    def __init__(self, rejected_types: List[str], message: Optional[str] = None):
        super().__init__(
            message or f"Source types not allowed: {', '.join(rejected_types)}",
            details={"rejected_types": list(rejected_types)},
        )
        self.rejected_types = list(rejected_types)


class GateError(StoreChatError):
    """Raised by the runtime gate; `state` names the failing gate state."""

    status_code = 403
    state = None


class RetrievalError(StoreChatError):
    code = "RETRIEVAL_FAILED"
    status_code = 502


class EmbeddingMismatchError(RetrievalError):
    code = "EMBEDDING_MISMATCH"
