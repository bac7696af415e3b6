"""Per-call deadline and cancellation for operations that hit the API server."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from clusterstate.errors import OperationCancelled


@dataclass
class RequestContext:
    """Carries a request timeout and a cancel flag down to Kubernetes calls.

    ``timeout`` is forwarded to the client as ``_request_timeout``. Setting
    ``cancel`` makes every subsequent ``check`` raise ``OperationCancelled``.
    """
    timeout: Optional[float] = None
    cancel: threading.Event = field(default_factory=threading.Event)

    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def check(self, operation: str) -> None:
        if self.cancel.is_set():
            raise OperationCancelled(operation)

    def request_kwargs(self) -> Dict[str, Any]:
        if self.timeout is None:
            return {}
        return {"_request_timeout": self.timeout}


def background() -> RequestContext:
    """A context with no deadline that is never cancelled."""
    return RequestContext()
