"""Handler Registry: job type → handler lookup.

The worker resolves ``"calendar:sync"`` to the callable that performs the
external call. Registration happens at startup; resolution happens for
every claimed job. A job whose type has no handler is a permanent failure
and goes to the dead-letter queue rather than being dropped.

Handlers take the validated payload and return a JSON-serializable result::

    registry = HandlerRegistry()

    @registry.handler("leadScore:calculate", description="Score a contact or deal")
    def score_lead(payload: CalculateLeadScorePayload) -> dict:
        return inference_client.score(payload.entity_type, payload.entity_id)
"""

import importlib
from collections.abc import Callable, Iterable
from typing import Any

from courier.core.errors import HandlerNotFoundError
from courier.core.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], Any]


class HandlerRegistry:
    """Injectable handler registry (one per runtime, isolated per test)."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def register(self, job_type: str, handler: Handler, description: str | None = None) -> None:
        """Register ``handler`` for ``job_type`` (replaces any previous one)."""
        self._handlers[job_type] = handler
        self._metadata[job_type] = {
            "job_type": job_type,
            "handler": getattr(handler, "__qualname__", repr(handler)),
            "description": description,
        }

    def handler(self, job_type: str, description: str | None = None) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""

        def decorator(func: Handler) -> Handler:
            self.register(job_type, func, description)
            return func

        return decorator

    def get(self, job_type: str) -> Handler:
        """Get the handler for ``job_type``.

        Raises:
            HandlerNotFoundError: If no handler is registered
        """
        if job_type not in self._handlers:
            raise HandlerNotFoundError(
                f"No handler registered for {job_type}. Available: {sorted(self._handlers) or 'none'}"
            ).with_context(job_type=job_type)
        return self._handlers[job_type]

    def has(self, job_type: str) -> bool:
        return job_type in self._handlers

    def list_handlers(self) -> list[dict[str, Any]]:
        return [self._metadata[key].copy() for key in sorted(self._metadata)]

    def unregister(self, job_type: str) -> bool:
        if job_type in self._handlers:
            del self._handlers[job_type]
            del self._metadata[job_type]
            return True
        return False

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._metadata.clear()

    def load(self, targets: Iterable[str]) -> None:
        """Import each ``"pkg.module:register"`` target and call it with this registry.

        A target with no ``:attr`` suffix calls the module's ``register`` function.
        """
        for target in targets:
            module_name, _, attr = target.partition(":")
            module = importlib.import_module(module_name)
            register = getattr(module, attr or "register")
            register(self)
            logger.info("handlers_loaded", target=target, job_types=sorted(self._handlers))


__all__ = ["Handler", "HandlerRegistry"]
