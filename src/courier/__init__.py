"""courier-core: reliability core for calling unreliable third-party services.

Background jobs that talk to the messaging gateway, calendar provider,
inference service, object store and push dispatcher run through this
package. It gives every external call a circuit breaker, bounded retry,
cost-capped rate limiting and a dead-letter queue.

Layers::

    courier.core        errors, result type, logging, settings, SQLite store
    courier.execution   breaker, classifier, backoff, limiter, jobs, worker, DLQ
    courier.ops         admin surface + health probe
    courier.api         FastAPI routers
    courier.cli         typer CLI
"""

__version__ = "0.3.0"
