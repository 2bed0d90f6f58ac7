"""
timemint — service bootstrap.

Central entrypoint that:
1. Configures structured logging
2. Opens the audit store (when persistence is enabled)
3. Builds the ledger engine from settings
4. Wires the engine into the HTTP surface
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import structlog
import uvicorn

from timemint.config import TimemintSettings, settings
from timemint.engine import LedgerEngine
from timemint.ledger.service import AuditLog, AuditStore

logger = logging.getLogger(__name__)


def configure_logging(config: TimemintSettings = settings) -> None:
    """
    Configure structured logging.

    Engine modules log through the standard library; their records are
    rendered by the same structlog renderer as the orchestrator's own events,
    so one process writes one format.
    """
    level = logging.getLevelName(config.log_level.upper())
    renderer = (
        structlog.processors.JSONRenderer()
        if config.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    timestamper = structlog.processors.TimeStamper(fmt="iso")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            timestamper,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                timestamper,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    # Reconfiguring replaces our handler rather than stacking another one
    for existing in list(root.handlers):
        if isinstance(existing.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


def build_engine(
    config: TimemintSettings = settings,
    clock: Callable[[], int] | None = None,
) -> LedgerEngine:
    """Create a ledger engine, mirroring its audit trail to SQL if enabled."""
    log = structlog.get_logger()

    sink = None
    if config.persist_audit:
        store = AuditStore(config.audit_database_url)
        store.initialize()
        is_valid, events, message = store.verify_chain()
        if not is_valid:
            log.critical("timemint.orchestrator.audit_integrity_failure", message=message, events=events)
            raise RuntimeError(f"Audit store failed verification: {message}")
        if events:
            # The engine starts a fresh chain; refuse to interleave with an old one.
            raise RuntimeError(
                f"Audit store at {config.audit_database_url} already holds {events} events"
            )
        sink = store
        log.info("timemint.orchestrator.audit_store_ready", url=config.audit_database_url)

    engine = LedgerEngine.from_settings(config, clock=clock, audit_log=AuditLog(sink=sink))
    log.info(
        "timemint.orchestrator.engine_ready",
        owner=engine.owner,
        total_supply=engine.total_supply,
        emission_active=config.emission_active,
    )
    return engine


def create_app(config: TimemintSettings = settings):
    """Build the FastAPI application around a freshly bootstrapped engine."""
    from timemint.dashboard.app import app, state

    configure_logging(config)
    state.engine = build_engine(config)
    return app


def main(config: TimemintSettings = settings) -> None:
    """Serve the HTTP surface with uvicorn."""
    application = create_app(config)
    logger.info("Serving timemint API on %s:%d", config.api_host, config.api_port)
    uvicorn.run(application, host=config.api_host, port=config.api_port, log_config=None)


if __name__ == "__main__":
    main()
