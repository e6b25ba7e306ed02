from __future__ import annotations
import logging
import sys
import structlog

SERVICE = "orderfeed"

def configure_logging(debug: bool = False, json: bool = True, service: str = SERVICE, **context) -> None:
    """
    JSON lines (or console lines with json=False) on stderr, so stdout stays
    free for CLI summaries. Every event carries `service` plus any extra
    `context` (e.g. a run id) through structlog's contextvars.
    """
    level = logging.DEBUG if debug else logging.INFO
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    renderer = structlog.processors.JSONRenderer(sort_keys=True) if json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service, **context)

    # structlog hands rendered lines to stdlib logging, which writes them to stderr
    logging.basicConfig(format="%(levelname)s %(name)s %(message)s", stream=sys.stderr, level=level)
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
