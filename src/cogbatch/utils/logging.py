import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


def setup_logging(*, level: int = logging.INFO, json: bool | None = None) -> None:
    """
    Route cogbatch events through structlog.

    Parameters
    ----------
    level : int
        Level of the ``cogbatch`` logger.
    json : bool | None, optional
        Render JSON lines instead of console output. Defaults to JSON when
        stderr is not a terminal.
    """
    if json is None:
        json = not sys.stderr.isatty()
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger(name="cogbatch").setLevel(level=level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # endpoint, batch_index
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**context) -> Iterator[None]:
    """
    Bind ``context`` to every event logged inside the block.

    Keys already bound by an enclosing block keep their outer value.
    """
    bound = structlog.contextvars.get_contextvars()
    fresh = {key: value for key, value in context.items() if key not in bound}
    if not fresh:
        yield
        return
    with structlog.contextvars.bound_contextvars(**fresh):
        yield
