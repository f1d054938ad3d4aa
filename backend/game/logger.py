import logging

import structlog

import config


def configure_logging(level: str = config.LOG_LEVEL, json_output: bool = config.LOG_JSON):
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level, logging.INFO)
        ),
        cache_logger_on_first_use=False,
    )


configure_logging()

gl_log: structlog.BoundLogger = structlog.get_logger("infinite_realms")
