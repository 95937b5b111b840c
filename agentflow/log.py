"""
Structured logging setup shared by every entry point
"""

import logging

import structlog


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure structlog; fmt is "json" for machine logs, "text" for a console"""
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
