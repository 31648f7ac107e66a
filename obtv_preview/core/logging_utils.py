"""Component-scoped loggers for the preview orchestration core.

Every logger lives under the ``obtv_preview`` namespace and prefixes its
messages with ``[Component]`` so interleaved scheduler, admission and worker
output stays readable in a single log stream.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

MODULE_LOGGER_NAMESPACE = "obtv_preview"
DEFAULT_COMPONENT = "Core"


def _qualified_name(name: Optional[str]) -> str:
    if not name:
        return MODULE_LOGGER_NAMESPACE
    if name == MODULE_LOGGER_NAMESPACE or name.startswith(MODULE_LOGGER_NAMESPACE + "."):
        return name
    return f"{MODULE_LOGGER_NAMESPACE}.{name}"


def _component_for(name: str) -> str:
    if name.startswith(MODULE_LOGGER_NAMESPACE):
        return name[len(MODULE_LOGGER_NAMESPACE):].lstrip(".") or DEFAULT_COMPONENT
    return name or DEFAULT_COMPONENT


class StructuredLogger(logging.LoggerAdapter):
    """LoggerAdapter that renders ``[Component] message`` eagerly.

    Formatting happens before the record is created, so a mismatched format
    argument degrades to an ``args=`` suffix instead of a logging error.
    """

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        super().__init__(logger, {"component": component or _component_for(logger.name)})

    @property
    def component(self) -> str:
        return self.extra["component"]

    def _render(self, message: object, args: tuple) -> str:
        text = str(message)
        if args:
            try:
                text = text % args
            except (TypeError, ValueError):
                text = f"{text} | args={' '.join(str(arg) for arg in args)}"
        prefix = f"[{self.component}]"
        if text.startswith(prefix):
            return text
        return f"{prefix} {text}"

    def log(self, level: int, msg: object, *args, **kwargs) -> None:
        if not self.isEnabledFor(level):
            return
        self.logger.log(level, self._render(msg, args), **kwargs)

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(
            self.logger.getChild(suffix), component=f"{self.component}.{suffix}"
        )

    def __repr__(self) -> str:  # pragma: no cover
        return f"StructuredLogger({self.logger.name!r}, component={self.component!r})"


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Wrap ``logger``; ``None`` yields the module logger for ``fallback_name``."""

    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        return StructuredLogger(logger.logger, component=component)
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(_qualified_name(name)))


__all__ = [
    "LoggerLike",
    "MODULE_LOGGER_NAMESPACE",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
