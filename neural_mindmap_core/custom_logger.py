# neural_mindmap_core/custom_logger.py

import logging
import os
from typing import Dict, Any, Optional

# Set up logging
log_level = os.getenv("LOG_LEVEL", "INFO")
numeric_level = getattr(logging, log_level.upper(), None)
if not isinstance(numeric_level, int):
    numeric_level = logging.INFO

logging.basicConfig(
    level=numeric_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Keys that belong to logging.Logger.log itself and must not be folded into the data suffix
_RESERVED_KWARGS = ('level', 'name', 'pathname', 'lineno', 'funcName', 'exc_text', 'stack_info')


class Logger:
    """
    Thin wrapper over the standard logging module.

    Accepts both the component style ``logger.info("MergeEngine", "Merged maps", {...})``
    and the plain style ``logger.info("Merged maps", count=3)``.
    """

    def __init__(self, name: str = "NeuralMindMap"):
        self.logger = logging.getLogger(name)

    def _format(self, context_or_msg: str, msg: Optional[str], data: Optional[Dict[str, Any]], extra: Dict[str, Any]) -> str:
        if msg is not None:
            text = f"[{context_or_msg}] {msg}"
        else:
            text = context_or_msg
        if data:
            text += f" | Data: {data}"
        elif extra:
            text += f" | Data: {extra}"
        return text

    def _log(self, level: int, context_or_msg: str, msg: Optional[str] = None, data: Optional[Dict[str, Any]] = None, **kwargs):
        exc_info = kwargs.pop('exc_info', None)
        if not self.logger.isEnabledFor(level):
            return
        extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_KWARGS}
        self.logger.log(level, self._format(context_or_msg, msg, data, extra), exc_info=exc_info)

    def debug(self, context_or_msg, msg=None, data=None, **kwargs):
        self._log(logging.DEBUG, context_or_msg, msg, data, **kwargs)

    def info(self, context_or_msg, msg=None, data=None, **kwargs):
        self._log(logging.INFO, context_or_msg, msg, data, **kwargs)

    def warning(self, context_or_msg, msg=None, data=None, **kwargs):
        self._log(logging.WARNING, context_or_msg, msg, data, **kwargs)

    def error(self, context_or_msg, msg=None, data=None, **kwargs):
        self._log(logging.ERROR, context_or_msg, msg, data, **kwargs)


# Shared instance used across the engine
logger = Logger()


def get_logger(name: str = "NeuralMindMap") -> Logger:
    """
    Create a logger with its own name, used by the metrics and api sub-packages.

    Args:
        name: Name for the underlying ``logging`` logger

    Returns:
        Logger instance with the specified name
    """
    return Logger(name)
