"""
Rudimentary type [re-]definitions for cross-versioned Python & mypy.

Some stdlib types are generic only in the type-sheds, but not at runtime
(e.g. ``logging.LoggerAdapter``), so they are defined here once.
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

Logger = Union[logging.Logger, LoggerAdapter]
