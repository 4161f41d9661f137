"""
Configuration domain models.
"""

from .credential import Credential
from .enums import AuthType
from .settings import Timeouts, ToolkitSettings
from .sql_target import SqlTarget

__all__ = [
    "AuthType",
    "Credential",
    "SqlTarget",
    "Timeouts",
    "ToolkitSettings",
]
