"""
SQL Target domain model.

This module defines the SqlTarget domain entity representing
a SQL Server instance the toolkit can connect to.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import AuthType


class SqlTarget(BaseModel):
    """
    Domain model for a SQL Server target.

    Represents a single SQL Server instance, referenced by id on the CLI.
    """

    model_config = ConfigDict(use_enum_values=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., description="Unique identifier/alias for this target")
    name: Optional[str] = Field(None, description="Human-readable display name")
    server: str = Field(..., description="Host name or IP of the SQL Server")
    instance: Optional[str] = Field(None, description="Named instance (null for default)")
    port: Optional[int] = Field(None, description="TCP port (null to use instance resolution)")
    auth_type: AuthType = Field(AuthType.WINDOWS, description="Authentication method", alias="auth")
    credentials_ref: Optional[str] = Field(None, description="SQL credential file", alias="credential_file")
    username: Optional[str] = Field(None, description="Explicit SQL login")
    os_credentials_ref: Optional[str] = Field(None, description="OS credential file for WinRM", alias="os_credential_file")
    connect_timeout: Optional[int] = Field(
        None, description="Seconds to wait for SQL connection (null uses settings connection_timeout)"
    )
    enabled: bool = Field(True, description="Whether this target may be used")
    tags: List[str] = Field(default_factory=list, description="Tags for filtering/grouping")

    @field_validator("auth_type", mode="before")
    @classmethod
    def normalize_auth(cls, v):
        """Map legacy auth strings to enum."""
        if isinstance(v, str) and v.lower() == "integrated":
            return AuthType.WINDOWS
        return v

    @field_validator("server")
    @classmethod
    def validate_server(cls, v: str) -> str:
        """Validate server name format."""
        if not v or not v.strip():
            raise ValueError("Server name cannot be empty")
        return v.strip()

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: Optional[int]) -> Optional[int]:
        """Validate port number."""
        if v is not None and (v < 1 or v > 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @property
    def server_instance(self) -> str:
        """Server string for the ODBC connection."""
        if self.port:
            return f"{self.server},{self.port}"
        if self.instance:
            return f"{self.server}\\{self.instance}"
        return self.server

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.instance:
            return f"{self.server}\\{self.instance}"
        if self.port:
            return f"{self.server}:{self.port}"
        return self.server
