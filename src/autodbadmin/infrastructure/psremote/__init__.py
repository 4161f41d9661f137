"""
PowerShell remoting over WinRM.
"""

from .client import ConnectionConfig, PSRemoteClient, PSRemoteResult, is_localhost

__all__ = ["ConnectionConfig", "PSRemoteClient", "PSRemoteResult", "is_localhost"]
