"""
PowerShell remoting client built on pywinrm.

Tries transport and authentication combinations until one works, and
runs scripts through local PowerShell when the target is this machine.

Transport priority: HTTPS (5986) then HTTP (5985).
Auth priority: Negotiate, Kerberos, NTLM.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum

import winrm  # pywinrm

logger = logging.getLogger(__name__)


class Transport(Enum):
    """WinRM transport protocols."""

    HTTPS = "https"
    HTTP = "http"


class AuthMethod(Enum):
    """WinRM authentication methods."""

    NEGOTIATE = "negotiate"
    KERBEROS = "kerberos"
    NTLM = "ntlm"


@dataclass
class ConnectionConfig:
    """Configuration for a remoting connection."""

    hostname: str
    username: str | None = None
    password: str | None = None
    port_http: int = 5985
    port_https: int = 5986
    timeout_seconds: int = 30
    operation_timeout_sec: int = 120
    verify_ssl: bool = True


@dataclass
class PSRemoteResult:
    """Result from a PowerShell execution."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    return_code: int = -1
    transport_used: str = ""
    error: str = ""


LOCALHOST_NAMES = {"localhost", "127.0.0.1", "::1", ".", "(local)"}


def is_localhost(hostname: str) -> bool:
    """Match localhost aliases and this machine's own name."""
    hostname = hostname.lower().strip()
    if hostname in LOCALHOST_NAMES:
        return True
    local_name = socket.gethostname().lower()
    return hostname in (local_name, local_name.split(".")[0])


class PSRemoteClient:
    """
    PowerShell runner for one Windows host.

    The first transport+auth combination that answers is kept for the
    lifetime of the client.
    """

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self._session: winrm.Session | None = None
        self._transport_used = ""
        self._is_localhost = is_localhost(config.hostname)
        if self._is_localhost:
            logger.info("Localhost detected: %s - will use local PowerShell", config.hostname)

    def connect(self) -> bool:
        """
        Establish a session, trying every combination.

        Returns True immediately for localhost.
        """
        if self._is_localhost or self._session is not None:
            return True

        for transport in (Transport.HTTPS, Transport.HTTP):
            for auth in (AuthMethod.NEGOTIATE, AuthMethod.KERBEROS, AuthMethod.NTLM):
                if self._try_connect(transport, auth):
                    if transport == Transport.HTTP:
                        logger.warning("Connected to %s over HTTP", self.config.hostname)
                    return True

        logger.error("All WinRM connection attempts failed for %s", self.config.hostname)
        return False

    def _try_connect(self, transport: Transport, auth: AuthMethod) -> bool:
        port = self.config.port_https if transport == Transport.HTTPS else self.config.port_http
        endpoint = f"{transport.value}://{self.config.hostname}:{port}/wsman"
        verify = self.config.verify_ssl and transport == Transport.HTTPS
        logger.debug("Trying: %s with %s", endpoint, auth.value)

        try:
            session = winrm.Session(
                target=endpoint,
                auth=(self.config.username, self.config.password),
                transport=auth.value,
                server_cert_validation="validate" if verify else "ignore",
                operation_timeout_sec=self.config.operation_timeout_sec,
                read_timeout_sec=self.config.operation_timeout_sec + 10,
            )
            result = session.run_cmd("echo", ["OK"])
        except Exception as e:  # pylint: disable=broad-except
            # transport, auth and TLS failures all surface as different types
            logger.debug("Attempt failed: %s - %s", type(e).__name__, str(e)[:100])
            return False

        if result.status_code == 0 and b"OK" in result.std_out:
            logger.info("Connected: %s + %s", transport.value, auth.value)
            self._session = session
            self._transport_used = f"{transport.value}/{auth.value}"
            return True
        return False

    def run_ps(self, script: str) -> PSRemoteResult:
        """
        Execute a PowerShell script on the host.

        Returns:
            PSRemoteResult with output and status
        """
        if self._is_localhost:
            return self._run_local_ps(script)

        if not self.connect():
            return PSRemoteResult(success=False, error=f"Failed to connect to {self.config.hostname} over WinRM")

        try:
            result = self._session.run_ps(script)
        except winrm.exceptions.WinRMError as e:
            logger.error("PowerShell execution failed on %s: %s", self.config.hostname, e)
            return PSRemoteResult(success=False, error=str(e), transport_used=self._transport_used)

        return PSRemoteResult(
            success=result.status_code == 0,
            stdout=result.std_out.decode("utf-8", errors="replace"),
            stderr=result.std_err.decode("utf-8", errors="replace"),
            return_code=result.status_code,
            transport_used=self._transport_used,
        )

    def _run_local_ps(self, script: str) -> PSRemoteResult:
        """Write the script to a temp file and run it with ExecutionPolicy Bypass."""
        logger.info("Running PowerShell locally")

        with tempfile.NamedTemporaryFile(mode="w", suffix=".ps1", delete=False, encoding="utf-8") as f:
            f.write(script)
            script_path = f.name

        cmd = ["powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", script_path]
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.operation_timeout_sec,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return PSRemoteResult(
                success=False,
                error=f"Script timed out after {self.config.operation_timeout_sec}s",
                transport_used="local",
            )
        except OSError as e:
            return PSRemoteResult(success=False, error=str(e), transport_used="local")
        finally:
            os.unlink(script_path)

        return PSRemoteResult(
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            return_code=result.returncode,
            transport_used="local",
        )
