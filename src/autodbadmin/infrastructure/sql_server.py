"""
SQL Server connection and query execution module.

Handles:
- Connection string building
- ODBC driver detection and fallback
- SQL Server version detection
- Query and statement execution (BACKUP/RESTORE/DBCC need autocommit)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import pyodbc

from autodbadmin.domain.config import AuthType, Credential, SqlTarget
from autodbadmin.domain.errors import DbaConnectionError


logger = logging.getLogger(__name__)


@dataclass
class SqlServerInfo:
    """SQL Server instance information."""
    server_name: str
    computer_name: str
    instance_name: str | None
    version: str
    version_major: int
    edition: str
    product_level: str
    is_clustered: bool
    is_hadr_enabled: bool


def _convert_value(value: Any) -> Any:
    # LSNs are numeric(25,0); everything we read with scale 0 is a whole number
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    return value


class SqlConnector:
    """
    SQL Server connection manager.

    Opens a short-lived connection per call, with support for SQL Server
    2008 R2 through 2022+.
    """

    def __init__(self, server_instance: str, auth: str = "integrated",
                 username: str | None = None, password: str | None = None,
                 connect_timeout: int = 30, query_timeout: int = 0):
        """
        Initialize SQL connector.

        Args:
            server_instance: Server instance string (e.g., "SERVER\\INSTANCE" or "SERVER,PORT")
            auth: Authentication mode ('integrated' or 'sql')
            username: SQL username (required if auth='sql')
            password: SQL password (required if auth='sql')
            connect_timeout: Connection timeout in seconds
            query_timeout: Statement timeout in seconds (0 waits forever)
        """
        self.server_instance = server_instance
        self.auth = auth.lower()
        self.username = username
        self.password = password
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self._driver: str | None = None
        self._server_info: SqlServerInfo | None = None

        logger.info("SqlConnector initialized for %s (auth=%s)", server_instance, auth)

    def _detect_odbc_driver(self) -> str:
        """
        Detect best available ODBC driver.

        Returns:
            ODBC driver name

        Raises:
            DbaConnectionError: If no suitable driver found
        """
        if self._driver:
            return self._driver

        drivers = pyodbc.drivers()
        logger.debug("Available ODBC drivers: %s", drivers)

        # Preferred drivers (newest first)
        preferred = [
            "ODBC Driver 18 for SQL Server",
            "ODBC Driver 17 for SQL Server",
            "ODBC Driver 13 for SQL Server",
            "ODBC Driver 11 for SQL Server"
        ]
        fallback = [
            "SQL Server Native Client 11.0",
            "SQL Server Native Client 10.0",
            "SQL Server"
        ]

        for driver in preferred:
            if driver in drivers:
                logger.info("Using ODBC driver: %s", driver)
                self._driver = driver
                return driver

        for driver in fallback:
            if driver in drivers:
                logger.warning("Using fallback ODBC driver: %s", driver)
                self._driver = driver
                return driver

        raise DbaConnectionError("No SQL Server ODBC driver found. Please install ODBC Driver 17 or 18.")

    def build_connection_string(self, database: str = "master") -> str:
        """
        Build ODBC connection string.

        Args:
            database: Initial catalog for the connection

        Returns:
            Connection string
        """
        driver = self._detect_odbc_driver()

        parts = [
            f"DRIVER={{{driver}}}",
            f"SERVER={self.server_instance}",
            f"DATABASE={database}",
            f"TIMEOUT={self.connect_timeout}",
            "Encrypt=no",
            "TrustServerCertificate=yes"
        ]

        if self.auth in ("integrated", "windows"):
            parts.append("Trusted_Connection=yes")
        else:
            if not self.username or not self.password:
                raise ValueError("Username and password required for SQL authentication")
            parts.append(f"UID={self.username}")
            parts.append(f"PWD={{{self.password}}}")

        logger.debug("Connection string built for %s/%s (credentials masked)",
                     self.server_instance, database)
        return ";".join(parts)

    def _connect(self, database: str, autocommit: bool = False) -> "pyodbc.Connection":
        conn = pyodbc.connect(
            self.build_connection_string(database),
            autocommit=autocommit,
            timeout=self.connect_timeout,
        )
        if self.query_timeout:
            conn.timeout = self.query_timeout
        return conn

    def test_connection(self) -> bool:
        """
        Test SQL Server connectivity.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            with self._connect("master") as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT @@VERSION")
                version = cursor.fetchone()[0]
                logger.info("Connection test successful: %s", self.server_instance)
                logger.debug("SQL Server version: %s...", version[:50])
                return True
        except pyodbc.Error as e:
            logger.error("Connection test failed for %s: %s", self.server_instance, e)
            return False

    def detect_version(self) -> SqlServerInfo:
        """
        Detect SQL Server version and properties.

        Returns:
            SqlServerInfo object

        Raises:
            pyodbc.Error: If connection or query fails
        """
        if self._server_info:
            return self._server_info

        # CAST the sql_variant properties; ODBC cannot bind them directly
        row = self.execute_query("""
            SELECT
                CAST(SERVERPROPERTY('ServerName') AS NVARCHAR(256)) AS ServerName,
                CAST(SERVERPROPERTY('ComputerNamePhysicalNetBIOS') AS NVARCHAR(256)) AS ComputerName,
                CAST(SERVERPROPERTY('InstanceName') AS NVARCHAR(256)) AS InstanceName,
                CAST(SERVERPROPERTY('ProductVersion') AS NVARCHAR(128)) AS Version,
                CAST(PARSENAME(CAST(SERVERPROPERTY('ProductVersion') AS NVARCHAR(128)), 4) AS INT) AS VersionMajor,
                CAST(SERVERPROPERTY('Edition') AS NVARCHAR(256)) AS Edition,
                CAST(SERVERPROPERTY('ProductLevel') AS NVARCHAR(128)) AS ProductLevel,
                CAST(SERVERPROPERTY('IsClustered') AS INT) AS IsClustered,
                CAST(ISNULL(SERVERPROPERTY('IsHadrEnabled'), 0) AS INT) AS IsHadrEnabled
        """)[0]

        server_name = row["ServerName"] or self.server_instance
        self._server_info = SqlServerInfo(
            server_name=server_name,
            computer_name=row["ComputerName"] or server_name.split("\\")[0],
            instance_name=row["InstanceName"],
            version=row["Version"] or "",
            version_major=row["VersionMajor"] or 0,
            edition=row["Edition"] or "",
            product_level=row["ProductLevel"] or "",
            is_clustered=bool(row["IsClustered"]),
            is_hadr_enabled=bool(row["IsHadrEnabled"]),
        )

        logger.info(
            "Detected SQL Server %s (%s)",
            self._server_info.version, self._server_info.edition
        )
        return self._server_info

    @property
    def computer_name(self) -> str:
        return self.detect_version().computer_name

    @property
    def instance_name(self) -> str:
        return self.detect_version().instance_name or "MSSQLSERVER"

    @property
    def sql_instance(self) -> str:
        return self.detect_version().server_name

    def execute_query(self, query: str, params: Optional[Sequence[Any]] = None,
                      database: str = "master", autocommit: bool = False) -> List[Dict[str, Any]]:
        """
        Execute SQL query and return results as list of dictionaries.

        Args:
            query: SQL query string (``?`` placeholders)
            params: Positional parameters
            database: Database to run the query in
            autocommit: Needed for RESTORE HEADERONLY and FILELISTONLY

        Returns:
            List of dictionaries (column name -> value); only the first
            result set is read

        Raises:
            pyodbc.Error: If query execution fails
        """
        with self._connect(database, autocommit=autocommit) as conn:
            cursor = conn.cursor()
            cursor.execute(query, *(params or ()))

            # Skip row counts from leading statements until a result set shows up
            while cursor.description is None:
                if not cursor.nextset():
                    return []

            columns = [column[0] for column in cursor.description]
            results = [
                {column: _convert_value(row[i]) for i, column in enumerate(columns)}
                for row in cursor.fetchall()
            ]

            logger.debug("Query returned %d rows, %d columns", len(results), len(columns))
            return results

    def execute_non_query(self, statement: str, params: Optional[Sequence[Any]] = None,
                          database: str = "master") -> None:
        """
        Execute a statement in autocommit mode.

        BACKUP, RESTORE, DBCC and ALTER DATABASE cannot run inside a user
        transaction, and they report progress as separate result sets which
        must be drained for the statement to finish.

        Raises:
            pyodbc.Error: If the statement fails
        """
        logger.debug("Executing on %s/%s: %s", self.server_instance, database, statement)
        with self._connect(database, autocommit=True) as conn:
            cursor = conn.cursor()
            cursor.execute(statement, *(params or ()))
            while cursor.nextset():
                pass

    def execute_scalar(self, query: str, params: Optional[Sequence[Any]] = None,
                       database: str = "master") -> Any:
        """
        Execute query and return single scalar value.

        Returns:
            Single value from first row, first column
        """
        results = self.execute_query(query, params, database)
        if results:
            first_row = results[0]
            return next(iter(first_row.values())) if first_row else None
        return None

    def database_exists(self, name: str) -> bool:
        return bool(self.execute_scalar(
            "SELECT COUNT(*) FROM sys.databases WHERE name = ?", [name]
        ))


def connect_instance(target: SqlTarget, credential: Credential | None = None,
                     query_timeout: int = 0, connect_timeout: int = 30) -> SqlConnector:
    """
    Build a connector for a configured target and check it can connect.

    ``connect_timeout`` applies when the target does not set its own.

    Raises:
        DbaConnectionError: The instance is unreachable or the login fails
    """
    auth = "sql" if target.auth_type == AuthType.SQL.value else "integrated"
    username = password = None
    if auth == "sql":
        if credential is None:
            raise DbaConnectionError(
                f"Target '{target.id}' uses SQL authentication but no credential was loaded"
            )
        username = target.username or credential.username
        password = credential.get_password()

    connector = SqlConnector(
        target.server_instance,
        auth=auth,
        username=username,
        password=password,
        connect_timeout=target.connect_timeout or connect_timeout,
        query_timeout=query_timeout,
    )
    try:
        connector.detect_version()
    except pyodbc.Error as e:
        raise DbaConnectionError(f"Failure connecting to {target.display_name}: {e}") from e
    return connector
