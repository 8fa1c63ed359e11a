"""Database connection handling module."""
import logging
from typing import Any, Dict, Optional

import psycopg2
from psycopg2.extensions import connection

from src.config import DB_CONFIG, load_config

logger = logging.getLogger(__name__)

_CONNECT_KEYS = ('host', 'port', 'dbname', 'user', 'password', 'sslmode',
                 'application_name', 'connect_timeout')


class DatabaseConnection:
    """Handles database connections with context manager support."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize connection parameters.

        Args:
            config: the ``database`` section of the configuration;
                ``DB_CONFIG`` when omitted
        """
        self.config = self._connect_params(config if config is not None else DB_CONFIG)
        self._conn: Optional[connection] = None

    @classmethod
    def from_file(cls, config_path: str) -> 'DatabaseConnection':
        """Build a connection from the ``[database]`` section of an INI file."""
        return cls(load_config(config_path)['database'])

    @staticmethod
    def _connect_params(config: Dict[str, Any]) -> Dict[str, Any]:
        params = {key: config[key] for key in _CONNECT_KEYS if config.get(key) not in (None, '')}
        # старые конфиги используют 'database' вместо 'dbname'
        if 'dbname' not in params and config.get('database'):
            params['dbname'] = config['database']
        params.setdefault('application_name', 'collation-dependencies')
        return params

    def connect(self) -> connection:
        """Establish database connection.

        Returns:
            Active database connection
        """
        if not self._conn or self._conn.closed:
            logger.debug("Connecting to %s:%s/%s", self.config.get('host'),
                         self.config.get('port'), self.config.get('dbname'))
            self._conn = psycopg2.connect(**self.config)
        return self._conn

    def close(self):
        """Close the database connection if it exists."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> connection:
        """Context manager entry.

        Returns:
            Active database connection
        """
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
