"""
Конфигурация подключения к базе данных и другие настройки

Defaults live in the dict constants below; ``load_config`` overlays an INI
file on top of them.
"""
import configparser
import copy
import os
from typing import Any, Dict

from src.core.exceptions import ConfigurationError

# Database configuration for PostgreSQL
# IMPORTANT: Replace these values with your actual database credentials
DB_CONFIG = {
    'host': 'localhost',          # Database host
    'port': '5432',               # Database port
    'dbname': 'postgres',         # Database name
    'user': 'postgres',           # Database user
    'password': '',               # Database password
}

# Ограничения рекурсивного обхода
RESOLVER_CONFIG = {
    'max_depth': 1000,
}

# Обход всей базы
SCAN_CONFIG = {
    'excluded_schemas': ['pg_catalog', 'information_schema', 'pg_toast'],
    'strict': False,
}

LOGGING_CONFIG = {
    'level': 'WARNING',
    'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
}

# Настройки визуализации графа
GRAPH_CONFIG = {
    'node_size': 2000,
    'font_size': 8,
    'arrow_size': 20,
    'width': 1600,
    'height': 900
}

# Цвета для разных типов объектов
OBJECT_COLORS = {
    'constraint': '#4CAF50',         # Зеленый
    'index': '#2196F3',              # Синий
    'materialized_view': '#FFC107',  # Желтый
    'collation': '#9C27B0',          # Фиолетовый
}

DEFAULTS = {
    'database': DB_CONFIG,
    'resolver': RESOLVER_CONFIG,
    'scan': SCAN_CONFIG,
    'logging': LOGGING_CONFIG,
}

_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def default_config() -> Dict[str, Dict[str, Any]]:
    """Return a deep copy of the built-in defaults."""
    return copy.deepcopy(DEFAULTS)


def load_config(config_path: str) -> Dict[str, Dict[str, Any]]:
    """Load configuration from an INI file over the defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary of sections: database, resolver, scan, logging

    Raises:
        ConfigurationError: the file is missing or a value is invalid
    """
    if not os.path.isfile(config_path):
        raise ConfigurationError(f"configuration file not found: {config_path}",
                                 config_key="path", config_value=config_path)

    parser = configparser.ConfigParser()
    try:
        parser.read(config_path, encoding='utf-8')
    except configparser.Error as e:
        raise ConfigurationError(f"cannot parse {config_path}: {e}") from e

    config = default_config()

    if parser.has_section('database'):
        for key, value in parser['database'].items():
            config['database'][key] = value

    if parser.has_section('resolver'):
        section = parser['resolver']
        if 'max_depth' in section:
            config['resolver']['max_depth'] = _get_int(section, 'max_depth', minimum=1)

    if parser.has_section('scan'):
        section = parser['scan']
        if 'excluded_schemas' in section:
            config['scan']['excluded_schemas'] = [
                name.strip() for name in section['excluded_schemas'].split(',') if name.strip()
            ]
        if 'strict' in section:
            try:
                config['scan']['strict'] = section.getboolean('strict')
            except ValueError as e:
                raise ConfigurationError(str(e), config_key='scan.strict',
                                         config_value=section['strict']) from e

    if parser.has_section('logging'):
        section = parser['logging']
        if 'level' in section:
            level = section['level'].strip().upper()
            if level not in _LOG_LEVELS:
                raise ConfigurationError(f"unknown log level {level}",
                                         config_key='logging.level', config_value=level)
            config['logging']['level'] = level
        if 'format' in section:
            config['logging']['format'] = section.get('format', raw=True)

    return config


def _get_int(section: configparser.SectionProxy, key: str, minimum: int = None) -> int:
    raw = section[key]
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{section.name}.{key} must be an integer",
                                 config_key=f"{section.name}.{key}", config_value=raw) from e
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{section.name}.{key} must be >= {minimum}",
                                 config_key=f"{section.name}.{key}", config_value=raw)
    return value
