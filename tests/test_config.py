"""Tests for configuration loading."""
import pytest

from src.config import DEFAULTS, default_config, load_config
from src.core.exceptions import ConfigurationError


def write_ini(tmp_path, text):
    path = tmp_path / 'settings.ini'
    path.write_text(text, encoding='utf-8')
    return str(path)


def test_defaults_are_copies():
    config = default_config()
    config['scan']['excluded_schemas'].append('audit')
    assert 'audit' not in DEFAULTS['scan']['excluded_schemas']
    assert config['resolver']['max_depth'] == 1000


def test_load_overrides(tmp_path):
    path = write_ini(tmp_path, """
[database]
host = replica
dbname = shop

[resolver]
max_depth = 50

[scan]
excluded_schemas = pg_catalog, audit
strict = yes

[logging]
level = debug
format = %(levelname)s %(message)s
""")
    config = load_config(path)

    assert config['database']['host'] == 'replica'
    assert config['database']['user'] == 'postgres'
    assert config['resolver']['max_depth'] == 50
    assert config['scan']['excluded_schemas'] == ['pg_catalog', 'audit']
    assert config['scan']['strict'] is True
    assert config['logging']['level'] == 'DEBUG'
    assert config['logging']['format'] == '%(levelname)s %(message)s'


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        load_config(str(tmp_path / 'nope.ini'))
    assert exc_info.value.code == 'CONFIGURATION_ERROR'


@pytest.mark.parametrize('text, key', [
    ("[resolver]\nmax_depth = deep\n", 'resolver.max_depth'),
    ("[resolver]\nmax_depth = 0\n", 'resolver.max_depth'),
    ("[scan]\nstrict = maybe\n", 'scan.strict'),
    ("[logging]\nlevel = LOUD\n", 'logging.level'),
])
def test_invalid_values(tmp_path, text, key):
    with pytest.raises(ConfigurationError) as exc_info:
        load_config(write_ini(tmp_path, text))
    assert exc_info.value.details['config_key'] == key


def test_unparsable_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(write_ini(tmp_path, "max_depth = 5\n"))
