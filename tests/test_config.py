import json
import os

import pytest

from peerfinder.config import Config, load_config, parse_socket_addr, parse_tags


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # No stray .env or PEERFINDER_* variables from the developer's shell
    monkeypatch.chdir(tmp_path)
    for key in list(Config().to_dict()):
        monkeypatch.delenv(f'PEERFINDER_{key.upper()}', raising=False)


def test_parse_socket_addr():
    assert parse_socket_addr('8.8.8.8:53') == ('8.8.8.8', 53)
    assert parse_socket_addr(' 10.0.0.1:5353 ') == ('10.0.0.1', 5353)


@pytest.mark.parametrize('value', ['8.8.8.8', 'dns.google:53', '8.8.8.8:0', '8.8.8.8:99999', ':53', '8.8.8.8:x'])
def test_parse_socket_addr_rejects(value):
    with pytest.raises(ValueError):
        parse_socket_addr(value)


def test_parse_tags():
    assert parse_tags('uk-lon, us-nyc,,') == ['uk-lon', 'us-nyc']
    assert parse_tags('') == []


def test_defaults():
    config = Config()
    assert config.dns_address == ('8.8.8.8', 53)
    assert config.max_age == 50
    assert config.broadcast_port == 12345
    assert config.dns_check_interval == 3600


def test_from_env(monkeypatch):
    monkeypatch.setenv('PEERFINDER_DOMAIN', 'wavey.io')
    monkeypatch.setenv('PEERFINDER_TAGS', 'uk-lon,us-nyc')
    monkeypatch.setenv('PEERFINDER_BROADCAST_INTERVAL', '2')

    config = Config.from_env()

    assert config.domain == 'wavey.io'
    assert config.tags == ['uk-lon', 'us-nyc']
    assert config.max_age == 20


def test_from_dotenv_file(tmp_path):
    (tmp_path / '.env').write_text('PEERFINDER_PREFIX=live\n')
    try:
        assert Config.from_env().prefix == 'live'
    finally:
        os.environ.pop('PEERFINDER_PREFIX', None)


def test_file_round_trip(tmp_path):
    path = tmp_path / 'peerfinder.json'
    Config(domain='wavey.io', tags=['uk-lon'], interfaces=['eth0']).save(path)

    config = Config.from_file(path)
    assert config.domain == 'wavey.io'
    assert config.interfaces == ['eth0']


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / 'nope.json') == Config()


def test_env_overrides_file(monkeypatch, tmp_path):
    path = tmp_path / 'peerfinder.json'
    path.write_text(json.dumps({'domain': 'file.io', 'prefix': 'live'}))
    monkeypatch.setenv('PEERFINDER_DOMAIN', 'env.io')

    config = load_config(path)

    assert config.domain == 'env.io'
    assert config.prefix == 'live'


def test_file_accepts_comma_separated_lists(tmp_path):
    path = tmp_path / 'peerfinder.json'
    path.write_text(json.dumps({'tags': 'uk-lon,us-nyc', 'interfaces': 'eth0'}))

    config = Config.from_file(path)

    assert config.tags == ['uk-lon', 'us-nyc']
    assert config.interfaces == ['eth0']


def test_malformed_env_number_names_the_variable(monkeypatch):
    monkeypatch.setenv('PEERFINDER_BROADCAST_PORT', 'abc')

    with pytest.raises(ValueError, match='PEERFINDER_BROADCAST_PORT'):
        Config.from_env()
