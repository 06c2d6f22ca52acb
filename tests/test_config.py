import json
from pathlib import Path

from channelcopy.config import Config, load_config


def clear_env(monkeypatch):
    for key in ['HOST', 'PORT', 'CONNECT_TIMEOUT', 'PACKET_SIZE', 'LOCAL_DIRECTORY',
                'COMPLETION_TIMEOUT', 'MAX_PENDING_EVENTS', 'LOG_LEVEL']:
        monkeypatch.delenv(f'CHANNELCOPY_{key}', raising=False)
    # Keep load_dotenv from picking up a .env in the working directory
    monkeypatch.setattr('channelcopy.config.load_dotenv', lambda: None)


def test_defaults():
    config = Config()
    assert config.port == 8470
    assert config.packet_size == 512 * 1024
    assert config.local_directory == Path('.')


def test_from_env(monkeypatch):
    clear_env(monkeypatch)
    monkeypatch.setenv('CHANNELCOPY_HOST', '10.0.0.5')
    monkeypatch.setenv('CHANNELCOPY_PORT', '9000')
    monkeypatch.setenv('CHANNELCOPY_PACKET_SIZE', '4096')
    monkeypatch.setenv('CHANNELCOPY_LOCAL_DIRECTORY', '/tmp/in')

    config = Config.from_env()
    assert config.host == '10.0.0.5'
    assert config.port == 9000
    assert config.packet_size == 4096
    assert config.local_directory == Path('/tmp/in')


def test_file_round_trip(tmp_path):
    path = tmp_path / 'config.json'
    config = Config(host='example', port=1234, packet_size=2048, log_level='DEBUG')
    config.save(path)

    loaded = Config.from_file(path)
    assert loaded.to_dict() == config.to_dict()
    assert json.loads(path.read_text())['port'] == 1234


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / 'nope.json').to_dict() == Config().to_dict()


def test_env_overrides_file(tmp_path, monkeypatch):
    clear_env(monkeypatch)
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'host': 'from-file', 'port': 1111, 'packet_size': 2048}))
    monkeypatch.setenv('CHANNELCOPY_PORT', '2222')

    config = load_config(path)
    assert config.host == 'from-file'
    assert config.port == 2222
    assert config.packet_size == 2048
