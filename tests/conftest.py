import pytest

from eth_ico_admin.config import parse_settings
from support import FakeLedger, config_text


@pytest.fixture
def settings(tmp_path):
    return parse_settings(config_text(tmp_path), source="test.yml")


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "cli.yml"
    path.write_text(config_text(tmp_path))
    return path


@pytest.fixture
def ledger():
    return FakeLedger()
