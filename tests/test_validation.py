import stat

import pytest

from netavark.errors import NetavarkError
from netavark.validation import ns_checks


def test_existing_file(tmp_path):
    path = tmp_path / "netns"
    path.write_bytes(b"abc")
    result = ns_checks(str(path))
    assert result.st_size == 3
    assert stat.S_ISREG(result.st_mode)


def test_directory_is_accepted(tmp_path):
    result = ns_checks(tmp_path)
    assert stat.S_ISDIR(result.st_mode) is True
    assert result.st_ino == tmp_path.stat().st_ino


def test_missing_file(tmp_path):
    missing = tmp_path / "missing"
    with pytest.raises(NetavarkError) as info:
        ns_checks(missing)
    assert isinstance(info.value.__cause__, FileNotFoundError)
    assert "missing" in str(info.value)