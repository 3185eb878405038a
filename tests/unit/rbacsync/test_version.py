from unittest.mock import patch

from rbacsync.version import get_version
from rbacsync.version import get_version_string


class TestGetVersion:
    def test_get_version_returns_package_version(self):
        with patch("rbacsync.version.version", return_value="1.2.3"):
            assert get_version() == "1.2.3"

    def test_get_version_returns_dev_when_not_installed(self):
        from importlib.metadata import PackageNotFoundError

        with patch("rbacsync.version.version", side_effect=PackageNotFoundError):
            assert get_version() == "dev"


def test_version_string():
    with patch("rbacsync.version.get_version", return_value="1.2.3"):
        assert get_version_string() == "rbacsync, version 1.2.3"
