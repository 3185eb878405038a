import pytest

from rbacsync.config import Config
from rbacsync.config import DEFAULT_KUBECONFIG
from rbacsync.config import parse_duration
from rbacsync.config import parse_group_list
from rbacsync.config import parse_listen_address
from rbacsync.exceptions import ConfigurationError
from rbacsync.models import SyncTarget


def _settings(**sections):
    base = {
        "directory": {
            "group_list": "default:g1@x.com",
            "credentials_file": "/secrets/sa.json",
            "delegated_admin": "admin@x.com",
        },
    }
    for name, values in sections.items():
        base[name] = {**base.get(name, {}), **values}
    return base


def test_parse_group_list_comma_separated():
    assert parse_group_list("default:g1@x.com, kube-system:g2@x.com") == (
        SyncTarget("default", "g1@x.com"),
        SyncTarget("kube-system", "g2@x.com"),
    )


def test_parse_group_list_repeated_and_duplicates_kept():
    assert parse_group_list(["ns-a:a@x.com", "ns-b:b@x.com,ns-a:a@x.com"]) == (
        SyncTarget("ns-a", "a@x.com"),
        SyncTarget("ns-b", "b@x.com"),
        SyncTarget("ns-a", "a@x.com"),
    )


@pytest.mark.parametrize("value", ["default", ":g1@x.com", "default:", "default: "])
def test_parse_group_list_rejects_incomplete_entries(value):
    with pytest.raises(ConfigurationError):
        parse_group_list(value)


def test_parse_group_list_empty():
    assert parse_group_list(None) == ()
    assert parse_group_list("") == ()


@pytest.mark.parametrize(
    "value,expected",
    [(90, 90.0), ("90", 90.0), ("30s", 30.0), ("15m", 900.0), ("1h30m", 5400.0), ("1.5m", 90.0)],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "15x", "m15", "0", -5, "0s"])
def test_parse_duration_rejects_invalid(value):
    with pytest.raises(ConfigurationError):
        parse_duration(value)


def test_parse_listen_address():
    assert parse_listen_address(":8080") == ("", 8080)
    assert parse_listen_address("127.0.0.1:9090") == ("127.0.0.1", 9090)
    assert parse_listen_address("[::1]:8080") == ("::1", 8080)


@pytest.mark.parametrize("value", ["8080", "host:port", ":70000"])
def test_parse_listen_address_rejects_invalid(value):
    with pytest.raises(ConfigurationError):
        parse_listen_address(value)


def test_from_settings_defaults():
    config = Config.from_settings(_settings())
    assert config.targets == (SyncTarget("default", "g1@x.com"),)
    assert config.cluster_role_name == "developer"
    assert config.role_binding_name == "developer"
    assert config.listen_address == ":8080"
    assert config.update_interval == 900.0
    assert config.workers == 1
    assert config.in_cluster is False
    assert config.kubeconfig == DEFAULT_KUBECONFIG
    assert config.create_missing_bindings is False
    assert config.fake_response is False


def test_from_settings_overrides():
    config = Config.from_settings(
        _settings(
            common={"update_interval": "30s", "workers": "4", "listen_address": "0.0.0.0:9000"},
            k8s={"cluster_role_name": "viewer", "role_binding_name": "viewers", "in_cluster": "true"},
        ),
    )
    assert config.update_interval == 30.0
    assert config.workers == 4
    assert config.listen_host_port == ("0.0.0.0", 9000)
    assert config.cluster_role_name == "viewer"
    assert config.role_binding_name == "viewers"
    assert config.in_cluster is True
    assert config.kubeconfig is None


def test_from_settings_accepts_uppercase_keys_from_environment():
    settings = _settings()
    settings["k8s"] = {"CLUSTER_ROLE_NAME": "viewer"}
    assert Config.from_settings(settings).cluster_role_name == "viewer"


def test_from_settings_requires_group_list():
    settings = _settings()
    settings["directory"]["group_list"] = None
    with pytest.raises(ConfigurationError):
        Config.from_settings(settings)


@pytest.mark.parametrize("key", ["cluster_role_name", "role_binding_name"])
def test_from_settings_requires_role_names(key):
    with pytest.raises(ConfigurationError):
        Config.from_settings(_settings(k8s={key: ""}))


def test_from_settings_requires_delegated_credentials():
    settings = _settings()
    del settings["directory"]["delegated_admin"]
    with pytest.raises(ConfigurationError) as excinfo:
        Config.from_settings(settings)
    assert "delegated_admin" in str(excinfo.value)


def test_from_settings_fake_response_needs_no_credentials():
    config = Config.from_settings(
        {"directory": {"group_list": "default:g1@x.com", "fake_response": True}},
    )
    assert config.fake_response is True


def test_from_settings_default_auth_needs_no_key_file():
    config = Config.from_settings(
        {"directory": {"group_list": "default:g1@x.com", "auth_method": "default"}},
    )
    assert config.auth_method == "default"


def test_from_settings_rejects_unknown_auth_method():
    with pytest.raises(ConfigurationError):
        Config.from_settings(_settings(directory={"auth_method": "oauth"}))


def test_from_settings_rejects_zero_workers():
    with pytest.raises(ConfigurationError):
        Config.from_settings(_settings(common={"workers": 0}))
