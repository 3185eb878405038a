import unittest.mock

import pytest
from dynaconf import Dynaconf

import rbacsync.cli
from rbacsync.exceptions import ConfigurationError
from rbacsync.models import SyncTarget
from rbacsync.models import TargetResult
from rbacsync.util import STATUS_FAILURE
from rbacsync.util import STATUS_SUCCESS

REQUIRED_ARGS = ["--group-list", "default:g1@x.com", "--fake-group-response"]


@pytest.fixture
def test_settings():
    return Dynaconf(merge_enabled=True, envvar_prefix="RBACSYNC_UNIT_TEST")


def _cli(test_settings, build_loop=None):
    build_loop = build_loop if build_loop is not None else unittest.mock.MagicMock()
    return rbacsync.cli.CLI(build_loop, "rbacsync", settings_object=test_settings), build_loop


def test_cli_version_flag(capsys, test_settings):
    cli, build_loop = _cli(test_settings)
    with unittest.mock.patch(
        "rbacsync.version.get_version_string",
        return_value="rbacsync, version 1.2.3",
    ):
        exit_code = cli.main(["--version"])
    assert exit_code == STATUS_SUCCESS
    assert "rbacsync, version 1.2.3" in capsys.readouterr().out
    build_loop.assert_not_called()


def test_cli_missing_group_list_fails_before_running(test_settings):
    cli, build_loop = _cli(test_settings)
    assert cli.main(["--fake-group-response"]) == STATUS_FAILURE
    build_loop.assert_not_called()


def test_cli_invalid_group_entry_fails(test_settings):
    cli, build_loop = _cli(test_settings)
    assert cli.main(["--group-list", "default", "--fake-group-response"]) == STATUS_FAILURE
    build_loop.assert_not_called()


def test_cli_flags_build_config(test_settings):
    cli, build_loop = _cli(test_settings)
    build_loop.return_value.run_pass.return_value = []

    cli.main(
        REQUIRED_ARGS
        + [
            "--group-list",
            "kube-system:g2@x.com,ns:g3@x.com",
            "--role-name",
            "viewers",
            "--cluster-role-name",
            "view",
            "--update-interval",
            "5m",
            "--in-cluster",
            "--once",
        ],
    )

    config, metrics = build_loop.call_args[0]
    assert config.targets == (
        SyncTarget("default", "g1@x.com"),
        SyncTarget("kube-system", "g2@x.com"),
        SyncTarget("ns", "g3@x.com"),
    )
    assert config.role_binding_name == "viewers"
    assert config.cluster_role_name == "view"
    assert config.update_interval == 300.0
    assert config.in_cluster is True
    assert config.fake_response is True


def test_cli_flags_override_settings(test_settings):
    test_settings.update({"k8s": {"cluster_role_name": "from-settings", "role_binding_name": "kept"}})
    cli, build_loop = _cli(test_settings)
    build_loop.return_value.run_pass.return_value = []

    cli.main(REQUIRED_ARGS + ["--cluster-role-name", "from-cli", "--once"])

    config = build_loop.call_args[0][0]
    assert config.cluster_role_name == "from-cli"
    assert config.role_binding_name == "kept"


def test_cli_once_exit_code_reflects_failures(test_settings):
    cli, build_loop = _cli(test_settings)
    target = SyncTarget("default", "g1@x.com")

    build_loop.return_value.run_pass.return_value = [TargetResult(target=target, success=True)]
    assert cli.main(REQUIRED_ARGS + ["--once"]) == STATUS_SUCCESS

    build_loop.return_value.run_pass.return_value = [
        TargetResult(target=target, success=True),
        TargetResult(target=target, success=False, phase="update"),
    ]
    assert cli.main(REQUIRED_ARGS + ["--once"]) == STATUS_FAILURE


def test_cli_client_setup_failure_is_fatal(test_settings):
    build_loop = unittest.mock.MagicMock(side_effect=ConfigurationError("no kubeconfig"))
    cli, _ = _cli(test_settings, build_loop)
    assert cli.main(REQUIRED_ARGS) == STATUS_FAILURE


@unittest.mock.patch("rbacsync.cli.MetricsServer")
def test_cli_serves_metrics_and_runs_loop(metrics_server, test_settings):
    cli, build_loop = _cli(test_settings)

    exit_code = cli.main(REQUIRED_ARGS + ["--listen-address", "127.0.0.1:9999"])

    assert exit_code == STATUS_SUCCESS
    host, port, metrics = metrics_server.call_args[0]
    assert (host, port) == ("127.0.0.1", 9999)
    assert metrics is build_loop.call_args[0][1]
    metrics_server.return_value.start.assert_called_once_with()
    build_loop.return_value.run.assert_called_once()
    metrics_server.return_value.stop.assert_called_once_with()
