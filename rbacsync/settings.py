import argparse
import logging
from typing import Any

from dynaconf import Dynaconf

logger = logging.getLogger(__name__)


settings = Dynaconf(
    includes=["settings.toml"],
    load_dotenv=True,
    merge_enabled=True,
    envvar_prefix="RBACSYNC",
)


# (CLI attribute, settings section, settings key)
CLI_SETTINGS_MAPPING = [
    ("listen_address", "common", "listen_address"),
    ("update_interval", "common", "update_interval"),
    ("workers", "common", "workers"),
    ("cluster_role_name", "k8s", "cluster_role_name"),
    ("role_binding_name", "k8s", "role_binding_name"),
    ("in_cluster", "k8s", "in_cluster"),
    ("kubeconfig", "k8s", "kubeconfig"),
    ("kube_context", "k8s", "context"),
    ("create_missing_bindings", "k8s", "create_missing_bindings"),
    ("request_timeout", "k8s", "request_timeout"),
    ("group_list", "directory", "group_list"),
    ("directory_auth_method", "directory", "auth_method"),
    ("credentials_file", "directory", "credentials_file"),
    ("delegated_admin", "directory", "delegated_admin"),
    ("fake_group_response", "directory", "fake_response"),
    ("statsd_enabled", "statsd", "enabled"),
    ("statsd_host", "statsd", "host"),
    ("statsd_port", "statsd", "port"),
    ("statsd_prefix", "statsd", "prefix"),
]


def populate_settings_from_config(config: argparse.Namespace, target: Any = None) -> None:
    """
    Overlay values given on the command line onto the settings object.

    CLI flags default to None (or False for switches) so that anything left unset on the
    command line falls back to settings.toml and RBACSYNC_* environment variables.

    Args:
        config: The parsed CLI arguments.
        target: The settings object to update. Defaults to the module level `settings`.
    """
    target = settings if target is None else target
    for attribute, section, key in CLI_SETTINGS_MAPPING:
        value = getattr(config, attribute, None)
        if value is None or value is False:
            continue
        if isinstance(value, (list, tuple)):
            # merge_enabled would append to a list coming from settings.toml, the CLI replaces it.
            value = ",".join(value)
        logger.debug("Setting %s.%s from command line argument '%s'.", section, key, attribute)
        target.update({section: {key: value}})


def describe_settings(target: Any = None) -> dict:
    """
    Settings as a dict suitable for a debug log line, with credential paths masked.
    """
    target = settings if target is None else target
    described = {}
    for section in ("common", "k8s", "directory", "statsd"):
        values = dict(target.get(section, None) or {})
        for key in list(values):
            if str(key).lower() == "credentials_file" and values[key]:
                values[key] = "***"
        described[section] = values
    return described
