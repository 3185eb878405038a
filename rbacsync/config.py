import os
import re
from dataclasses import dataclass
from typing import Any
from typing import Iterable
from typing import Optional
from typing import Union

from rbacsync.exceptions import ConfigurationError
from rbacsync.models import SyncTarget

DEFAULT_LISTEN_ADDRESS = ":8080"
DEFAULT_ROLE_NAME = "developer"
DEFAULT_UPDATE_INTERVAL = "15m"
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_KUBECONFIG = os.path.join(os.path.expanduser("~"), ".kube", "config")

AUTH_METHOD_DELEGATED = "delegated"
AUTH_METHOD_DEFAULT = "default"
AUTH_METHODS = (AUTH_METHOD_DELEGATED, AUTH_METHOD_DEFAULT)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse an update interval into seconds.

    Accepts a bare number of seconds (``90``, ``"90"``) or a compound duration made of
    h/m/s parts (``"30s"``, ``"15m"``, ``"1h30m"``).
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            position = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != position:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                position = match.end()
            if not text or position != len(text):
                raise ConfigurationError(
                    f'Invalid duration "{value}". Use seconds or a value such as "30s", "15m" or "1h30m".',
                )
    if seconds <= 0:
        raise ConfigurationError(f'Duration "{value}" must be greater than zero.')
    return seconds


def parse_listen_address(address: str) -> tuple[str, int]:
    """
    Split "host:port" into its parts. An empty host (":8080") listens on all interfaces.
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigurationError(f'Invalid listen address "{address}", expected "host:port".')
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f'Invalid port in listen address "{address}".') from None
    if not 0 <= port_number <= 65535:
        raise ConfigurationError(f'Port out of range in listen address "{address}".')
    return host.strip("[]"), port_number


def parse_group_list(group_list: Union[str, Iterable[str], None]) -> tuple[SyncTarget, ...]:
    """
    Turn "namespace:groupEmail" entries into SyncTargets.

    `group_list` is either one comma separated string or an iterable of them (a repeated
    CLI flag or a TOML array); order is kept and duplicates are allowed.
    """
    if group_list is None:
        return ()
    if isinstance(group_list, str):
        chunks = [group_list]
    else:
        chunks = list(group_list)

    targets: list[SyncTarget] = []
    for chunk in chunks:
        for element in str(chunk).split(","):
            element = element.strip()
            if not element:
                continue
            namespace, sep, email = element.partition(":")
            namespace, email = namespace.strip(), email.strip()
            if not sep or not namespace or not email:
                raise ConfigurationError(
                    f'Invalid group list entry "{element}". Namespace and email must both be set, '
                    'for example "default:team@example.com".',
                )
            targets.append(SyncTarget(namespace=namespace, group_email=email))
    return tuple(targets)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _section(settings: Any, name: str) -> dict:
    section = settings.get(name, None) or {}
    # dynaconf hands back Box objects, plain dict keeps lookups case-sensitive and simple.
    return {str(k).lower(): v for k, v in dict(section).items()}


@dataclass(frozen=True)
class Config:
    """
    Immutable runtime configuration, built once at startup and handed to each component.
    """

    targets: tuple[SyncTarget, ...]
    cluster_role_name: str = DEFAULT_ROLE_NAME
    role_binding_name: str = DEFAULT_ROLE_NAME
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    update_interval: float = 900.0
    workers: int = 1
    in_cluster: bool = False
    kubeconfig: Optional[str] = DEFAULT_KUBECONFIG
    kube_context: Optional[str] = None
    create_missing_bindings: bool = False
    request_timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT
    auth_method: str = AUTH_METHOD_DELEGATED
    credentials_file: Optional[str] = None
    delegated_admin: Optional[str] = None
    fake_response: bool = False
    statsd_enabled: bool = False
    statsd_host: str = "127.0.0.1"
    statsd_port: int = 8125
    statsd_prefix: str = ""

    @property
    def listen_host_port(self) -> tuple[str, int]:
        return parse_listen_address(self.listen_address)

    @classmethod
    def from_settings(cls, settings: Any) -> "Config":
        """
        Build and validate a Config from the dynaconf settings object.

        :raises ConfigurationError: when a required value is missing or malformed.
        """
        common = _section(settings, "common")
        k8s = _section(settings, "k8s")
        directory = _section(settings, "directory")
        statsd = _section(settings, "statsd")

        targets = parse_group_list(directory.get("group_list"))
        if not targets:
            raise ConfigurationError("Missing group list. Set --group-list or RBACSYNC_DIRECTORY__GROUP_LIST.")

        cluster_role_name = str(k8s.get("cluster_role_name", DEFAULT_ROLE_NAME) or "").strip()
        if not cluster_role_name:
            raise ConfigurationError("Missing cluster role name.")
        role_binding_name = str(k8s.get("role_binding_name", DEFAULT_ROLE_NAME) or "").strip()
        if not role_binding_name:
            raise ConfigurationError("Missing role binding name.")

        listen_address = str(common.get("listen_address") or DEFAULT_LISTEN_ADDRESS)
        parse_listen_address(listen_address)

        workers_value = common.get("workers")
        try:
            workers = 1 if workers_value is None else int(workers_value)
        except (TypeError, ValueError):
            raise ConfigurationError(f'Invalid worker count "{workers_value}".') from None
        if workers < 1:
            raise ConfigurationError("Worker count must be at least 1.")

        request_timeout = k8s.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
        if request_timeout is not None:
            request_timeout = parse_duration(request_timeout)

        fake_response = _as_bool(directory.get("fake_response", False))
        auth_method = str(directory.get("auth_method") or AUTH_METHOD_DELEGATED).lower()
        if auth_method not in AUTH_METHODS:
            raise ConfigurationError(
                f'Unknown directory auth method "{auth_method}". Valid values: {", ".join(AUTH_METHODS)}.',
            )
        credentials_file = directory.get("credentials_file") or None
        delegated_admin = directory.get("delegated_admin") or None
        if not fake_response and auth_method == AUTH_METHOD_DELEGATED:
            missing = [
                name
                for name, value in (("credentials_file", credentials_file), ("delegated_admin", delegated_admin))
                if not value
            ]
            if missing:
                raise ConfigurationError(
                    f"Missing directory settings for delegated auth: {', '.join(missing)}.",
                )

        in_cluster = _as_bool(k8s.get("in_cluster", False))
        kubeconfig = k8s.get("kubeconfig") or DEFAULT_KUBECONFIG
        if in_cluster:
            kubeconfig = None

        try:
            statsd_port = int(statsd.get("port") or 8125)
        except (TypeError, ValueError):
            raise ConfigurationError(f'Invalid statsd port "{statsd.get("port")}".') from None

        return cls(
            targets=targets,
            cluster_role_name=cluster_role_name,
            role_binding_name=role_binding_name,
            listen_address=listen_address,
            update_interval=parse_duration(common.get("update_interval") or DEFAULT_UPDATE_INTERVAL),
            workers=workers,
            in_cluster=in_cluster,
            kubeconfig=kubeconfig,
            kube_context=k8s.get("context") or None,
            create_missing_bindings=_as_bool(k8s.get("create_missing_bindings", False)),
            request_timeout=request_timeout,
            auth_method=auth_method,
            credentials_file=credentials_file,
            delegated_admin=delegated_admin,
            fake_response=fake_response,
            statsd_enabled=_as_bool(statsd.get("enabled", False)),
            statsd_host=str(statsd.get("host") or "127.0.0.1"),
            statsd_port=statsd_port,
            statsd_prefix=str(statsd.get("prefix") or ""),
        )
