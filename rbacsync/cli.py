import argparse
import logging
import signal
import sys
import threading
from typing import Callable
from typing import Optional

from statsd import StatsClient

import rbacsync.sync
import rbacsync.version
from rbacsync.config import AUTH_METHODS
from rbacsync.config import Config
from rbacsync.exceptions import ConfigurationError
from rbacsync.server import MetricsServer
from rbacsync.settings import describe_settings
from rbacsync.settings import populate_settings_from_config
from rbacsync.settings import settings
from rbacsync.stats import SyncMetrics
from rbacsync.stats import set_stats_client
from rbacsync.util import STATUS_FAILURE
from rbacsync.util import STATUS_KEYBOARD_INTERRUPT
from rbacsync.util import STATUS_SUCCESS

logger = logging.getLogger(__name__)


class CLI:
    """
    :param build_loop: Factory turning a Config and SyncMetrics into a ReconciliationLoop.
        Defaults to `rbacsync.sync.build_loop`.
    :param prog: The name of the command line program, displayed in usage and help output.
    :param settings_object: dynaconf settings the CLI flags are overlaid onto.
    """

    def __init__(
        self,
        build_loop: Optional[Callable[..., rbacsync.sync.ReconciliationLoop]] = None,
        prog: Optional[str] = None,
        settings_object=None,
    ):
        self.build_loop = build_loop if build_loop else rbacsync.sync.build_loop
        self.prog = prog
        self.settings = settings_object if settings_object is not None else settings
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog=self.prog,
            description=(
                "rbacsync keeps Kubernetes RoleBindings in sync with Google Workspace groups. For every configured "
                "namespace:group pair it resolves the group's members, following nested groups, and replaces the "
                "subjects of the managed RoleBinding in that namespace with them. Every option can also be set in "
                "settings.toml or through RBACSYNC_<SECTION>__<KEY> environment variables; command line flags win."
            ),
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable verbose logging for rbacsync.",
        )
        parser.add_argument(
            "-q",
            "--quiet",
            action="store_true",
            help="Restrict rbacsync logging to warnings and errors only.",
        )
        parser.add_argument(
            "--version",
            action="store_true",
            help="Print the rbacsync version and exit.",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help=(
                "Run a single reconciliation pass and exit, without starting the metrics server. The exit code "
                "is non-zero if any target failed."
            ),
        )
        parser.add_argument(
            "--listen-address",
            type=str,
            default=None,
            help="The address to listen on for /healthz and /metrics. Default ':8080'. (RBACSYNC_COMMON__LISTEN_ADDRESS)",
        )
        parser.add_argument(
            "--update-interval",
            type=str,
            default=None,
            help=(
                'Time between reconciliation passes, in seconds or as a duration such as "30s", "15m" or "1h". '
                "Default '15m'. (RBACSYNC_COMMON__UPDATE_INTERVAL)"
            ),
        )
        parser.add_argument(
            "--workers",
            type=int,
            default=None,
            help="Number of targets reconciled concurrently within a pass. Default 1. (RBACSYNC_COMMON__WORKERS)",
        )
        parser.add_argument(
            "--cluster-role-name",
            type=str,
            default=None,
            help="The ClusterRole every managed RoleBinding refers to. Default 'developer'. (RBACSYNC_K8S__CLUSTER_ROLE_NAME)",
        )
        parser.add_argument(
            "--role-binding-name",
            "--role-name",
            dest="role_binding_name",
            type=str,
            default=None,
            help="The RoleBinding name managed in each namespace. Default 'developer'. (RBACSYNC_K8S__ROLE_BINDING_NAME)",
        )
        parser.add_argument(
            "--group-list",
            type=str,
            action="append",
            default=None,
            help=(
                'Namespace to group mapping as "namespace:group@example.com". Comma separate several pairs or repeat '
                "the flag. (RBACSYNC_DIRECTORY__GROUP_LIST)"
            ),
        )
        parser.add_argument(
            "--in-cluster",
            action="store_true",
            help="Use the pod service account instead of a kubeconfig file. (RBACSYNC_K8S__IN_CLUSTER)",
        )
        parser.add_argument(
            "--kubeconfig",
            type=str,
            default=None,
            help="Path to the kubeconfig file. Default '~/.kube/config'. Ignored with --in-cluster. (RBACSYNC_K8S__KUBECONFIG)",
        )
        parser.add_argument(
            "--kube-context",
            type=str,
            default=None,
            help="kubeconfig context to use. Defaults to the current context. (RBACSYNC_K8S__CONTEXT)",
        )
        parser.add_argument(
            "--create-missing-bindings",
            action="store_true",
            help=(
                "Create the RoleBinding when it does not exist. Without this flag a missing binding is reported as "
                "an error and must be provisioned beforehand. (RBACSYNC_K8S__CREATE_MISSING_BINDINGS)"
            ),
        )
        parser.add_argument(
            "--request-timeout",
            type=str,
            default=None,
            help="Timeout for Kubernetes API calls. Default 30 seconds. (RBACSYNC_K8S__REQUEST_TIMEOUT)",
        )
        parser.add_argument(
            "--directory-auth-method",
            type=str,
            choices=AUTH_METHODS,
            default=None,
            help=(
                "'delegated' uses a service account key with domain-wide delegation, 'default' uses application "
                "default credentials. Default 'delegated'. (RBACSYNC_DIRECTORY__AUTH_METHOD)"
            ),
        )
        parser.add_argument(
            "--credentials-file",
            type=str,
            default=None,
            help="Service account key file used for delegated auth. (RBACSYNC_DIRECTORY__CREDENTIALS_FILE)",
        )
        parser.add_argument(
            "--delegated-admin",
            type=str,
            default=None,
            help="Workspace admin the service account impersonates. (RBACSYNC_DIRECTORY__DELEGATED_ADMIN)",
        )
        parser.add_argument(
            "--fake-group-response",
            action="store_true",
            help=(
                "Do not call the Directory API; every group resolves to a single fake user. For integration tests "
                "without Google credentials. (RBACSYNC_DIRECTORY__FAKE_RESPONSE)"
            ),
        )
        parser.add_argument(
            "--statsd-enabled",
            action="store_true",
            help="Also send reconciliation counters and timings to StatsD. (RBACSYNC_STATSD__ENABLED)",
        )
        parser.add_argument(
            "--statsd-prefix",
            type=str,
            default=None,
            help="The string to prefix statsd metrics with. (RBACSYNC_STATSD__PREFIX)",
        )
        parser.add_argument(
            "--statsd-host",
            type=str,
            default=None,
            help="The IP address of your statsd server. Default '127.0.0.1'. (RBACSYNC_STATSD__HOST)",
        )
        parser.add_argument(
            "--statsd-port",
            type=int,
            default=None,
            help="The port of your statsd server. Default 8125. (RBACSYNC_STATSD__PORT)",
        )
        return parser

    def main(self, argv: list[str]) -> int:
        """
        Entrypoint for the command line interface.

        :param argv: The parameters supplied to the command line program.
        :return: The process exit code.
        """
        args: argparse.Namespace = self.parser.parse_args(argv)
        if args.version:
            print(rbacsync.version.get_version_string())
            return STATUS_SUCCESS

        # Logging config
        if args.verbose:
            logging.getLogger("rbacsync").setLevel(logging.DEBUG)
        elif args.quiet:
            logging.getLogger("rbacsync").setLevel(logging.WARNING)
        else:
            logging.getLogger("rbacsync").setLevel(logging.INFO)

        populate_settings_from_config(args, self.settings)
        logger.debug("Launching rbacsync with settings: %r", describe_settings(self.settings))

        try:
            config = Config.from_settings(self.settings)
        except ConfigurationError as e:
            logger.error("Invalid configuration: %s", e)
            self.parser.print_usage(sys.stderr)
            return STATUS_FAILURE

        stats_client = None
        if config.statsd_enabled:
            logger.debug(
                'statsd enabled. Sending metrics to server %s:%d. Metrics have prefix "%s".',
                config.statsd_host,
                config.statsd_port,
                config.statsd_prefix,
            )
            stats_client = StatsClient(host=config.statsd_host, port=config.statsd_port, prefix=config.statsd_prefix)
            set_stats_client(stats_client)

        metrics = SyncMetrics(stats_client=stats_client)
        try:
            loop = self.build_loop(config, metrics)
        except ConfigurationError as e:
            logger.error("Unable to initialize clients: %s", e)
            return STATUS_FAILURE

        try:
            if args.once:
                results = loop.run_pass() or []
                return STATUS_SUCCESS if all(result.success for result in results) else STATUS_FAILURE
            return self._serve(config, loop, metrics)
        except KeyboardInterrupt:
            return STATUS_KEYBOARD_INTERRUPT

    def _serve(self, config: Config, loop: rbacsync.sync.ReconciliationLoop, metrics: SyncMetrics) -> int:
        host, port = config.listen_host_port
        try:
            server = MetricsServer(host, port, metrics)
        except OSError as e:
            logger.error("Unable to listen on %s: %s", config.listen_address, e)
            return STATUS_FAILURE
        server.start()

        stop_event = threading.Event()

        def handle_signal(signum, _frame):
            logger.info("Received %s. Finishing the current pass before exiting.", signal.Signals(signum).name)
            stop_event.set()

        previous_handlers = {
            signum: signal.signal(signum, handle_signal) for signum in (signal.SIGTERM, signal.SIGINT)
        }
        try:
            loop.run(stop_event)
        finally:
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)
            server.stop()
        return STATUS_SUCCESS


def main(argv=None):
    """
    Entrypoint for the rbacsync command line interface.

    :rtype: int
    :return: The return code.
    """
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("google.auth").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    argv = argv if argv is not None else sys.argv[1:]
    sys.exit(CLI(prog="rbacsync").main(argv))


if __name__ == "__main__":
    main()
