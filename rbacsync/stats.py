import logging
from typing import Optional

from prometheus_client import CollectorRegistry
from prometheus_client import Counter
from prometheus_client import generate_latest
from statsd import StatsClient

logger = logging.getLogger(__name__)

PHASE_RESOLVE = "resolve"
PHASE_UPDATE = "update"
PHASES = (PHASE_RESOLVE, PHASE_UPDATE)


class ScopedStatsClient:
    """
    Proxy around a StatsD client that prefixes every stat with a dotted scope.

    Without an explicit `client` the process-wide one from `set_stats_client` is used, and all
    calls are no-ops until that has been called.
    """

    _default_client: Optional[StatsClient] = None

    def __init__(self, prefix: Optional[str] = None, client: Optional[StatsClient] = None):
        self._scope_prefix = prefix
        self._own_client = client

    @property
    def _client(self) -> Optional[StatsClient]:
        if self._own_client is not None:
            return self._own_client
        return ScopedStatsClient._default_client

    def get_stats_client(self, scope: str) -> "ScopedStatsClient":
        if not self._scope_prefix:
            return ScopedStatsClient(scope, self._own_client)
        return ScopedStatsClient(f"{self._scope_prefix}.{scope}", self._own_client)

    def is_enabled(self) -> bool:
        return self._client is not None

    def _scoped(self, stat: str) -> str:
        if self._scope_prefix:
            return f"{self._scope_prefix}.{stat}"
        return stat

    def incr(self, stat: str, count: int = 1, rate: float = 1.0) -> None:
        if self._client is not None:
            self._client.incr(self._scoped(stat), count, rate)

    def timer(self, stat: str, rate: float = 1.0):
        if self._client is not None:
            return self._client.timer(self._scoped(stat), rate)
        return None


_scoped_stats_client = ScopedStatsClient()


def get_stats_client(prefix: str) -> ScopedStatsClient:
    return _scoped_stats_client.get_stats_client(prefix)


def set_stats_client(stats_client: Optional[StatsClient]) -> None:
    ScopedStatsClient._default_client = stats_client


class SyncMetrics:
    """
    Counters for reconciliation outcomes.

    Each instance owns its own Prometheus registry so that the HTTP server exposes only these
    counters. prometheus_client counters are safe to increment from several worker threads.
    When a StatsD client is configured the same increments are mirrored there.

    :param registry: Prometheus registry to register the counters in. A fresh one by default.
    :param stats_client: StatsD client to mirror increments to. Falls back to the client set
        with `set_stats_client`.
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        stats_client: Optional[StatsClient] = None,
    ):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.role_updates = Counter(
            "role_updates",
            "Cumulative number of role update operations",
            ["phase"],
            registry=self.registry,
        )
        self.role_update_errors = Counter(
            "role_update_errors",
            "Cumulative number of errors during role update operations",
            ["phase"],
            registry=self.registry,
        )
        # Touch every label so both series are exported at zero before the first pass.
        for phase in PHASES:
            self.role_updates.labels(phase=phase)
            self.role_update_errors.labels(phase=phase)
        self._stats = ScopedStatsClient("rbacsync", stats_client)

    def record_success(self, phase: str = PHASE_UPDATE) -> None:
        self.role_updates.labels(phase=phase).inc()
        self._stats.incr(f"role_updates.{phase}")

    def record_error(self, phase: str) -> None:
        self.role_update_errors.labels(phase=phase).inc()
        self._stats.incr(f"role_update_errors.{phase}")

    def success_count(self, phase: str = PHASE_UPDATE) -> float:
        value = self.registry.get_sample_value("role_updates_total", {"phase": phase})
        return value or 0.0

    def error_count(self, phase: str) -> float:
        value = self.registry.get_sample_value("role_update_errors_total", {"phase": phase})
        return value or 0.0

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
