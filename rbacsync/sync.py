import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from rbacsync.config import Config
from rbacsync.directory import get_directory_client
from rbacsync.directory.members import MembershipResolver
from rbacsync.exceptions import RbacSyncError
from rbacsync.kubernetes import get_binding_reconciler
from rbacsync.kubernetes.rolebindings import BindingReconciler
from rbacsync.models import SyncTarget
from rbacsync.models import TargetResult
from rbacsync.stats import PHASE_RESOLVE
from rbacsync.stats import PHASE_UPDATE
from rbacsync.stats import SyncMetrics

logger = logging.getLogger(__name__)


class ReconciliationLoop:
    """
    Keeps every configured RoleBinding in line with its directory group.

    A pass walks all sync targets: the group is resolved to its users, then the binding in the
    target namespace is replaced with them. Targets are independent; a failure is logged,
    counted under the phase it happened in and the pass moves on. Nothing is carried from
    one pass to the next, every pass re-applies every binding.

    :param config: Runtime configuration, only `targets`, `update_interval` and `workers` are read.
    :param resolver: Expands groups into users.
    :param reconciler: Writes RoleBindings.
    :param metrics: Success/error counters.
    """

    def __init__(
        self,
        config: Config,
        resolver: MembershipResolver,
        reconciler: BindingReconciler,
        metrics: SyncMetrics,
    ):
        self.config = config
        self.resolver = resolver
        self.reconciler = reconciler
        self.metrics = metrics
        self._pass_lock = threading.Lock()

    def sync_target(self, target: SyncTarget) -> TargetResult:
        """
        Resolve then apply one target. Never raises; the outcome is in the returned result.
        """
        phase = PHASE_RESOLVE
        try:
            members = self.resolver.resolve(target.group_email)
            phase = PHASE_UPDATE
            desired = self.reconciler.reconcile(target, members)
        except RbacSyncError as e:
            self._record_failure(target, phase, e)
            return TargetResult(target=target, success=False, phase=phase, error=e)
        except Exception as e:
            logger.exception(
                "Unexpected error during %s of %s",
                phase,
                target,
                extra={"namespace": target.namespace, "group": target.group_email, "phase": phase},
            )
            self.metrics.record_error(phase)
            return TargetResult(target=target, success=False, phase=phase, error=e)

        self.metrics.record_success(PHASE_UPDATE)
        return TargetResult(target=target, success=True, subject_count=len(desired.subjects))

    def _record_failure(self, target: SyncTarget, phase: str, error: RbacSyncError) -> None:
        logger.error(
            "Failed to %s %s: %s",
            phase,
            target,
            error,
            extra={"namespace": target.namespace, "group": target.group_email, "phase": phase},
        )
        self.metrics.record_error(phase)

    def run_pass(self) -> Optional[list[TargetResult]]:
        """
        Run one reconciliation pass over every target.

        :return: One result per target in configuration order, or None if another pass was
            still running and this one was skipped.
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Previous reconciliation pass is still running, skipping this one.")
            return None
        try:
            started = time.monotonic()
            logger.info("Starting reconciliation pass over %d targets", len(self.config.targets))
            if self.config.workers > 1:
                with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="rbacsync") as pool:
                    futures = [pool.submit(self.sync_target, target) for target in self.config.targets]
                    results = [future.result() for future in futures]
            else:
                results = [self.sync_target(target) for target in self.config.targets]
            failures = sum(1 for result in results if not result.success)
            logger.info(
                "Finished reconciliation pass in %.1fs: %d succeeded, %d failed",
                time.monotonic() - started,
                len(results) - failures,
                failures,
            )
            return results
        finally:
            self._pass_lock.release()

    def run(self, stop_event: threading.Event) -> None:
        """
        Run passes every `update_interval` seconds until `stop_event` is set.

        The interval is measured from the start of a pass. A pass that takes longer than the
        interval is followed straight away by the next one; missed ticks are not made up.
        Setting `stop_event` lets the running pass finish and prevents the next one.
        """
        interval = self.config.update_interval
        while not stop_event.is_set():
            started = time.monotonic()
            self.run_pass()
            elapsed = time.monotonic() - started
            if elapsed >= interval:
                logger.warning(
                    "Reconciliation pass took %.1fs, longer than the %.0fs update interval.",
                    elapsed,
                    interval,
                )
            stop_event.wait(max(0.0, interval - elapsed))
        logger.info("Reconciliation loop stopped.")


def build_loop(config: Config, metrics: SyncMetrics) -> ReconciliationLoop:
    """
    Wire the directory and cluster clients described by `config` into a loop.

    :raises ConfigurationError: if either client cannot be built.
    """
    resolver = MembershipResolver(get_directory_client(config))
    reconciler = get_binding_reconciler(config)
    return ReconciliationLoop(config, resolver, reconciler, metrics)
