import logging
from functools import wraps
from typing import Callable
from typing import TypeVar

from rbacsync.stats import get_stats_client

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 0
STATUS_FAILURE = 1
STATUS_KEYBOARD_INTERRUPT = 130

R = TypeVar("R")


def timeit(method: Callable[..., R]) -> Callable[..., R]:
    """
    Time the wrapped call and report it to StatsD under `<module>.<function>`.
    Only has an effect when a StatsD client has been configured.
    """

    @wraps(method)
    def timed(*args, **kwargs) -> R:
        stats_client = get_stats_client(method.__module__)
        if not stats_client.is_enabled():
            return method(*args, **kwargs)
        timer = stats_client.timer(method.__name__)
        timer.start()
        try:
            return method(*args, **kwargs)
        finally:
            timer.stop()

    return timed
