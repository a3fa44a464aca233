import enum
import logging
import signal

import trio

logger = logging.getLogger("overlay.lifecycle")

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ExitStatus(enum.IntEnum):
    OK = 0
    ERROR = 1
    USAGE = 2


def describe_error(exc: BaseException) -> str:
    """Flatten nursery exception groups into a single log line."""
    if isinstance(exc, BaseExceptionGroup):
        return "; ".join(describe_error(e) for e in exc.exceptions)
    return str(exc) or type(exc).__name__


async def watch_termination(on_terminate, task_status=trio.TASK_STATUS_IGNORED):
    """Wait for SIGINT/SIGTERM and call `on_terminate` once."""
    with trio.open_signal_receiver(*TERMINATION_SIGNALS) as signals:
        task_status.started()
        async for signum in signals:
            logger.info(f"Received {signal.Signals(signum).name}, stopping")
            on_terminate()
            return
