import enum
import logging
from dataclasses import dataclass

import trio

from hello_client.nonces import NoncePool
from hello_overlay.config import ClientConfig
from hello_overlay.face import Face, FaceError
from hello_overlay.lifecycle import ExitStatus, describe_error, watch_termination
from hello_overlay.protocol import Name, Request

logger = logging.getLogger("client")


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class OutcomeTracker:
    """Sent vs. completed requests; `had_error` is decided once, at shutdown."""

    sent: int = 0
    completed: int = 0
    outstanding: int = 0
    had_error: bool | None = None

    def record_sent(self):
        self.sent += 1
        self.outstanding += 1

    def record_completed(self):
        self.completed += 1

    def record_settled(self):
        self.outstanding = max(0, self.outstanding - 1)

    def settle(self) -> bool:
        if self.had_error is None:
            self.had_error = self.sent != self.completed
        return self.had_error


class RequestScheduler:
    """
    Client role: issues one request per interval and tracks the outcomes.

    Requests are named `<prefix>/seq=<n>` with n counting up from zero. With a
    configured maximum the scheduler stops issuing once it is reached, then
    stops by itself when every request has a response, nack or timeout. A
    termination signal stops it at any time. The run fails (exit status 1) if
    fewer responses than requests were seen, or if the face broke.
    """

    def __init__(self, config: ClientConfig, face: Face | None = None, nonces: NoncePool | None = None):
        self.config = config
        self.face = face or Face()
        self.nonces = nonces or NoncePool()
        self.prefix = Name.from_uri(config.prefix)
        self.tracker = OutcomeTracker()
        self.state = SchedulerState.IDLE
        self._next_seq = 0
        self._nursery = None

    async def run(self, watch_signals=True) -> ExitStatus:
        if self.config.max_count == 0:
            logger.info("Maximum requests = 0, finishing...")
            self.state = SchedulerState.STOPPED
            return ExitStatus.OK

        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                await nursery.start(self.face.process_events)
                if watch_signals:
                    await nursery.start(watch_termination, self.terminate)
                self.state = SchedulerState.RUNNING
                nursery.start_soon(self._tick_loop)
        except Exception as e:
            logger.error(f"ERROR: {describe_error(e)}")
            self.state = SchedulerState.STOPPED
            return ExitStatus.ERROR
        finally:
            self._nursery = None

        return self.exit_status()

    def exit_status(self) -> ExitStatus:
        return ExitStatus.ERROR if self.tracker.settle() else ExitStatus.OK

    def terminate(self):
        """Termination signal: stop the timer and tear down the face."""
        self._stop()

    async def _tick_loop(self):
        interval = self.config.interval
        deadline = trio.current_time() + interval
        while True:
            await trio.sleep_until(deadline)
            if not self._send_next():
                self.state = SchedulerState.DRAINING
                logger.info(f"All {self.tracker.sent} requests sent, waiting for outcomes")
                self._finish_if_drained()
                return
            # Fixed cadence: next expiry is relative to the previous one
            deadline += interval

    def _send_next(self) -> bool:
        max_count = self.config.max_count
        if max_count is not None and self.tracker.sent >= max_count:
            return False

        name = self.prefix.append_sequence_number(self._next_seq)
        self._next_seq += 1
        request = Request(
            name=name,
            nonce=self.nonces.next(),
            lifetime=self.config.lifetime,
            can_be_prefix=False,
            must_be_fresh=False,
        )

        self.tracker.record_sent()
        try:
            self.face.express_request(
                request, self._on_response, self._on_nack, self._on_timeout
            )
            logger.info(f"Sending Request Name={name}")
        except FaceError as e:
            logger.error(f"ERROR: {e}")
            self.tracker.record_settled()
        return True

    def _on_response(self, request: Request, response):
        logger.info(f"Response Received Name={response.name}")
        self.tracker.record_completed()
        self.tracker.record_settled()

        content = response.content.decode("utf-8", errors="replace")
        logger.info(f"Received content: size={len(response.content)} content={content}")
        self._finish_if_drained()

    def _on_nack(self, request: Request, nack):
        logger.info(f"Request Nack'd Name={request.name}, NackReason={nack.reason}")
        self.tracker.record_settled()
        self._finish_if_drained()

    def _on_timeout(self, request: Request):
        logger.info(f"Request Timed Out - Name={request.name}")
        self.tracker.record_settled()
        self._finish_if_drained()

    def _finish_if_drained(self):
        if self.state is SchedulerState.DRAINING and self.tracker.outstanding == 0:
            self._stop()

    def _stop(self):
        if self.state is SchedulerState.STOPPED or self._nursery is None:
            return
        self.state = SchedulerState.STOPPED

        if self.tracker.settle():
            logger.warning(
                f"Sent {self.tracker.sent} requests but received "
                f"{self.tracker.completed} responses"
            )
        self.face.shutdown()
        self._nursery.cancel_scope.cancel()
