import enum
import logging

import trio

from hello_overlay.config import ServerConfig
from hello_overlay.face import Face
from hello_overlay.lifecycle import ExitStatus, describe_error, watch_termination
from hello_overlay.protocol import Name, Request, Response
from hello_overlay.security import KeyChain

logger = logging.getLogger("server")


class ResponderState(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    STOPPED = "stopped"


class BoundedResponder:
    """
    Server role: answers requests under a prefix with signed responses.

    Serves at most `config.max_count` requests (unbounded when None) and stops
    by itself, cleanly, once that many have been served. A termination signal
    before the quota is met is a failed run.
    """

    def __init__(self, config: ServerConfig, face: Face | None = None, keychain: KeyChain | None = None):
        self.config = config
        self.face = face or Face()
        self.keychain = keychain or KeyChain()
        self.prefix = Name.from_uri(config.prefix)
        self.content = config.content.encode()
        self.state = ResponderState.IDLE
        self.served = 0
        self.had_error = False
        self._nursery = None
        self._signal_scope = None

    async def run(self, watch_signals=True) -> ExitStatus:
        if self.config.max_count == 0:
            self.state = ResponderState.STOPPED
            return ExitStatus.OK

        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                await nursery.start(self.face.process_events)
                if watch_signals:
                    await nursery.start(self._watch_signals)
                self.face.register_prefix(
                    self.prefix,
                    self._on_request,
                    self._on_register_failed,
                    self._on_register_success,
                )
                self.state = ResponderState.LISTENING
        except Exception as e:
            logger.error(f"ERROR: {describe_error(e)}")
            self.state = ResponderState.STOPPED
            return ExitStatus.ERROR
        finally:
            self._nursery = None

        return self.exit_status()

    def exit_status(self) -> ExitStatus:
        """Failed if a termination or error cut the run short of its quota."""
        max_count = self.config.max_count
        if self.had_error or (max_count is not None and self.served < max_count):
            return ExitStatus.ERROR
        return ExitStatus.OK

    def terminate(self):
        """Termination signal: fail the run if the quota is still unmet."""
        if self.state is ResponderState.STOPPED or self._nursery is None:
            return
        max_count = self.config.max_count
        if max_count is not None and self.served < max_count:
            self.had_error = True
            logger.warning(f"Stopped after serving {self.served} of {max_count} requests")
        self.state = ResponderState.STOPPED
        self.face.shutdown()
        self._nursery.cancel_scope.cancel()

    async def _watch_signals(self, task_status=trio.TASK_STATUS_IGNORED):
        with trio.CancelScope() as scope:
            self._signal_scope = scope
            await watch_termination(self.terminate, task_status=task_status)

    def _on_request(self, request: Request):
        if self.state is not ResponderState.LISTENING:
            return

        max_count = self.config.max_count
        if max_count is None or self.served < max_count:
            response = Response(
                name=request.name,
                content=self.content,
                freshness_period=self.config.freshness_period,
            )
            response = self.keychain.sign(response)
            self.served += 1

            if not self.config.quiet:
                logger.info(f"Request Received Name={request.name}")

            self.face.put(response)

        if max_count is not None and self.served >= max_count:
            self._quota_reached()

    def _quota_reached(self):
        logger.info(f"Served {self.served} requests, quota reached")
        self.state = ResponderState.STOPPED
        # Let the face flush the last response before the loop winds down
        self.face.shutdown()
        if self._signal_scope is not None:
            self._signal_scope.cancel()

    def _on_register_failed(self, prefix: Name, reason: str):
        logger.error(f"Prefix registration failed - Reason={reason}")

    def _on_register_success(self, prefix: Name):
        logger.info(f"Registered prefix {prefix}")
