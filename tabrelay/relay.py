"""Command relay — correlates browser commands with executor replies.

Callers submit ``(action, params)``; the relay validates the command,
assigns a correlation id, forwards it over the peer link and parks the
caller on a future until the matching reply arrives, the deadline
passes, or the link drops. Replies are matched by id only, so
interleaved and out-of-order replies are fine.

Usage:
    relay = CommandRelay(link)
    result = await relay.submit("get_text", {"selector": "#content"})
    if result.ok:
        print(result.data)
"""

import asyncio
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass

import typing as tp

from .commands import ActionSpec, get_spec, prepare
from .envelope import CommandEnvelope, ReplyEnvelope, new_id
from .errors import (
    CommandTimeout,
    ExecutorError,
    InvalidParams,
    PeerDisconnected,
    PeerUnavailable,
    RelayError,
)
from .peer.config import RelayConfig

logger = logging.getLogger(__name__)

# How many timed-out ids to remember for late-reply diagnostics
EXPIRED_HISTORY = 256


@dataclass(frozen=True)
class Result:
    """Terminal outcome of one submitted command."""

    data: tp.Any = None
    error: tp.Optional[RelayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> tp.Any:
        if self.error is not None:
            raise self.error
        return self.data

    def to_dict(self) -> dict:
        if self.error is None:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error.message, "code": self.error.code}


class PendingRequest:
    """An in-flight command awaiting its single resolution."""

    __slots__ = ("id", "action", "created_at", "deadline", "future", "timer", "sent")

    def __init__(self, request_id: str, action: str, created_at: float, deadline: float,
                 future: asyncio.Future):
        self.id = request_id
        self.action = action
        self.created_at = created_at
        self.deadline = deadline
        self.future = future
        self.timer: tp.Optional[asyncio.TimerHandle] = None
        self.sent = False

    @property
    def done(self) -> bool:
        return self.future.done()

    def complete(self, result: Result) -> bool:
        """Resolve once; later attempts are ignored and return False."""
        if self.future.done():
            return False
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.future.set_result(result)
        return True


class CommandRelay:
    """Forwards commands to the executor and matches up replies.

    ``link`` is anything shaped like PeerLink: a ``connected`` property,
    ``deliver(envelope, needs_dom)`` and ``on``/``off`` event hooks.
    """

    def __init__(self, link, config: tp.Optional[RelayConfig] = None):
        self.link = link
        self.config = config or getattr(link, "config", None) or RelayConfig()
        self.pending: tp.Dict[str, PendingRequest] = {}
        self._expired: "OrderedDict[str, str]" = OrderedDict()
        link.on("reply", self._on_reply)
        link.on("disconnected", self._on_link_lost)

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    def timeout_for(self, spec: ActionSpec) -> float:
        if spec.navigation:
            return self.config.navigate_timeout
        return self.config.command_timeout

    def _new_id(self) -> str:
        request_id = new_id()
        while request_id in self.pending:
            request_id = new_id()
        return request_id

    async def submit(
        self,
        action: str,
        params: tp.Optional[dict] = None,
        timeout: tp.Optional[float] = None,
    ) -> Result:
        """Run one command on the executor and return its Result.

        Never raises for relay failures; they come back as ``Result.error``.
        """
        try:
            spec = get_spec(action)
            prepared = prepare(action, params)
        except RelayError as e:
            return Result(error=e)
        if timeout is not None and not (math.isfinite(timeout) and timeout > 0):
            return Result(error=InvalidParams("timeout must be a positive number of seconds"))
        timeout = timeout or self.timeout_for(spec)

        if not self.link.connected:
            return Result(error=PeerUnavailable())

        loop = asyncio.get_running_loop()
        now = loop.time()
        request_id = self._new_id()
        pending = PendingRequest(request_id, action, now, now + timeout, loop.create_future())
        self.pending[request_id] = pending
        # the deadline also covers the install step and a write stuck behind the send lock
        pending.timer = loop.call_later(timeout, self._expire, request_id, timeout)

        try:
            await asyncio.wait_for(
                self.link.deliver(
                    CommandEnvelope(request_id, action, prepared), needs_dom=spec.needs_dom,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._expire(request_id, timeout)
            return pending.future.result()
        except PeerUnavailable as e:
            self._resolve(request_id, Result(error=e))
            return pending.future.result()
        except BaseException:
            self._discard(request_id)
            raise

        pending.sent = True
        logger.debug(f"Forwarded {action} (id={request_id}, timeout={timeout:g}s)")

        try:
            return await pending.future
        except asyncio.CancelledError:
            self._discard(request_id)
            raise

    async def call(self, action: str, params: tp.Optional[dict] = None,
                   timeout: tp.Optional[float] = None) -> tp.Any:
        """Like submit, but returns the data or raises the RelayError."""
        result = await self.submit(action, params, timeout)
        return result.unwrap()

    def _resolve(self, request_id: str, result: Result) -> bool:
        pending = self.pending.pop(request_id, None)
        if pending is None:
            return False
        return pending.complete(result)

    def _discard(self, request_id: str) -> None:
        pending = self.pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()

    def _expire(self, request_id: str, timeout: float) -> None:
        pending = self.pending.get(request_id)
        if pending is None:
            return
        self._remember_expired(request_id, pending.action)
        logger.warning(f"Command timed out after {timeout:g}s: {pending.action} (id={request_id})")
        self._resolve(
            request_id,
            Result(error=CommandTimeout(f"Command timed out after {timeout:g}s: {pending.action}")),
        )

    def _remember_expired(self, request_id: str, action: str) -> None:
        self._expired[request_id] = action
        while len(self._expired) > EXPIRED_HISTORY:
            self._expired.popitem(last=False)

    def _on_reply(self, reply: ReplyEnvelope) -> None:
        if reply.id not in self.pending:
            if reply.id in self._expired:
                logger.debug(f"Dropping late reply for timed-out {self._expired[reply.id]} (id={reply.id})")
            else:
                logger.debug(f"Dropping reply with unknown id={reply.id}")
            return

        if reply.success:
            result = Result(data=reply.data)
        else:
            result = Result(error=ExecutorError(reply.error or "Executor command failed"))
        self._resolve(reply.id, result)

    def _on_link_lost(self, reason: tp.Any = None) -> None:
        self._fail_all(reason or "connection closed")

    def _fail_all(self, reason: str, shutting_down: bool = False) -> int:
        """Resolve every pending request; returns how many were failed."""
        pending, self.pending = list(self.pending.values()), {}
        for request in pending:
            if shutting_down:
                error: RelayError = PeerDisconnected("Relay shutting down")
            elif request.sent:
                error = PeerDisconnected(f"Browser executor disconnected: {reason}")
            else:
                # link dropped while this command was still being written
                error = PeerUnavailable(f"Browser executor link failed: {reason}")
            request.complete(Result(error=error))
        if pending:
            logger.warning(f"Failed {len(pending)} pending command(s): {reason}")
        return len(pending)

    def shutdown(self) -> int:
        """Fail all pending commands and detach from the link."""
        self.link.off("reply", self._on_reply)
        self.link.off("disconnected", self._on_link_lost)
        return self._fail_all("relay shutting down", shutting_down=True)
