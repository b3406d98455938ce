"""
Cascading chain simulation.

A request to /chain?seq=3214 walks instances 3 -> 2 -> 1 -> 4, each one
calling the next over HTTP and wrapping whatever comes back. The last
instance returns a completion payload. Every hop carries the same traceId,
so the whole walk shows up as one distributed call graph.

Two ways to decide "where am I in the sequence" are supported, picked per
deployment with CHAIN_DISCIPLINE:

  search   find our own id (first occurrence) and forward the suffix after
           it. If we're not in the sequence at all, we're the end of it.
  removal  the first element is whoever should be handling this. If that's
           not us, relay the whole sequence there and hand back its answer
           untouched. If it is us, strip it and forward the rest.

Failures don't retry. A hop that can't reach its child answers 500 with
the reason, and hops above it pass that same reason up as plain JSON.
"""
import asyncio
import logging
import random
import string
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

import httpx

from testbench import metrics
from testbench.resolver import chain_url

logger = logging.getLogger(__name__)

TRACE_ALPHABET = string.ascii_lowercase + string.digits


def epoch_ms():
    return int(time.time() * 1000)


def new_trace_id(now_ms=None):
    if now_ms is None:
        now_ms = epoch_ms()
    suffix = "".join(random.choices(TRACE_ALPHABET, k=13))
    return f"trace-{now_ms}-{suffix}"


def parse_sequence(raw):
    """'3214' -> [3, 2, 1, 4]. A character that isn't a digit becomes None."""
    return [int(ch) if ch in string.digits else None for ch in raw]


def find_position(sequence, instance_id):
    try:
        return sequence.index(instance_id)
    except ValueError:
        return -1


def remaining_chain(sequence, instance_id):
    """Everything after our first occurrence. Empty if we're absent."""
    position = find_position(sequence, instance_id)
    if position < 0:
        return []
    return sequence[position + 1:]


@dataclass(frozen=True)
class HopPlan:
    """What this hop is going to do, decided before any I/O."""

    position: int
    forward_sequence: str
    relay: bool = False

    @property
    def terminal(self):
        return not self.forward_sequence

    @property
    def target(self):
        """Raw character naming the next instance."""
        return self.forward_sequence[0] if self.forward_sequence else None


def plan_hop(raw, instance_id, discipline):
    sequence = parse_sequence(raw)

    if discipline == "removal":
        first = sequence[0] if sequence else None
        if first != instance_id and len(sequence) > 1:
            return HopPlan(position=-1, forward_sequence=raw, relay=True)
        position = 0 if first == instance_id else -1
        return HopPlan(position=position, forward_sequence=raw[1:])

    position = find_position(sequence, instance_id)
    if position < 0:
        return HopPlan(position=-1, forward_sequence="")
    return HopPlan(position=position, forward_sequence=raw[position + 1:])


class HopFailure(Exception):
    """The next instance couldn't give us a usable answer."""

    def __init__(self, failed_instance, message, error=None, child=None):
        super().__init__(message)
        self.failed_instance = failed_instance
        self.message = message
        self.error = error
        self.child = child


@dataclass
class ChainResponse:
    instance: int
    timestamp: int
    traceId: str
    message: str
    originalSequence: str
    remainingSequence: str
    chainPosition: int
    processingTime: int
    childResponses: list = field(default_factory=list)
    finalResult: Optional[dict] = None
    totalChainTime: Optional[int] = None
    error: Optional[str] = None
    errorMessage: Optional[str] = None
    failedInstance: object = None

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}


class ChainCoordinator:
    """Runs one hop of the chain for a single instance."""

    def __init__(self, settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client
        # Outbound calls outlive a cancelled handler; hold them until done.
        self._in_flight = set()

    @property
    def instance_id(self):
        return self.settings.instance_id

    def _log(self, level, msg, *args):
        logger.log(level, "[Instance %s] " + msg, self.instance_id, *args)

    async def handle(self, seq=None, trace_id=None):
        """Returns (body, status_code) for one /chain request."""
        started = time.monotonic()
        raw = seq or self.settings.default_sequence
        trace_id = trace_id or new_trace_id()
        self._log(logging.INFO, "Received chain request with sequence: %s, traceId: %s",
                  raw, trace_id)

        plan = plan_hop(raw, self.instance_id, self.settings.discipline)
        if plan.relay:
            return await self._relay(raw, trace_id, plan)

        response = ChainResponse(
            instance=self.instance_id,
            timestamp=epoch_ms(),
            traceId=trace_id,
            message=f"Instance {self.instance_id} processing request",
            originalSequence=raw,
            remainingSequence=plan.forward_sequence,
            chainPosition=plan.position,
            processingTime=random.randrange(100),
        )

        if plan.terminal:
            self._log(logging.INFO, "End of chain reached")
            response.message = f"Instance {self.instance_id} is the final node in the chain"
            response.finalResult = {
                "status": "completed",
                "data": f"Processed data from chain {raw}",
                "randomValue": random.random(),
            }
            metrics.CHAIN_HOPS.labels(outcome="terminal").inc()
            return response.to_dict(), 200

        self._log(logging.INFO, "Calling next instance %s with remaining sequence: %s",
                  plan.target, plan.forward_sequence)
        try:
            child = await self._forward(plan.target, plan.forward_sequence, trace_id)
        except HopFailure as exc:
            self._log(logging.ERROR, "Error calling next instance %s: %s",
                      exc.failed_instance, exc.message)
            if exc.child is not None:
                response.childResponses.append(exc.child)
            response.error = exc.error or f"Failed to call instance {exc.failed_instance}"
            response.errorMessage = exc.message
            response.failedInstance = exc.failed_instance
            metrics.CHAIN_HOPS.labels(outcome="failed").inc()
            return response.to_dict(), 500

        response.childResponses.append(child)
        response.totalChainTime = int((time.monotonic() - started) * 1000)
        metrics.CHAIN_HOPS.labels(outcome="forwarded").inc()
        return response.to_dict(), 200

    async def _relay(self, raw, trace_id, plan):
        """Wrong instance got the request first. Pass it along, add nothing."""
        self._log(logging.INFO, "Request should go to instance %s first, forwarding...",
                  plan.target)
        try:
            child = await self._forward(plan.target, raw, trace_id)
        except HopFailure as exc:
            self._log(logging.ERROR, "Error forwarding to first instance %s: %s",
                      plan.target, exc.message)
            metrics.CHAIN_HOPS.labels(outcome="failed").inc()
            if exc.error is not None:
                return exc.child, 500
            return {
                "error": f"Failed to forward to instance {exc.failed_instance}",
                "errorMessage": exc.message,
                "failedInstance": exc.failed_instance,
                "originalSequence": raw,
                "traceId": trace_id,
            }, 500
        metrics.CHAIN_HOPS.labels(outcome="relayed").inc()
        return child, 200

    async def _forward(self, target, sequence, trace_id):
        """One outbound hop. Returns the child's JSON or raises HopFailure."""
        if target not in string.digits:
            raise HopFailure(target, f"{target!r} is not a valid instance identifier")
        instance = int(target)
        url = chain_url(instance, sequence, trace_id, self.settings)

        try:
            response = await self._call(url)
        except asyncio.TimeoutError as exc:
            raise HopFailure(
                instance,
                f"No answer from instance {instance} within {self.settings.hop_timeout}s",
            ) from exc
        except httpx.HTTPError as exc:
            raise HopFailure(instance, str(exc) or type(exc).__name__) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_success:
            if isinstance(payload, dict):
                return payload
            raise HopFailure(instance, f"Instance {instance} returned a non-JSON response")

        status_message = f"Request failed with status code {response.status_code}"
        if not isinstance(payload, dict):
            raise HopFailure(instance, status_message)
        if "failedInstance" in payload and payload.get("error"):
            # Already a chain failure further down; keep its diagnosis.
            raise HopFailure(
                payload["failedInstance"],
                payload.get("errorMessage", status_message),
                error=payload["error"],
                child=payload,
            )
        # Some other error body (404 page, crash handler, not a test bench).
        raise HopFailure(instance, status_message, child=payload)

    async def _call(self, url):
        """GET with one overall deadline. A timeout stops the wait, not the call."""
        task = asyncio.ensure_future(self.client.get(url, timeout=self.settings.hop_timeout))
        self._in_flight.add(task)
        task.add_done_callback(self._forget)
        return await asyncio.wait_for(asyncio.shield(task), self.settings.hop_timeout)

    def _forget(self, task):
        self._in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log(logging.DEBUG, "Outbound call finished with %r", task.exception())
