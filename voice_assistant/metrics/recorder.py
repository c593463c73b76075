"""
Token, latency and cost telemetry for a conversation session.
"""

import math
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterable, List, Optional, Any
import structlog

logger = structlog.get_logger()


DEFAULT_INPUT_PRICE_PER_MILLION = 0.25
DEFAULT_OUTPUT_PRICE_PER_MILLION = 0.50


def estimate_tokens(text: str) -> int:
    """Approximate token count at four characters per token."""
    return math.ceil(len(text) / 4)


def compute_cost(
    prompt_tokens: int,
    response_tokens: int,
    input_price_per_million: float = DEFAULT_INPUT_PRICE_PER_MILLION,
    output_price_per_million: float = DEFAULT_OUTPUT_PRICE_PER_MILLION,
) -> float:
    """Estimated USD cost for the given cumulative token counts."""
    input_cost = (prompt_tokens / 1_000_000) * input_price_per_million
    output_cost = (response_tokens / 1_000_000) * output_price_per_million
    return input_cost + output_cost


@dataclass
class Metrics:
    """Snapshot of the telemetry shown to the user."""
    time_to_first_chunk: Optional[float] = None
    total_response_time: Optional[float] = None
    last_prompt_tokens: int = 0
    last_response_tokens: int = 0
    session_prompt_tokens: int = 0
    session_response_tokens: int = 0
    estimated_cost: float = 0.0

    @property
    def session_total_tokens(self) -> int:
        return self.session_prompt_tokens + self.session_response_tokens

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["session_total_tokens"] = self.session_total_tokens
        return data


@dataclass
class TurnRecord:
    """Telemetry for one completed turn."""
    prompt_tokens: int
    response_tokens: int
    time_to_first_chunk: Optional[float]
    total_response_time: float


@dataclass
class LatencyStats:
    """Latency statistics in milliseconds."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    samples: int


def replay_cost(
    records: Iterable[TurnRecord],
    base_prompt_tokens: int,
    input_price_per_million: float = DEFAULT_INPUT_PRICE_PER_MILLION,
    output_price_per_million: float = DEFAULT_OUTPUT_PRICE_PER_MILLION,
) -> float:
    """Recompute the session cost from the priming tokens and recorded turns."""
    prompt_tokens = base_prompt_tokens
    response_tokens = 0
    for record in records:
        prompt_tokens += record.prompt_tokens
        response_tokens += record.response_tokens
    return compute_cost(
        prompt_tokens,
        response_tokens,
        input_price_per_million,
        output_price_per_million,
    )


class MetricsRecorder:
    """
    Tracks per-turn latency and cumulative token usage for one session.

    The estimated cost is never updated on its own; it is always derived from
    the cumulative counters after a turn completes or the session resets.
    """

    def __init__(
        self,
        input_price_per_million: float = DEFAULT_INPUT_PRICE_PER_MILLION,
        output_price_per_million: float = DEFAULT_OUTPUT_PRICE_PER_MILLION,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.input_price_per_million = input_price_per_million
        self.output_price_per_million = output_price_per_million
        self._clock = clock

        self.metrics = Metrics()
        self.turns: List[TurnRecord] = []
        self.base_prompt_tokens = 0
        self._turn_start: Optional[float] = None

    def reset_session(self, priming_tokens: int) -> None:
        """Start a new session whose prompt counter begins at the priming size."""
        self.base_prompt_tokens = priming_tokens
        self.turns = []
        self._turn_start = None
        self.metrics = Metrics(session_prompt_tokens=priming_tokens)
        self._recompute_cost()
        logger.debug("Metrics reset", priming_tokens=priming_tokens)

    def begin_turn(self, text: str) -> int:
        """Record the prompt side of a turn and start its latency clock."""
        prompt_tokens = estimate_tokens(text)
        self.metrics.last_prompt_tokens = prompt_tokens
        self.metrics.last_response_tokens = 0
        self.metrics.time_to_first_chunk = None
        self.metrics.total_response_time = None
        self._turn_start = self._clock()
        return prompt_tokens

    def record_first_chunk(self) -> float:
        """Record time to first chunk in milliseconds."""
        elapsed_ms = self._elapsed_ms()
        self.metrics.time_to_first_chunk = elapsed_ms
        logger.info("Time to first chunk", duration_ms=round(elapsed_ms, 2))
        return elapsed_ms

    def complete_turn(self, response_text: str) -> TurnRecord:
        """Record the response side of a turn and refresh the cumulative cost."""
        total_ms = self._elapsed_ms()
        response_tokens = estimate_tokens(response_text)

        self.metrics.total_response_time = total_ms
        self.metrics.last_response_tokens = response_tokens
        self.metrics.session_prompt_tokens += self.metrics.last_prompt_tokens
        self.metrics.session_response_tokens += response_tokens
        self._recompute_cost()

        record = TurnRecord(
            prompt_tokens=self.metrics.last_prompt_tokens,
            response_tokens=response_tokens,
            time_to_first_chunk=self.metrics.time_to_first_chunk,
            total_response_time=total_ms,
        )
        self.turns.append(record)
        self._turn_start = None

        logger.info(
            "Total response stream time",
            duration_ms=round(total_ms, 2),
            response_tokens=response_tokens,
            estimated_cost=self.metrics.estimated_cost,
        )
        return record

    def abandon_turn(self) -> None:
        """Drop the latency clock of a turn that failed."""
        self._turn_start = None

    def _elapsed_ms(self) -> float:
        if self._turn_start is None:
            return 0.0
        return (self._clock() - self._turn_start) * 1000

    def _recompute_cost(self) -> None:
        self.metrics.estimated_cost = compute_cost(
            self.metrics.session_prompt_tokens,
            self.metrics.session_response_tokens,
            self.input_price_per_million,
            self.output_price_per_million,
        )

    def _calculate_latency_stats(self, latencies: List[float]) -> LatencyStats:
        """Calculate statistical metrics for a list of latencies."""
        if not latencies:
            return LatencyStats(0, 0, 0, 0, 0, 0)

        sorted_latencies = sorted(latencies)
        count = len(sorted_latencies)

        def percentile(p: float) -> float:
            index = int(p * count)
            if index >= count:
                index = count - 1
            return sorted_latencies[index]

        return LatencyStats(
            min=sorted_latencies[0],
            max=sorted_latencies[-1],
            avg=sum(latencies) / count,
            p50=percentile(0.5),
            p95=percentile(0.95),
            samples=count,
        )

    def summary(self) -> Dict[str, Any]:
        """Summary of the current session's telemetry."""
        first_chunk = [
            t.time_to_first_chunk for t in self.turns
            if t.time_to_first_chunk is not None
        ]
        total = [t.total_response_time for t in self.turns]
        return {
            "turns": len(self.turns),
            "metrics": self.metrics.to_dict(),
            "time_to_first_chunk_ms": asdict(self._calculate_latency_stats(first_chunk)),
            "total_response_time_ms": asdict(self._calculate_latency_stats(total)),
            "replayed_cost": replay_cost(
                self.turns,
                self.base_prompt_tokens,
                self.input_price_per_million,
                self.output_price_per_million,
            ),
        }
