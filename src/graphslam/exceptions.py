"""Exception types raised by the graph-SLAM engine.

Only :class:`ConfigurationError` and :class:`StreamFormatError` are fatal. The
remaining failures are recovered inside the deciders or at the engine boundary and
degrade to "no structural change this round".
"""

from typing import Optional


class GraphSlamError(Exception):
    """Base class for all graph-SLAM errors."""


class ConfigurationError(GraphSlamError, ValueError):
    """Invalid or missing decider, optimizer or engine parameters."""


class StreamFormatError(GraphSlamError, ValueError):
    """A stream record is malformed, truncated or out of order."""

    def __init__(self, message: str, record_index: Optional[int] = None) -> None:
        if record_index is not None:
            message = f"record {record_index}: {message}"
        super().__init__(message)
        self.record_index = record_index


class AlignmentFailure(GraphSlamError):
    """Observation alignment did not converge or had insufficient overlap."""


class InconsistentLoopCandidates(GraphSlamError):
    """No mutually consistent subset of loop-closure candidates was found."""

    def __init__(self, message: str, num_candidates: int = 0) -> None:
        super().__init__(message)
        self.num_candidates = num_candidates


class OptimizationNonConvergence(GraphSlamError):
    """The optimizer hit its iteration cap before converging."""

    def __init__(self, message: str, iterations: int = 0, final_error: float = float("nan")):
        super().__init__(message)
        self.iterations = iterations
        self.final_error = final_error
