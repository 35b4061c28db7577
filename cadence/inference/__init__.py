"""Incremental generation, streaming and model loading."""

from cadence.inference.evaluator import Evaluator
from cadence.inference.generate import (
    GenerationError,
    GenerationSession,
    SessionState,
    session_rng,
    start_session,
)
from cadence.inference.loader import LoadState, ModelContainer, ModelHandle, load_model_container
from cadence.inference.sampling import sample_token
from cadence.inference.streaming import (
    END_OF_STREAM,
    CancellationToken,
    Chunk,
    EmissionThrottle,
    GenerationInfo,
    StopReason,
)

__all__ = [
    "END_OF_STREAM",
    "CancellationToken",
    "Chunk",
    "EmissionThrottle",
    "Evaluator",
    "GenerationError",
    "GenerationInfo",
    "GenerationSession",
    "LoadState",
    "ModelContainer",
    "ModelHandle",
    "SessionState",
    "StopReason",
    "load_model_container",
    "sample_token",
    "session_rng",
    "start_session",
]
