"""MAKER — step-by-step task execution with consensus voting."""

__version__ = "0.1.0"

from .canonical import canonical_key, decode_key
from .consensus import ConsensusEngine
from .errors import (
    DecompositionError,
    MakerError,
    StepFailedError,
    UnresolvedConsensusError,
)
from .orchestrator import StepOrchestrator
from .ratelimit import AdmissionController

__all__ = [
    "AdmissionController",
    "ConsensusEngine",
    "DecompositionError",
    "MakerError",
    "StepFailedError",
    "StepOrchestrator",
    "UnresolvedConsensusError",
    "canonical_key",
    "decode_key",
]
