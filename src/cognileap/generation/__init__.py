"""Generation: model tiers, retry policies, validation and fallback."""

from cognileap.generation.orchestrator import (
    GenerationAttemptResult,
    ModelFallbackOrchestrator,
)
from cognileap.generation.tiers import DEFAULT_CHAIN, ArtifactType, ModelTier

__all__ = [
    "ArtifactType",
    "DEFAULT_CHAIN",
    "GenerationAttemptResult",
    "ModelFallbackOrchestrator",
    "ModelTier",
]
