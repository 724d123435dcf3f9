"""Generation cascade: requests, keys, acceptance gate and fallback artifacts.

The orchestrator and pipeline depend on the provider registry; import them
directly to avoid a circular import:

    from thotnet.core.generation.orchestrator import CascadeOrchestrator
    from thotnet.core.generation.pipeline import GenerationPipeline
"""

from thotnet.core.generation.errors import (
    PersistenceFailure,
    ProviderExhausted,
    RequestValidationError,
    ThotnetError,
)
from thotnet.core.generation.fallback import FALLBACK_MODEL, FallbackArtifactGenerator
from thotnet.core.generation.gate import ContentGate, GateVerdict, ImageGate, TextGate
from thotnet.core.generation.idempotency import (
    compute_content_hash,
    compute_idempotency_key,
    normalize_text,
)
from thotnet.core.generation.models import (
    FALLBACK_SOURCE,
    MANUAL_SOURCE,
    Artifact,
    ArtifactContent,
    AttemptOutcome,
    ContentKind,
    GeneratedImage,
    GenerationAttempt,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    PipelineState,
    ProviderOutcome,
    TargetIdentity,
)

__all__ = [
    # Models
    "Artifact",
    "ArtifactContent",
    "AttemptOutcome",
    "ContentKind",
    "FALLBACK_SOURCE",
    "GeneratedImage",
    "GenerationAttempt",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "MANUAL_SOURCE",
    "PipelineState",
    "ProviderOutcome",
    "TargetIdentity",
    # Errors
    "PersistenceFailure",
    "ProviderExhausted",
    "RequestValidationError",
    "ThotnetError",
    # Keys
    "compute_content_hash",
    "compute_idempotency_key",
    "normalize_text",
    # Gate and fallback
    "ContentGate",
    "FALLBACK_MODEL",
    "FallbackArtifactGenerator",
    "GateVerdict",
    "ImageGate",
    "TextGate",
]
