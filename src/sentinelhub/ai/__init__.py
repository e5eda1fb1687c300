"""AI layer — text generation, insight extraction and conversations."""

from sentinelhub.ai.conversation import ConversationService, ConversationSession
from sentinelhub.ai.generator import TextGenerationError, TextGenerator
from sentinelhub.ai.insights import (
    DEFAULT_RISK_LEVEL,
    build_enrichment_prompt,
    extract_insights,
    extract_remediation_plan,
    extract_risk_level,
)

__all__ = [
    "ConversationService",
    "ConversationSession",
    "TextGenerationError",
    "TextGenerator",
    "DEFAULT_RISK_LEVEL",
    "build_enrichment_prompt",
    "extract_insights",
    "extract_remediation_plan",
    "extract_risk_level",
]
