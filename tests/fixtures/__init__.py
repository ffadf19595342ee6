from .vision_fixtures import (
    SUB_SCORES,
    ScriptedProvider,
    clinical_payload,
    clinical_text,
    extraction_text,
    legacy_text,
    make_client,
)

__all__ = [
    "SUB_SCORES",
    "ScriptedProvider",
    "clinical_payload",
    "clinical_text",
    "extraction_text",
    "legacy_text",
    "make_client",
]
