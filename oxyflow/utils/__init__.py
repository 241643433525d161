"""Helpers shared across oxyflow modules."""

from .identifiers import fingerprint, generate_id, next_order, to_json
from .output_extraction import extract_json_object, extract_text, extract_think, strip_think
from .tokens import estimate_tokens

__all__ = [
    "fingerprint",
    "generate_id",
    "next_order",
    "to_json",
    "extract_json_object",
    "extract_text",
    "extract_think",
    "strip_think",
    "estimate_tokens",
]
