from .logger import setup_logging
from .requirement_key import generate_requirement_key
from .text import normalize_text, token_overlap

__all__ = ["setup_logging", "generate_requirement_key", "normalize_text", "token_overlap"]
