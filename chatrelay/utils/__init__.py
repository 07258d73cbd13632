from chatrelay.utils.auth import create_access_token, verify_token
from chatrelay.utils.llm import chunk_text
from chatrelay.utils.sanitizer import contains_script_tag, sanitize_string

__all__ = [
    "create_access_token",
    "verify_token",
    "chunk_text",
    "contains_script_tag",
    "sanitize_string",
]
