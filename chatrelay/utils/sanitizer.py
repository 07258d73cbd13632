import html
import re

SCRIPT_TAG = re.compile(r"<script.*?>.*?</script>", re.IGNORECASE | re.DOTALL)


# Input Sanitization
def contains_script_tag(value: str) -> bool:
    """True if `value` carries an inline <script> block."""
    return SCRIPT_TAG.search(value) is not None


def sanitize_string(value: str) -> str:
    """
    Make a string safe to embed in tokens and logs: HTML escaped, no script blocks, no null bytes.
    """
    if not isinstance(value, str):
        value = str(value)

    value = html.escape(value)
    # script blocks that survived escaping are dropped entirely
    value = re.sub(r"&lt;script.*?&gt;.*?&lt;/script&gt;", "", value, flags=re.DOTALL | re.IGNORECASE)
    return value.replace("\0", "")
