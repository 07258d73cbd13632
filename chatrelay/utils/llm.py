from typing import Any
from chatrelay.core.logging import logger


# LLM utilities
def chunk_text(chunk: Any) -> str:
    """Extract the visible text from a streamed message chunk.

    Most providers stream `content` as a plain string. Some models (e.g. GPT-5,
    reasoning models) stream a list of blocks like:
    [
        {'id': '...', 'summary': [], 'type': 'reasoning'},
        {'type': 'text', 'text': 'actual response'}
    ]
    Only the text blocks are kept; reasoning never reaches the user.

    Args:
        chunk: A message chunk from `astream`, or anything with a `content` attribute

    Returns:
        str: The text in this chunk, possibly empty
    """
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        text_parts = []
        for block in content:
            if isinstance(block, dict):
                if block.get("type") == "text" and "text" in block:
                    text_parts.append(block["text"])
                # Log reasoning blocks for debugging
                elif block.get("type") == "reasoning":
                    logger.debug("reasoning_block_received", reasoning_id=block.get("id"))
            elif isinstance(block, str):
                text_parts.append(block)
        return "".join(text_parts)

    return ""
