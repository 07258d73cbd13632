from typing import List

from chatrelay.core.errors import DependencyFailure
from chatrelay.core.logging import logger
from chatrelay.services.llm_service import GenerationError, GenerationProvider

BLOG_PROMPT = """You are a professional blog writer. Generate a complete, well-structured blog post about the following topic: "{topic}"

STRICT REQUIREMENTS:
- Output ONLY valid HTML
- Do NOT use Markdown
- Do NOT include any meta commentary or explanations
- Use <h1> for the main title
- Use <h2> for section headings
- Use <p> for paragraphs
- Use <ul> and <li> for bullet lists where appropriate
- Write approximately 1000 words
- Include an introduction, multiple detailed sections, and a clear conclusion
- Use a professional, neutral tone
- Do NOT use emojis
- Do NOT start with phrases like "this blog will discuss" or "in this article"

Begin with the HTML output directly."""


async def generate_blog(generator: GenerationProvider, topic: str) -> str:
    """
    One-shot generation: collect the whole stream and return it as a single HTML document.
    Nothing is stored.

    Raises:
        DependencyFailure: the provider failed or produced nothing
    """
    parts: List[str] = []
    try:
        async for chunk in generator.stream(BLOG_PROMPT.format(topic=topic)):
            parts.append(chunk)
    except GenerationError as e:
        raise DependencyFailure(f"blog generation failed: {e}") from e

    html = "".join(parts)
    if not html.strip():
        raise DependencyFailure("blog generation produced no output")
    logger.info("blog_generated", topic_length=len(topic), length=len(html))
    return html
