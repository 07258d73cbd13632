from typing import Optional

from fastapi import APIRouter, Depends, Response

from chatrelay.api.deps import get_generator, get_session_cookie
from chatrelay.api.routes.chat import set_session_cookie
from chatrelay.schemas.blog import BlogRequest, BlogResponse
from chatrelay.schemas.chat import ErrorResponse
from chatrelay.services.blog_service import generate_blog
from chatrelay.services.llm_service import GenerationProvider
from chatrelay.services.session_resolver import new_session_id

router = APIRouter(prefix="/api/blog", tags=["blog"])


@router.post(
    "",
    response_model=BlogResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing or empty topic"},
        500: {"model": ErrorResponse, "description": "Model failure"},
    },
)
async def create_blog(
    body: BlogRequest,
    response: Response,
    session_cookie: Optional[str] = Depends(get_session_cookie),
    generator: GenerationProvider = Depends(get_generator),
):
    """
    Generate a whole blog post in one response (no streaming, nothing stored).
    Hands out a session cookie if the caller has none yet.
    """
    html = await generate_blog(generator, body.topic)
    if not session_cookie:
        set_session_cookie(response, new_session_id())
    return BlogResponse(blog_html=html)
