from pydantic import BaseModel, ConfigDict, Field, field_validator


# blog schemas
class BlogRequest(BaseModel):
    """
    Payload sent to POST /api/blog
    """
    topic: str = Field(..., description="What the post should be about", max_length=500)

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Topic cannot be empty")
        return v


class BlogResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    blog_html: str = Field(..., serialization_alias="blogHtml", description="The generated post as HTML")
