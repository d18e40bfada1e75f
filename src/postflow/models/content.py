from pydantic import BaseModel, ConfigDict, Field


class _RevalidatingModel(BaseModel):
    """Base model that accepts instances reconstructed by serializers."""
    model_config = ConfigDict(revalidate_instances="always")


class Source(_RevalidatingModel):
    title: str = ""
    uri: str


class ResearchResult(_RevalidatingModel):
    summary: str
    sources: list[Source] = []
    raw_text: str = ""
    degraded: bool = False


class ComposedPost(_RevalidatingModel):
    text: str
    hashtags: list[str] = []
    image_prompt: str = ""

    def render(self) -> str:
        """Post body with hashtags not already present appended on a new line."""
        missing = [tag for tag in self.hashtags if tag and tag not in self.text]
        if not missing:
            return self.text
        return f"{self.text}\n\n{' '.join(missing)}"


class XProfile(_RevalidatingModel):
    id: str
    name: str = ""
    username: str = ""


class AuthSession(_RevalidatingModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    profile: XProfile


class PublishReceipt(_RevalidatingModel):
    external_id: str
    url: str


class WriterPlan(_RevalidatingModel):
    tone: str | None = None
    language: str | None = None
    length: str | None = None


class ImagePlan(_RevalidatingModel):
    style: str | None = None
    count: int | None = Field(default=None, ge=1, le=4)
