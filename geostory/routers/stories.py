# geostory/routers/stories.py
# FastAPI router for publishing and reading stories (short links)

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from geostory.config import Settings
from geostory.middleware.error_handler import EditorAccessDeniedError
from geostory.middleware.rate_limiter import get_client_key
from geostory.schemas.stories import PublishRequest, PublishResponse, StoryResponse
from geostory.services.story_service import StoryService


router = APIRouter(tags=["Stories"])

LOOPBACK_HOSTS = {"127.0.0.1", "::1", "localhost"}


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_story_service(request: Request) -> StoryService:
    return request.app.state.story_service


def is_loopback(request: Request) -> bool:
    host = request.client.host if request.client else ""
    if host.startswith("::ffff:"):
        host = host[len("::ffff:"):]
    return host in LOOPBACK_HOSTS


def editor_guard(request: Request, settings: Settings = Depends(get_settings_dep)) -> None:
    """Publishing is local-only unless ALLOW_EDITOR_NETWORK is set."""
    if settings.ALLOW_EDITOR_NETWORK or is_loopback(request):
        return
    raise EditorAccessDeniedError()


def build_absolute_url(request: Request, path: str) -> str:
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    if not host:
        return path
    return f"{proto.split(',')[0].strip()}://{host.split(',')[0].strip()}{path}"


@router.post(
    "/stories",
    response_model=PublishResponse,
    dependencies=[Depends(editor_guard)],
)
async def publish_story(
    payload: PublishRequest,
    request: Request,
    service: StoryService = Depends(get_story_service),
) -> PublishResponse:
    """Publish a story and return its share link.

    ``/s/<id>`` is the viewer page path. The viewer is a static page served by
    the front end (not this API); it loads the story from ``GET /api/stories/{id}``.
    """
    result = await service.publish(payload.state, payload.ttlDays, client_key=get_client_key(request))
    url_path = f"/s/{result.id}"
    return PublishResponse(
        id=result.id,
        url=url_path,
        absolute_url=build_absolute_url(request, url_path),
        expires_at=result.expires_at,
    )


@router.get("/stories/{story_id}", response_model=StoryResponse)
async def get_story(
    story_id: str,
    response: Response,
    service: StoryService = Depends(get_story_service),
) -> StoryResponse:
    """Load a published story by id."""
    story = await service.resolve(story_id)
    response.headers["Cache-Control"] = "public, max-age=900"
    return StoryResponse(id=story.id, title=story.title, state=story.document)
