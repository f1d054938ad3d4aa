import typing

from fastapi import APIRouter
from pydantic import BaseModel, Field

import game.settings
from app.dependencies import Conn, Log
from app.responses import ok
from irtypes.error import unwrap
from irtypes.settings import AiProvider

router = APIRouter()


class AISettingsUpdateIn(BaseModel):
    default_provider: AiProvider | None = None
    default_model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1)
    global_prompt: str | None = None
    api_keys: dict[AiProvider, str | None] | None = None
    auto_fallback: bool | None = None
    fallback_order: list[AiProvider] | None = None
    image_provider: typing.Literal["openai", "none"] | None = None
    image_model: str | None = None


class ApiKeyTestIn(BaseModel):
    provider: str = Field(min_length=1)


@router.get("/api/ai-settings")
async def get_ai_settings(conn: Conn, log: Log):
    return ok(await game.settings.get_settings(conn, log=log))


@router.patch("/api/ai-settings")
async def patch_ai_settings(conn: Conn, log: Log, update: AISettingsUpdateIn):
    return ok(await game.settings.update_settings(conn, update.model_dump(exclude_none=True), log=log))


@router.post("/api/ai-settings/test")
async def post_ai_settings_test(conn: Conn, log: Log, body: ApiKeyTestIn):
    model = unwrap(await game.settings.check_api_key(conn, body.provider, log=log))
    return ok({"message": "API key is valid!", "model": model})
