import uuid

from fastapi import APIRouter
from pydantic import BaseModel, Field

import game.images
from app.dependencies import Conn, Log
from app.responses import ok
from game.images import ImageType, SceneTheme
from irtypes.error import unwrap

router = APIRouter()


class SceneImageIn(BaseModel):
    campaign_id: uuid.UUID
    description: str = Field(min_length=1, max_length=1000)
    theme: SceneTheme | None = None
    image_type: ImageType = "scene"
    update_game_state: bool = True


@router.post("/api/scene-image")
async def post_scene_image(conn: Conn, log: Log, body: SceneImageIn):
    return ok(
        unwrap(
            await game.images.generate_scene_image(
                conn,
                body.campaign_id,
                body.description,
                body.theme,
                body.image_type,
                body.update_game_state,
                log=log,
            )
        )
    )
