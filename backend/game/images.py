import dataclasses
import typing
import uuid

import asyncpg
import openai

import game.campaign
import game.settings
from game.logger import gl_log
from irtypes.error import ServiceCode, ServiceError, error

ImageType = typing.Literal["scene", "npc", "item", "map"]
SceneTheme = typing.Literal[
    "tavern", "forest", "dungeon", "castle", "cave",
    "village", "city", "battlefield", "temple", "ruins",
    "mountain", "swamp", "desert", "ocean", "underground",
    "library", "throne_room", "marketplace", "graveyard", "portal",
]
ClientFactory = typing.Callable[[str], openai.AsyncOpenAI]


@dataclasses.dataclass
class SceneImageOut:
    image_url: str
    image_type: str


def image_prompt(description: str, image_type: ImageType, theme: str | None = None) -> str:
    match image_type:
        case "npc":
            return (
                f"Fantasy RPG character portrait: {description}. Detailed digital art, dramatic lighting. "
                "Style: fantasy illustration, concept art, character portrait."
            )
        case "item":
            return (
                f"Fantasy RPG item illustration: {description}. Detailed digital art, dramatic lighting, "
                "item showcase. Style: fantasy illustration, concept art."
            )
        case "map":
            return (
                f"Fantasy RPG map illustration: {description}. Top-down or artistic perspective, detailed, "
                "labeled areas. Style: hand-drawn fantasy map, parchment texture."
            )
        case _:
            return (
                f"Fantasy RPG scene, {theme or 'fantasy'} setting: {description}. Detailed digital art, "
                "dramatic lighting, cinematic composition. Style: fantasy illustration, concept art."
            )


def image_size(image_type: ImageType) -> str:
    return "1792x1024" if image_type == "scene" else "1024x1024"


def _openai_client(api_key: str) -> openai.AsyncOpenAI:
    return openai.AsyncOpenAI(api_key=api_key)


async def generate_scene_image(
    conn: asyncpg.Connection,
    campaign_id: uuid.UUID,
    description: str,
    theme: str | None = None,
    image_type: ImageType = "scene",
    update_game_state: bool = True,
    client_factory: ClientFactory = _openai_client,
    log=gl_log,
) -> SceneImageOut | ServiceError:
    log = log.bind(campaign_id=str(campaign_id), image_type=image_type)
    settings = await game.settings.get_settings(conn, decrypt_keys=True, log=log)
    if settings.image_provider == "none":
        return await error(ServiceCode.IMAGES_DISABLED, "Image generation is disabled in settings", log=log)
    api_key = settings.api_keys.get("openai")
    if not api_key:
        return await error(
            ServiceCode.NO_API_KEY,
            "OpenAI API key is required for image generation. Please configure it in Settings.",
            log=log,
        )

    try:
        response = await client_factory(api_key).images.generate(
            model=settings.image_model or "dall-e-3",
            prompt=image_prompt(description, image_type, theme),
            n=1,
            size=image_size(image_type),
            quality="standard",
        )
    except openai.APIStatusError as e:
        message = (
            "OpenAI billing issue - please check your account."
            if "billing" in str(e.message).lower()
            else "Failed to generate scene image"
        )
        return await error(ServiceCode.PROVIDER_ERROR, message, log=log, cause=e, status=e.status_code)

    image_url = response.data[0].url if response.data else None
    if not image_url:
        return await error(ServiceCode.PROVIDER_ERROR, "Failed to generate image", log=log)

    if image_type == "scene" and update_game_state:
        updated = await game.campaign.update_game_state(
            conn, campaign_id, {"current_scene_image_url": image_url}, log=log
        )
        if isinstance(updated, ServiceError):
            return updated
    await log.ainfo("Generated image", model=settings.image_model)
    return SceneImageOut(image_url=image_url, image_type=image_type)
