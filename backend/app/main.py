import dotenv
from starlette.middleware.cors import CORSMiddleware

from app.dependencies import livespan

dotenv.load_dotenv()

from app.campaigns import router as campaigns_router
from app.characters import router as characters_router
from app.chat import router as chat_router
from app.game_state import router as game_state_router
from app.play import router as play_router
from app.scene_image import router as scene_image_router
from app.sessions import router as sessions_router
from app.settings import router as settings_router
from app.responses import failure
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request
import uvicorn

from game.logger import gl_log
from irtypes.error import ServiceCode, ServiceErrorException
import config

app = FastAPI(lifespan=livespan)

app.include_router(campaigns_router)
app.include_router(characters_router)
app.include_router(chat_router)
app.include_router(game_state_router)
app.include_router(settings_router)
app.include_router(scene_image_router)
app.include_router(play_router)
app.include_router(sessions_router)


@app.exception_handler(ServiceErrorException)
async def service_error_exception_handler(
    _request: Request, exc: ServiceErrorException
):
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(exc.error.message, exc.error.code.value, exc.error.details),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    _request: Request, exc: RequestValidationError
):
    issues = [
        {"path": [str(p) for p in e.get("loc", ())], "message": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=failure("Validation failed", ServiceCode.VALIDATION.value, issues),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    await gl_log.aexception("Unhandled error", path=request.url.path, method=request.method, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=failure("Internal server error", ServiceCode.SERVER_ERROR.value),
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/liveness")
def liveness():
    return {"success": True}


def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
