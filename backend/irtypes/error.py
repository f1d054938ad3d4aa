import inspect
import typing

from enum import Enum
from structlog import BoundLogger

from pydantic import BaseModel

import config
from game.logger import gl_log


class ServiceCode(str, Enum):
    CAMPAIGN_NOT_FOUND = "CampaignNotFound"
    CHARACTER_NOT_FOUND = "CharacterNotFound"
    GAME_STATE_NOT_FOUND = "GameStateNotFound"
    ITEM_NOT_FOUND = "ItemNotFound"
    VALIDATION = "Validation"
    NO_UPDATE_FIELDS = "NoUpdateFields"
    UNKNOWN_ACTION = "UnknownAction"
    NOT_ENOUGH_HIT_DICE = "NotEnoughHitDice"
    NO_API_KEY = "NoApiKey"
    INVALID_PROVIDER = "InvalidProvider"
    IMAGES_DISABLED = "ImagesDisabled"
    API_KEY_TEST_FAILED = "ApiKeyTestFailed"
    RATE_LIMITED = "RateLimited"
    BILLING = "Billing"
    PROVIDER_ERROR = "ProviderError"
    PLAY_IN_PROGRESS = "PlayInProgress"
    SESSION_NOT_FOUND = "SessionNotFound"
    SERVER_ERROR = "ServerError"


class ServiceError(BaseModel):
    code: ServiceCode
    message: str
    details: dict[str, typing.Any] | None = None


class ServiceErrorException(Exception):
    def __init__(self, status_code: int, error: ServiceError):
        super().__init__(error.message)
        self.status_code = status_code
        self.error = error


def status_code_from_service_code(code: ServiceCode) -> int:
    match code:
        case ServiceCode.SERVER_ERROR | ServiceCode.PROVIDER_ERROR:
            return 500
        case ServiceCode.RATE_LIMITED:
            return 429
        case ServiceCode.BILLING:
            return 402
        case ServiceCode.PLAY_IN_PROGRESS:
            return 409
        case (
            ServiceCode.CAMPAIGN_NOT_FOUND
            | ServiceCode.CHARACTER_NOT_FOUND
            | ServiceCode.GAME_STATE_NOT_FOUND
            | ServiceCode.ITEM_NOT_FOUND
            | ServiceCode.SESSION_NOT_FOUND
        ):
            return 404
        case _:
            return 400


def raise_service_error(
    status_code: int,
    code: ServiceCode,
    message: str,
    details: dict[str, typing.Any] | None = None,
) -> typing.NoReturn:
    raise ServiceErrorException(
        status_code, ServiceError(code=code, message=message, details=details)
    )


def raise_for_service_error(err: ServiceError) -> typing.NoReturn:
    raise ServiceErrorException(status_code_from_service_code(err.code), err)


def unwrap[T](result: T | ServiceError) -> T:
    if isinstance(result, ServiceError):
        raise_for_service_error(result)
    return result


LOG_STACKTRACE = config.LOG_STACKTRACE


async def error(
    code: ServiceCode,
    message: str,
    log: BoundLogger | None = gl_log,
    cause: Exception | None = None,
    **kwargs,
) -> ServiceError:
    details = {str(k): v for k, v in kwargs.items()}
    if cause is not None:
        details["cause"] = repr(cause)

    if LOG_STACKTRACE:
        stack = inspect.stack()

        if len(stack) > 1:
            caller_frame = stack[1]
            details["call_site_filename"] = caller_frame.filename
            details["call_site_lineno"] = caller_frame.lineno
            details["call_site_function"] = caller_frame.function

        details["stack_trace"] = [
            {
                "filename": frame_info.filename,
                "lineno": frame_info.lineno,
                "function": frame_info.function,
            }
            for frame_info in stack[1:]
        ]

    if log is not None:
        await log.awarn(message, code=code.value, **details)
    return ServiceError(code=code, message=message, details=details or None)
