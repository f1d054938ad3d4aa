import typing

from fastapi.encoders import jsonable_encoder


def ok(data: typing.Any = None) -> dict[str, typing.Any]:
    return {"success": True, "data": jsonable_encoder(data)}


def failure(message: str, code: str, details: typing.Any = None) -> dict[str, typing.Any]:
    body: dict[str, typing.Any] = {"success": False, "error": message, "code": code}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body
