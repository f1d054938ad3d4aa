import dataclasses
import json
from contextlib import asynccontextmanager
from typing import Annotated

import asyncpg
import structlog
from fastapi import Depends, FastAPI
from fastapi.params import Header
from structlog import BoundLogger

import config
from game.logger import gl_log
from irtypes.utils import PgEnum


@dataclasses.dataclass
class AppState:
    pg_pool: asyncpg.Pool
    log: structlog.BoundLogger


state: AppState | None = None


async def get_conn():
    if state is None:
        raise Exception("State is not initialized")
    async with state.pg_pool.acquire() as conn:
        yield conn


Conn = Annotated[asyncpg.Connection, Depends(get_conn)]


async def get_log(
    x_request_id: Annotated[str | None, Header()] = None,
) -> BoundLogger:
    if x_request_id is not None:
        return gl_log.bind(request_id=x_request_id)
    if state is None:
        return gl_log
    return state.log


Log = Annotated[BoundLogger, Depends(get_log)]


async def init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec(
        "json", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )
    await PgEnum.register_all(conn)


@asynccontextmanager
async def livespan(_app: FastAPI):
    global state
    log = gl_log.bind()
    async with asyncpg.create_pool(
        dsn=config.POSTGRES_URL, init=init_connection
    ) as pg_pool:
        state = AppState(pg_pool=pg_pool, log=log)
        await log.ainfo("Backend started", environment=config.ENVIRONMENT)

        yield

        state = None
