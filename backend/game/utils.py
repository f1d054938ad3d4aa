import contextlib


@contextlib.asynccontextmanager
async def get_conn():
    """
    Connection for work that outlives a request handler, such as a
    streamed response. Tests without a running app share their
    transaction connection instead.
    """
    import app.dependencies

    if app.dependencies.state is not None:
        async with app.dependencies.state.pg_pool.acquire() as conn:
            yield conn
    else:
        import tests.conftest
        yield tests.conftest.active_conn
