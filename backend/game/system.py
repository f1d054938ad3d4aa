import typing
import asyncio
import inspect


class SystemStopMarker:
    pass

class SystemPipeException(RuntimeError):
    def __init__(self, cause: Exception, system_name: str):
        super().__init__(f"Pipe in system {system_name} failed with an exception")
        self.cause = cause


class SystemException(RuntimeError):
    def __init__(self, message: str):
        super().__init__(message)


_system_index: dict[tuple[type, typing.Any], "System"] = {}


class System[E, I]:
    """
    A system is an object which runs pipes and emits events.

    A play session is a system keyed by its campaign: its pipe drives the
    model through tool calls and emits text, tool calls, tool results
    and notices, which the HTTP layer listens to and streams out.

    Only one system of a class can exist per id until it is stopped.
    """

    def __init__(self, id_: I, name: str | None = None):
        self.name = name or self.__class__.__name__
        if (self.__class__, id_) in _system_index:
            raise SystemException(f"System {self.name} (id={id_}) already exists")
        _system_index[(self.__class__, id_)] = self
        self._event_queue: asyncio.Queue[E | SystemPipeException | SystemStopMarker] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()
        self.active_pipes = 0
        self.id = id_
        self.stopped: bool = False
        self.listened: bool = False
        self.finished_event: asyncio.Event = asyncio.Event()
        self.finished_event.set()

    @classmethod
    def of(cls, id_: I):
        return _system_index.get((cls, id_))

    def add_pipe(self, coro: typing.Coroutine):
        if self.stopped:
            raise SystemException(f"Trying to add pipe to a stopped system {self.name} (id={self.id})")

        if not inspect.isawaitable(coro):
            raise ValueError("Pipes must be async functions")

        async def wrapper():
            try:
                await coro
            except Exception as e:
                await self._event_queue.put(SystemPipeException(e, self.name))
            finally:
                self.active_pipes -= 1
                if self.active_pipes == 0:
                    self.finished_event.set()

        self.add_raw_pipe(wrapper())

    def add_raw_pipe(self, pipe: typing.Coroutine, name: str | None = None):
        self.active_pipes += 1
        self.finished_event.clear()
        task = asyncio.create_task(pipe, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def emit(self, event: E):
        if self.stopped:
            return
        self._event_queue.put_nowait(event)

    async def stop(self):
        if self.stopped:
            return
        await self.finished_event.wait()
        self.stopped = True
        _system_index.pop((self.__class__, self.id), None)
        await self._event_queue.put(SystemStopMarker())

    async def cancel(self):
        """Cancel running pipes and stop the system."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.finished_event.set()
        await self.stop()

    async def listen(self) -> typing.AsyncGenerator[E]:
        if self.listened:
            raise SystemException(
                f"System {self.name} (id={self.id}) is already being listened to. "
                "You can only listen to a system once."
            )

        try:
            self.listened = True
            while True:
                event = await self._event_queue.get()
                self._event_queue.task_done()
                if isinstance(event, SystemStopMarker):
                    break
                elif isinstance(event, SystemPipeException):
                    raise event from event.cause
                else:
                    yield event
        finally:
            self.listened = False
