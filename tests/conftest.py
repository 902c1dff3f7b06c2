from __future__ import annotations

import os

os.environ["LOGURU_LEVEL"] = "DEBUG"

import asyncio
from collections.abc import AsyncIterator, Generator, Iterable
from contextlib import asynccontextmanager

import pytest
from click.testing import CliRunner
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from forgechat.app import app as APP
from forgechat.cli import clear, migrate
from forgechat.config import Config, get_config
from forgechat.events import decode_event
from forgechat.llms import AdapterEvent, ModelStreamAdapter, Prompt
from forgechat.llms.adapter import get_model_stream_adapter
from forgechat.orchestrator import StreamOrchestrator
from forgechat.orm import Base
from forgechat.store.artifact import SqlArtifactStore
from forgechat.store.conversation import SqlConversationGateway
from forgechat.tools.executor import ToolExecutor
from forgechat.tools.schemas import ToolSpec


class ScriptedAdapter(ModelStreamAdapter):
    """Replays a fixed list of adapter events.

    Exceptions in the script are raised in place and an `asyncio.Event` blocks
    the stream until it is set.
    """

    def __init__(
        self,
        events: Iterable[AdapterEvent | BaseException | asyncio.Event] = (),
        connect_error: BaseException | None = None,
        hang_on_connect: bool = False,
    ) -> None:
        self.events = list(events)
        self.connect_error = connect_error
        self.hang_on_connect = hang_on_connect
        self.calls: list[tuple[Prompt, list[ToolSpec]]] = []
        self.closed = False

    @asynccontextmanager
    async def open_stream(self, prompt: Prompt, tools: list[ToolSpec]) -> AsyncIterator[AsyncIterator[AdapterEvent]]:
        self.calls.append((prompt, tools))
        if self.hang_on_connect:
            await asyncio.Event().wait()
        if self.connect_error is not None:
            raise self.connect_error
        try:
            yield self._events()
        finally:
            self.closed = True

    async def _events(self) -> AsyncIterator[AdapterEvent]:
        for event in self.events:
            if isinstance(event, asyncio.Event):
                await event.wait()
                continue
            if isinstance(event, BaseException):
                raise event
            yield event


@pytest.fixture
def db_env(tmp_path) -> Generator[Iterable[tuple[str, str]], None, None]:
    sqlite_path = tmp_path / "forgechat.sqlite"
    yield [
        ("FORGECHAT_USE_POSTGRES", "false"),
        ("FORGECHAT_SQLITE_FILE_PATH", str(sqlite_path)),
    ]


@pytest.fixture
def config(monkeypatch, db_env) -> Config:
    for env, value in db_env:
        monkeypatch.setenv(env, value)
    return get_config()


@pytest.fixture
async def session_factory(config: Config):
    engine = create_async_engine(config.get_db_url(async_mode=True))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def gateway(session_factory) -> SqlConversationGateway:
    return SqlConversationGateway(session_factory)


@pytest.fixture
def artifact_store(session_factory) -> SqlArtifactStore:
    return SqlArtifactStore(session_factory)


@pytest.fixture
def executor(artifact_store) -> ToolExecutor:
    return ToolExecutor(artifact_store)


@pytest.fixture
def orchestrator_builder(gateway, executor, config):
    def build(adapter: ModelStreamAdapter, **overrides) -> StreamOrchestrator:
        return StreamOrchestrator(
            gateway=overrides.pop("gateway", gateway),
            adapter=adapter,
            executor=overrides.pop("executor", executor),
            config=config.model_copy(update=overrides),
        )

    return build


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture
def app(config, db_env, adapter):
    runner = CliRunner()
    result = runner.invoke(
        migrate,
        env=dict(db_env),
    )
    assert result.exit_code == 0
    # Drop all before testing
    result = runner.invoke(
        clear,
        ["--yes"],
        env=dict(db_env),
    )
    assert result.exit_code == 0

    # Dependencies injection mock
    APP.dependency_overrides = {get_model_stream_adapter: lambda: adapter}
    yield APP
    APP.dependency_overrides = {}


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def read_events():
    def read(body: str) -> list:
        return [decode_event(line.removeprefix("data:")) for line in body.splitlines() if line.startswith("data:")]

    return read
