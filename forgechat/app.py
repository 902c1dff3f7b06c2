from contextlib import asynccontextmanager

from fastapi import FastAPI

from forgechat.config import get_config
from forgechat.dbutils import init_engine
from forgechat.router.api import routers


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    async with init_engine(config):
        yield


app = FastAPI(lifespan=lifespan)


@app.get("/")
async def hello():
    return {"message": "Hello World"}


for router in routers:
    app.include_router(router)
