from contextlib import asynccontextmanager

from fastapi import FastAPI

from chatsync.database.connection import close_mongo_connection, connect_to_mongo
from chatsync.routers.chat import router as chat_router
from chatsync.routers.conversations import router as conversations_router
from chatsync.utils.logger import init_app_logger
from chatsync.utils.realtime_bus import close_bus


@asynccontextmanager
async def lifespan(app: FastAPI):

    init_app_logger()
    await connect_to_mongo()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="chatsync", lifespan=lifespan)


app.include_router(conversations_router)
app.include_router(chat_router)


@app.get("/")
async def root():

    return {"message": "chatsync is running"}
