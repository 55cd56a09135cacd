# Run from project root: uvicorn querychain.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from querychain.api.handlers import pipeline_error_handler
from querychain.api.routes import router
from querychain.core.errors import QueryChainError
from querychain.services.document_store import close_document_store

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_document_store()


app = FastAPI(title="QueryChain AI Backend", lifespan=lifespan)
app.include_router(router)
app.add_exception_handler(QueryChainError, pipeline_error_handler)
