"""
Fedibox Server

This module implements the ActivityPub outbox server using FastAPI.
It provides endpoints for:
1. Outbox submission (validate, store, federate)
2. Outbox collection paging
3. Actor documents carrying the public signing key
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .activitypub import CollectionAssembler, Dispatcher, Outbox
from .activitypub.constants import ACTIVITY_MEDIA_TYPE
from .activitypub.delivery import FailureHook
from .activitypub.outbox import is_activitypub_media_type
from .config import Settings, get_settings
from .database import PostgresRecordStore, RecordStore
from .errors import ActorNotFound, DeliveryFailure, InvalidActivity, StoreError, UnsupportedContentType
from .queue import RedeliveryQueue

logger = logging.getLogger(__name__)

router = APIRouter()


def make_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client for federation, with its own timeout."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.DELIVERY_TIMEOUT),
        headers={'User-Agent': settings.USER_AGENT},
        follow_redirects=True,
    )


def wire(app: FastAPI, settings: Settings, store: RecordStore, client: httpx.AsyncClient,
         on_failure: Optional[FailureHook] = None):
    """Attach the store, dispatcher, outbox and collection assembler to the app."""
    dispatcher = Dispatcher(store, client, settings, on_failure=on_failure)
    app.state.store = store
    app.state.http_client = client
    app.state.dispatcher = dispatcher
    app.state.outbox = Outbox(store, dispatcher, settings)
    app.state.collections = CollectionAssembler(store, settings)


def queue_failures(queue: RedeliveryQueue) -> FailureHook:
    async def on_failure(failure: DeliveryFailure):
        await asyncio.to_thread(queue.enqueue_failure, failure)
    return on_failure


@router.post("/outbox/{actor}")
async def outbox_post(actor: str, request: Request):
    """
    Submit an activity or a bare object to an actor's outbox.

    Responds once the activity is stored; delivery continues in the
    background.
    """
    content_type = request.headers.get('content-type')
    if not is_activitypub_media_type(content_type):
        raise UnsupportedContentType(content_type)

    outbox: Outbox = request.app.state.outbox
    activity = await outbox.submit(actor, await request.body(), content_type)
    return Response(status_code=200, headers={'Location': activity['id']})


@router.get("/outbox/{actor}")
async def outbox_get(actor: str, request: Request, page: bool = False,
                     before: Optional[int] = None):
    """Return the actor's outbox, or one page of it."""
    outbox: Outbox = request.app.state.outbox
    collections: CollectionAssembler = request.app.state.collections
    settings: Settings = request.app.state.settings

    actor_doc = await outbox.resolve_actor(actor)
    outbox_id = actor_doc.get('outbox') or settings.outbox_iri(actor)
    if page:
        content = await collections.outbox_page(actor_doc['id'], outbox_id, before)
    else:
        content = await collections.list_outbox(actor_doc['id'], outbox_id)
    return JSONResponse(content=content, media_type=ACTIVITY_MEDIA_TYPE)


@router.get("/u/{actor}")
async def actor_get(actor: str, request: Request):
    """Returns the actor's profile"""
    outbox: Outbox = request.app.state.outbox
    actor_doc = await outbox.resolve_actor(actor)
    return JSONResponse(content=actor_doc, media_type=ACTIVITY_MEDIA_TYPE)


async def unsupported_content_type_handler(request: Request, exc: UnsupportedContentType):
    # indistinguishable from an unmatched route
    return JSONResponse(status_code=404, content={"detail": "Not Found"})


async def invalid_activity_handler(request: Request, exc: InvalidActivity):
    logger.info(f"Rejected submission to {request.url.path}: {exc.errors}")
    return PlainTextResponse(InvalidActivity.message, status_code=400)


async def actor_not_found_handler(request: Request, exc: ActorNotFound):
    return PlainTextResponse(str(exc), status_code=404)


async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return PlainTextResponse("Service Unavailable", status_code=503)


def create_app(settings: Optional[Settings] = None, store: Optional[RecordStore] = None,
               http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Build the application.

    With an injected ``store`` the app is wired immediately and the caller
    owns the store and client. Otherwise the lifespan opens PostgreSQL,
    the HTTP client and (if configured) the redelivery queue at startup
    and closes them at shutdown.

    Args:
        settings: Instance settings, defaults to the environment
        store: Record store to use instead of PostgreSQL
        http_client: Federation HTTP client

    Returns:
        The FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.LOG_LEVEL)
        owned = not hasattr(app.state, 'outbox')
        queue = None
        if owned:
            on_failure = None
            if settings.RABBITMQ_URL:
                queue = RedeliveryQueue.from_settings(settings)
                on_failure = queue_failures(queue)
            wire(app, settings, PostgresRecordStore.from_settings(settings),
                 make_http_client(settings), on_failure)
        try:
            yield
        finally:
            await app.state.dispatcher.drain(timeout=settings.DELIVERY_TIMEOUT)
            if owned:
                await app.state.http_client.aclose()
                app.state.store.close()
                if queue is not None:
                    queue.close()
                del app.state.outbox

    app = FastAPI(title="Fedibox", lifespan=lifespan)
    app.state.settings = settings
    if store is not None:
        wire(app, settings, store, http_client or make_http_client(settings))

    app.add_exception_handler(UnsupportedContentType, unsupported_content_type_handler)
    app.add_exception_handler(InvalidActivity, invalid_activity_handler)
    app.add_exception_handler(ActorNotFound, actor_not_found_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().LOG_LEVEL)
    uvicorn.run(app, host="127.0.0.1", port=8080)
