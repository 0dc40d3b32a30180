import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from .config import get_settings
from .database import create_schema, engine
from .routers import availability, reservations, restaurants, staff
from .utils.request_context import generate_request_id, reset_request_context, set_request_id

REQUEST_ID_HEADER = "X-Request-ID"
TENANT_PREFIX = "/restaurants/{restaurant_ref}"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if settings.auto_create_schema:
        await create_schema()
    yield
    await engine.dispose()


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_context()
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app = FastAPI(title="KitchenSync Reservation API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(restaurants.router)
app.include_router(staff.router)
# Public booking routes, reachable with the restaurant taken from host or query,
# or addressed explicitly by id or slug in the path.
for public_router in (availability.router, reservations.router):
    app.include_router(public_router)
    app.include_router(public_router, prefix=TENANT_PREFIX)
