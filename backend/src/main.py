import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from shared.config import settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics
from webhook_ca.api import auth as auth_api
from webhook_ca.api import internal as internal_api
from webhook_ca.controller import ReconcileLoop
from webhook_ca.repository.memory import MemoryStore
from webhook_ca.repository.store import ResourceStore
from webhook_ca.services.bootstrap import bootstrap_operator_key
from webhook_ca.services.reconciler import CAReconciler


# Setup OpenTelemetry Tracing
def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)


def create_store() -> ResourceStore:
    """Build the resource store selected by STORE_BACKEND."""
    if settings.STORE_BACKEND == "memory":
        return MemoryStore()
    if settings.STORE_BACKEND != "database":
        raise RuntimeError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")

    # Deferred so the memory backend never creates an engine
    from shared.database import AsyncSessionLocal, engine
    from webhook_ca.repository.repositories import SqlStore

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    return SqlStore(AsyncSessionLocal)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging()
    setup_tracing()
    setup_metrics(settings.APP_NAME)

    LoggingInstrumentor().instrument(set_logging_format=True)

    store = create_store()
    reconciler = CAReconciler.from_settings(store, settings)
    controller = ReconcileLoop.from_settings(reconciler, settings)

    # Inject dependencies into API modules
    auth_api.set_operator_key_hash(bootstrap_operator_key(settings))
    internal_api.set_controller(controller)
    internal_api.set_store(store)

    task = asyncio.create_task(controller.run())

    yield
    # Shutdown
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)

# Include routers
app.include_router(internal_api.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": settings.APP_NAME}


# Served from the prometheus_client registry the PrometheusMetricReader feeds
@app.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
