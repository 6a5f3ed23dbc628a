from __future__ import annotations

import asyncio
import contextlib
import logging
from asyncio import Task, create_task
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI
from redis.asyncio import Redis

from linkpool.api import AllowAllConsumers, admin_router, link_router
from linkpool.config import AppConfig, Settings, effective_setting, get_settings, load_yaml_config
from linkpool.middleware.errors import register_exception_handlers
from linkpool.models.domain import PoolConfig
from linkpool.models.errors import RejectedError
from linkpool.pool import (
    ConsumerBindingManager,
    DomainRegistry,
    DomainSelector,
    FailureTracker,
    HealthCheckConfig,
    HealthEndpointHandler,
    HealthMonitor,
)
from linkpool.routers import health_router, metrics_router
from linkpool.store import InMemoryRecordStore, JsonFileRecordStore, RecordStore, RedisRecordStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_store(cfg: AppConfig, settings: Settings) -> RecordStore:
    backend = effective_setting(cfg, settings, "store_backend") or "file"
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "redis":
        redis_url = effective_setting(cfg, settings, "redis_url") or "redis://localhost:6379/0"
        return RedisRecordStore(Redis.from_url(redis_url, decode_responses=True))
    if backend == "file":
        return JsonFileRecordStore(effective_setting(cfg, settings, "data_dir") or "./data")
    raise ValueError(f"Unsupported store backend: {backend}")


async def _seed_domains(registry: DomainRegistry, cfg: AppConfig) -> None:
    if not cfg.domain_list or await registry.list():
        return

    for entry in cfg.domain_list:
        try:
            await registry.add(
                host=entry.host,
                protocol=entry.protocol,
                weight=entry.weight,
                order=entry.order,
                health_check_path=entry.health_check_path,
                status=entry.status,
            )
        except RejectedError as exc:
            logger.warning("skipping seed domain %s: %s", entry.host, exc.message)


async def init_services(
    app: FastAPI,
    cfg: AppConfig,
    settings: Settings,
    store: RecordStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> HealthMonitor:
    """Build the pool services on `app.state` and return the (not yet started) health monitor."""
    app.state.settings = settings
    app.state.app_config = cfg

    store = store or build_store(cfg, settings)
    app.state.store = store

    general = cfg.general_settings
    app.state.http_client = http_client or httpx.AsyncClient(timeout=general.health_check_timeout_seconds)

    registry = DomainRegistry(store, pool_defaults=PoolConfig(**cfg.pool_settings.model_dump()))
    pool_config = await registry.get_pool_config()
    await _seed_domains(registry, cfg)

    selector = DomainSelector(registry)
    tracker = FailureTracker(registry)
    app.state.domain_registry = registry
    app.state.domain_selector = selector
    app.state.failure_tracker = tracker
    app.state.binding_manager = ConsumerBindingManager(
        registry,
        selector,
        store,
        unbind_confirmation_code=effective_setting(cfg, settings, "unbind_confirmation_code"),
    )
    if getattr(app.state, "consumer_directory", None) is None:
        app.state.consumer_directory = AllowAllConsumers()

    monitor = HealthMonitor(
        config=HealthCheckConfig(
            enabled=general.background_health_checks,
            timeout_seconds=general.health_check_timeout_seconds,
            default_interval_seconds=pool_config.health_check_interval_seconds,
        ),
        registry=registry,
        tracker=tracker,
        http_client=app.state.http_client,
    )
    registry.on_config_change(monitor.on_config_change)
    app.state.health_monitor = monitor
    app.state.domain_health_handler = HealthEndpointHandler(registry)
    return monitor


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.getLogger("linkpool").setLevel(settings.log_level.upper())
    config_path = getattr(app.state, "config_path", None) or settings.config_path
    cfg = load_yaml_config(config_path)

    monitor = await init_services(app, cfg, settings)

    health_task: Task[None] | None = None
    if cfg.general_settings.background_health_checks:
        health_task = create_task(monitor.start())

    logger.info("application startup complete")
    try:
        yield
    finally:
        monitor.stop()
        if health_task is not None:
            health_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await health_task
        await app.state.http_client.aclose()
        await app.state.store.close()


def create_app(config_path: str | None = None, **state: Any) -> FastAPI:
    app = FastAPI(title="LinkPool Domain Service", version="0.1.0", lifespan=lifespan)
    app.state.config_path = config_path
    for key, value in state.items():
        setattr(app.state, key, value)
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(link_router)
    app.include_router(admin_router)
    return app


app = create_app()


def cli():
    """Command line interface for the domain service."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="LinkPool Domain Service")
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--host", "-H",
        help="Host to bind to",
        default="0.0.0.0",
    )
    parser.add_argument(
        "--port", "-p",
        help="Port to bind to",
        type=int,
        default=8000,
    )

    args = parser.parse_args()

    uvicorn.run(
        create_app(args.config),
        host=args.host,
        port=args.port,
    )


if __name__ == "__main__":
    cli()
