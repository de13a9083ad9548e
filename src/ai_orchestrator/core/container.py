"""Dependency injection container for building fully-wired Orchestrator instances."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import httpx

from ai_orchestrator.analytics.logger import ResponseLogger
from ai_orchestrator.analytics.sqlite_repository import SQLiteResponseLogRepository
from ai_orchestrator.core.config import OrchestratorConfig
from ai_orchestrator.core.orchestrator import Closer, Orchestrator
from ai_orchestrator.domain.exceptions import ConfigurationError
from ai_orchestrator.domain.interfaces import IRateWindowStore
from ai_orchestrator.domain.models import CallOptions
from ai_orchestrator.providers.base import ProviderConfig
from ai_orchestrator.providers.gemini_provider import GeminiProvider
from ai_orchestrator.providers.openai_provider import OpenAIProvider
from ai_orchestrator.ratelimit.limiter import RateLimiter
from ai_orchestrator.ratelimit.stores import (
    InMemoryRateWindowStore,
    RedisRateWindowStore,
    SQLiteRateWindowStore,
)
from ai_orchestrator.utils.retry import RetryExecutor, RetryPolicy


class DIContainer:
    """Factory helpers that assemble an Orchestrator with default wiring."""

    @staticmethod
    def create_orchestrator(
        *,
        openai_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        config: Optional[OrchestratorConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_store: Optional[IRateWindowStore] = None,
        default_options: Optional[CallOptions] = None,
    ) -> Orchestrator:
        """Build an orchestrator; explicit keys take precedence over ``config``."""

        cfg = config or OrchestratorConfig.from_env()
        closers: list[Closer] = []

        client = http_client
        if client is None:
            client = DIContainer._build_http_client(cfg)
            closers.append(client.aclose)

        primary, secondary = DIContainer._build_providers(
            cfg,
            client,
            openai_api_key=openai_api_key or cfg.openai_api_key,
            gemini_api_key=gemini_api_key or cfg.gemini_api_key,
        )

        store = rate_store
        if store is None:
            store = DIContainer._build_rate_store(cfg)
            if isinstance(store, RedisRateWindowStore):
                closers.append(store.aclose)
        rate_limiter = RateLimiter(
            store,
            limit=cfg.rate_limit,
            window_seconds=cfg.rate_window_seconds,
        )

        retry_executor = RetryExecutor(
            RetryPolicy(
                max_attempts=cfg.max_attempts,
                base_delay=cfg.base_delay_seconds,
                max_delay=cfg.max_delay_seconds,
                jitter=cfg.retry_jitter,
            )
        )

        response_logger = (
            ResponseLogger(SQLiteResponseLogRepository(cfg.database_path))
            if cfg.enable_logging
            else None
        )

        return Orchestrator(
            primary,
            secondary,
            rate_limiter,
            retry_executor=retry_executor,
            response_logger=response_logger,
            default_options=default_options,
            closers=closers,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_http_client(config: OrchestratorConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.timeout_seconds)

    @staticmethod
    def _build_providers(
        config: OrchestratorConfig,
        client: httpx.AsyncClient,
        *,
        openai_api_key: Optional[str],
        gemini_api_key: Optional[str],
    ) -> tuple[OpenAIProvider, GeminiProvider]:
        primary = OpenAIProvider(
            client,
            ProviderConfig(
                api_key=openai_api_key,
                base_url=config.openai_base_url,
                model_name=config.primary_model,
                timeout=config.timeout_seconds,
            ),
        )
        secondary = GeminiProvider(
            client,
            ProviderConfig(
                api_key=gemini_api_key,
                base_url=config.gemini_base_url,
                model_name=config.secondary_model,
                timeout=config.timeout_seconds,
            ),
        )
        return primary, secondary

    @staticmethod
    def _build_rate_store(config: OrchestratorConfig) -> IRateWindowStore:
        if config.rate_store == "memory":
            return InMemoryRateWindowStore()
        if config.rate_store == "redis":
            if not config.redis_url:
                raise ConfigurationError(
                    "redis_url is required when rate_store is 'redis'"
                )
            return RedisRateWindowStore.from_url(
                config.redis_url, ttl_seconds=config.rate_window_seconds * 2
            )
        return SQLiteRateWindowStore(Path(config.database_path))
