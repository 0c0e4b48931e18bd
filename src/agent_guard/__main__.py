"""CLI entrypoint and wiring for agent-guard."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import ssl
import sys

import websockets.asyncio.server

from agent_guard.audit import AuditSink, JsonlAuditSink
from agent_guard.catalog import CatalogStore
from agent_guard.config import Config, ConfigError, load_config
from agent_guard.db import Database
from agent_guard.engine import PermissionEngine
from agent_guard.executor import AgentExecutor
from agent_guard.orchestrator import Orchestrator
from agent_guard.prompts import PromptBuilder
from agent_guard.ratelimit import RateLimiter
from agent_guard.router import KeywordRouter
from agent_guard.server import GatewayServer
from agent_guard.services.base import AgentBackend
from agent_guard.services.mock import MockBackend
from agent_guard.services.openai import OpenAIBackend
from agent_guard.services.retry import RetryingBackend

logger = logging.getLogger("agent_guard")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Supports:
        --insecure       Allow plaintext WS (no TLS)
        --config PATH    Config file path (default: config.yaml)
    """
    parser = argparse.ArgumentParser(
        description="agent-guard: permission guard and multi-agent dispatcher"
    )
    parser.add_argument("--insecure", action="store_true", help="Allow plaintext WS (no TLS)")
    parser.add_argument("--config", default="config.yaml", help="Config file path")
    return parser.parse_args(argv)


def build_backend(config: Config) -> AgentBackend:
    """Real LLM backend wrapped in retries, or the mock backend without an API key."""
    if not config.llm.api_key:
        logger.warning("llm.api_key not set — agents will answer with mock replies")
        return MockBackend()
    return RetryingBackend(OpenAIBackend(config.llm), max_retries=config.llm.max_retries)


async def open_database(config: Config) -> Database:
    """Open the message database and drop messages past the retention period."""
    db = Database(config.storage.path)
    await db.initialize()
    if config.storage.retention_days > 0:
        await db.cleanup_old_conversations(config.storage.retention_days)
    return db


async def run(args: argparse.Namespace) -> None:
    """Main async entrypoint -- wires all components and serves until signalled."""
    # 1. Load config and catalog (fail fast on a broken catalog)
    config = load_config(args.config)
    catalog = CatalogStore(
        config.catalog.api_index, config.catalog.permissions, ttl=config.catalog.cache_ttl
    )
    await catalog.load()

    # 2. TLS check
    if not args.insecure and config.gateway.tls is None:
        logger.error("TLS not configured. Use --insecure to allow plaintext WS.")
        sys.exit(1)

    # 3. Signal handling
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    # 4. Storage
    db = await open_database(config)
    audit: AuditSink = db
    if config.audit.type == "jsonl":
        audit = JsonlAuditSink(config.audit.path)

    # 5. Agent backend
    backend = build_backend(config)
    if not await backend.health_check():
        logger.warning("LLM backend unreachable — continuing anyway")

    # 6. Guard and dispatcher
    engine = PermissionEngine(catalog, audit)
    rate_limiter = RateLimiter(audit, cleanup_interval=config.rate_limit.cleanup_interval)
    prompts = PromptBuilder(
        db,
        {"heavy": config.llm.model_heavy, "light": config.llm.model_light},
        history_limit=config.dispatch.history_limit,
    )
    orchestrator = Orchestrator(
        catalog=catalog,
        classifier=KeywordRouter(fallback=config.dispatch.fallback_agent),
        prompts=prompts,
        rate_limiter=rate_limiter,
        executor=AgentExecutor(backend, engine),
        store=db,
        audit=audit,
        rate_limit=config.rate_limit,
        fallback_agent=config.dispatch.fallback_agent,
    )
    gateway = GatewayServer(
        token=config.gateway.token,
        engine=engine,
        orchestrator=orchestrator,
        audit=audit,
    )

    # 7. SSL context
    ssl_ctx = None
    if config.gateway.tls:
        ssl_ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_ctx.load_cert_chain(config.gateway.tls.cert, config.gateway.tls.key)

    # 8. Serve
    async with websockets.asyncio.server.serve(
        gateway.handle_connection,
        config.gateway.host,
        config.gateway.port,
        ssl=ssl_ctx,
    ):
        proto = "wss" if ssl_ctx else "ws"
        logger.info(
            "agent-guard ready on %s://%s:%d",
            proto,
            config.gateway.host,
            config.gateway.port,
        )
        await stop_event.wait()

    # 9. Graceful shutdown
    logger.info("Shutting down...")
    await backend.close()
    await db.close()
    logger.info("agent-guard stopped")


def main(argv: list[str] | None = None) -> None:
    """Synchronous entrypoint for the CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
