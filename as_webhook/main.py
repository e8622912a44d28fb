"""as-webhook - Matrix application service forwarding messages to webhooks."""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from as_webhook.channels.webhook import WebhookDispatcher
from as_webhook.config import Settings, get_settings
from as_webhook.models.routes import RoutesConfig
from as_webhook.processor import EventProcessor
from as_webhook.registration import generate_registration, write_registration
from as_webhook.router import Resolver, load_routes_config
from as_webhook.sources.matrix import MatrixSource

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global processor instance
processor: EventProcessor | None = None

source = MatrixSource()


def load_routes_or_default(settings: Settings) -> RoutesConfig:
    """Load the route table, falling back to the empty default table."""
    try:
        routes_config = load_routes_config(settings.routes_config_path)
    except FileNotFoundError:
        logger.warning(
            f"Routes config not found: {settings.routes_config}. Using defaults."
        )
        return RoutesConfig.default()
    except Exception as e:
        logger.warning(f"Could not load routes config {settings.routes_config}: {e}. Using defaults.")
        return RoutesConfig.default()

    logger.info(f"Loaded {len(routes_config.routes)} route(s) from {settings.routes_config}")
    return routes_config


def build_processor(settings: Settings) -> EventProcessor:
    """Build the processor; an invalid selector aborts with SelectorCompileError."""
    routes_config = load_routes_or_default(settings)
    for route in routes_config.routes:
        logger.info(f"Loaded route: name={route.name}")

    return EventProcessor(
        resolver=Resolver(routes_config),
        dispatcher=WebhookDispatcher(timeout=settings.webhook_timeout),
        event_type=settings.message_event_type,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    global processor

    settings = getattr(app.state, "settings", None) or get_settings()

    # Configure logging level
    logging.getLogger().setLevel(settings.log_level.upper())

    processor = build_processor(settings)
    logger.info("as-webhook started")

    yield

    processor = None
    logger.info("as-webhook stopped")


app = FastAPI(
    title="as-webhook",
    description="Matrix application service forwarding room messages to webhooks",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/routes")
async def list_routes() -> dict[str, list[dict]]:
    """List configured routing rules."""
    if not processor:
        return {"routes": []}

    return {
        "routes": [
            {
                **route.model_dump(exclude={"shared_secret"}),
                "signed": route.shared_secret is not None,
            }
            for route in processor.resolver.routes
        ]
    }


@app.put("/_matrix/app/v1/transactions/{txn_id}")
async def handle_transaction(txn_id: str, request: Request) -> JSONResponse:
    """Receive a transaction of events from the homeserver."""
    logger.info(f"Received transaction: {txn_id}")

    if not processor:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Processor not configured.",
        )

    try:
        payload: Any = await request.json()
        transaction = source.parse(payload)
        logger.info(f"Parsed {source.name} transaction {txn_id}: events={len(transaction.events)}")
    except ValueError as e:
        logger.error(f"Error parsing transaction {txn_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Error parsing transaction",
        )

    # Delivery outcomes are logged by the processor; the homeserver only
    # learns that the transaction was processed.
    await processor.process_transaction(txn_id, transaction)

    return JSONResponse(status_code=status.HTTP_200_OK, content={})


@app.get("/_matrix/app/v1/rooms/{room_alias}")
async def query_room(room_alias: str) -> JSONResponse:
    """Room alias query; this service manages no rooms."""
    logger.info(f"Room query for: {room_alias}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"errcode": "M_NOT_FOUND", "error": f"Room alias {room_alias} not found"},
    )


@app.get("/_matrix/app/v1/users/{user_id}")
async def query_user(user_id: str) -> JSONResponse:
    """User query; this service manages no users."""
    logger.info(f"User query for: {user_id}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"errcode": "M_NOT_FOUND", "error": f"User {user_id} not found"},
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="as-webhook", description=app.description)
    parser.add_argument("--config", default=settings.routes_config, help="Path to routes file (TOML or YAML)")
    parser.add_argument("--host", default=settings.host, help="Address to listen on")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument(
        "--generate-registration",
        metavar="PATH",
        default="",
        help="Generate a registration YAML file at this path and exit",
    )
    parser.add_argument(
        "--server",
        default=f"http://localhost:{settings.port}",
        help="Public URL of this service, written into the registration",
    )
    parser.add_argument("--as-token", default="", help="Application service token (generated if empty)")
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> None:
    """Run the application using uvicorn, or write a registration file."""
    args = parse_args(argv)
    settings = get_settings().model_copy(
        update={"routes_config": args.config, "host": args.host, "port": args.port}
    )

    if args.generate_registration:
        registration = generate_registration(
            args.server, args.as_token or None, registration_id=settings.registration_id
        )
        path = write_registration(registration, args.generate_registration)
        print(f"Registration file generated at: {path}")
        print(f"  - Server URL: {registration.url}")
        print(f"  - AS Token: {registration.as_token}")
        print(f"  - HS Token: {registration.hs_token}")
        return

    app.state.settings = settings
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
