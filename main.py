""" main.py: FastAPI application entry point and runtime configuration.

This module builds the ASGI app through `create_app`, wires the gateway's long-lived
collaborators (access store, provider registry, audit sink, command orchestrator, credential
gate) onto `app.state`, mounts the routers, configures CORS, and exposes a Prometheus metrics
endpoint. When executed directly, it starts a Uvicorn server using host/port values from
configuration.

The registry is built once here and never mutated afterwards; request handlers reach it (and
everything else) through `request.app.state`, so tests can build an app around their own
store and registry.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
import logging
from config import CONFIG, ENV

from core.credential_gate import CredentialGate
from core.orchestrator import CommandOrchestrator
from provider_api.registry import ProviderRegistry, build_registry
from services.access_store import AccessStore
from services.audit import AuditSink
from version import __version__

# --- Router Imports ---
from api import health as health_router
from api import iot as iot_router
from api import public_actions as public_actions_router

# Get a logger instance for this module
logger = logging.getLogger(__name__)


def create_app(
    store: Optional[AccessStore] = None,
    registry: Optional[ProviderRegistry] = None,
    jwt_secret: Optional[str] = None,
    trust_forwarded_for: Optional[bool] = None,
) -> FastAPI:
    """
    Create and configure the gateway application.

    Args:
        store (Optional[AccessStore]): Record store; defaults to the SQLite file from
            `store.db_path`, initialized on creation.
        registry (Optional[ProviderRegistry]): Provider registry; defaults to one built from
            the process environment.
        jwt_secret (Optional[str]): Secret for staff session tokens; defaults to JWT_SECRET.
        trust_forwarded_for (Optional[bool]): Read the client IP from X-Forwarded-For;
            defaults to `server.trust_forwarded_for`.

    Returns:
        FastAPI: The configured application.
    """
    if store is None:
        store = AccessStore(CONFIG['store']['db_path'])
        store.init_db()
    if registry is None:
        registry = build_registry(fallback_to_generic=CONFIG['iot']['fallback_to_generic'])

    audit = AuditSink(store)
    orchestrator = CommandOrchestrator(
        store, registry, audit, dispatch_timeout_s=CONFIG['iot']['dispatch_timeout_s']
    )

    app = FastAPI(title="Guest Access Gateway", version=__version__)
    app.state.store = store
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.gate = CredentialGate(store, orchestrator, audit)
    app.state.jwt_secret = jwt_secret or ENV['JWT_SECRET']
    app.state.staff_roles = list(CONFIG['auth']['staff_roles'])
    if trust_forwarded_for is None:
        trust_forwarded_for = CONFIG['server'].get('trust_forwarded_for', False)
    app.state.trust_forwarded_for = bool(trust_forwarded_for)

    # Include routers
    app.include_router(health_router.router, tags=["Health"])
    app.include_router(public_actions_router.router, tags=["Public"])
    app.include_router(iot_router.router, tags=["IoT"])

    # Add Prometheus metrics endpoint
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    # Configure CORS
    allow_origins = CONFIG.get('cors', {}).get('allow_origins', ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if not app.state.jwt_secret:
        logger.warning("JWT_SECRET is not set; staff endpoints will answer 401")
    logger.info(f"Access gateway app created (version {__version__})")
    return app


# The uvicorn server is used to run the FastAPI application.
if __name__ == '__main__':
    import uvicorn
    logger.info("[__main__] Starting Uvicorn server for main.py\n")
    uvicorn.run(
        create_app(),
        host=CONFIG.get('server', {}).get('host', '0.0.0.0'),
        port=CONFIG.get('server', {}).get('port', 8080)
    )
