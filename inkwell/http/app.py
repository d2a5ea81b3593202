import logging
from contextlib import asynccontextmanager
from pathlib import Path

from bevy import Container, get_registry
from starlette.applications import Starlette

from inkwell.auth.config.loader import AuthConfigLoader
from inkwell.auth.exceptions import AuthError
from inkwell.auth.factory import create_auth_system
from inkwell.http.errors import auth_error_handler
from inkwell.http.router import Router
from inkwell.http.routes import router as api_router

logger = logging.getLogger(__name__)


def create_app(
    container: Container,
    routers: list[Router] | None = None,
    debug: bool = False,
    lifespan=None,
) -> Starlette:
    """
    Build the Starlette application.

    Args:
        container: Container holding the auth components (see ``AuthSystemFactory``)
        routers: Extra routers, e.g. content handlers guarded with ``protected``
        debug: Starlette debug mode
        lifespan: Starlette lifespan context
    """
    routes = api_router.build(container)
    for router in routers or []:
        routes.extend(router.build(container))

    logger.debug(f"Serving {len(routes)} routes")
    return Starlette(
        debug=debug,
        routes=routes,
        exception_handlers={AuthError: auth_error_handler},
        lifespan=lifespan,
    )


def app_from_config(
    config_path: str | Path | None = None,
    routers: list[Router] | None = None,
    debug: bool = False,
) -> Starlette:
    """
    Build the application from a YAML configuration file.

    The auth components are created and the founder bootstrap runs when the
    application starts up.
    """
    path = Path(config_path) if config_path else AuthConfigLoader.get_default_config_path()
    config = AuthConfigLoader.load_auth_config(path)
    container = get_registry().create_container()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        core = await create_auth_system(config, container)
        logger.info(f"Inkwell started with founder {config.founder.username!r}")
        try:
            yield
        finally:
            await core.users.store.close()

    return create_app(container, routers=routers, debug=debug, lifespan=lifespan)
