"""Route table that binds JSON handlers to paths behind the per-request auth gate."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, overload

from bevy import Container
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from inkwell.auth.auth_core import AuthCore
from inkwell.auth.config.schema import AuthConfig
from inkwell.auth.types import User
from inkwell.http.guard import gate

type HTTPMethod = Literal["GET", "POST", "PUT", "DELETE"]


@dataclass
class Protection:
    """The gate a route must clear before its handler runs."""

    action: str
    target_param: str | None = None
    owner: Callable[[Request], Awaitable[str | None]] | None = None


def protected(
    action: str,
    *,
    target_param: str | None = None,
    owner: Callable[[Request], Awaitable[str | None]] | None = None,
):
    """
    Require a live session and permission for ``action`` before a handler runs.

    Mutating methods also need a CSRF ticket. The acting ``User`` is added to the
    request container so the handler can take it with ``Inject[User]``.

    Args:
        action: Name from the action table
        target_param: Path parameter holding the target username
        owner: Async callable returning the username owning the addressed resource
    """

    def decorator(handler):
        handler.__protection__ = Protection(action, target_param, owner)
        return handler

    return decorator


class Router:
    def __init__(self):
        self.routes: list[tuple[str, Callable[..., Any], set[str]]] = []

    @overload
    def route(self, path: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]: ...

    @overload
    def route(self, path: str, methods: set[HTTPMethod]) -> Callable[[Callable[..., Any]], Callable[..., Any]]: ...

    def route[**P, R](self, path: str, *args, **kwargs) -> Callable[[Callable[P, R]], Callable[P, R]]:
        if len(args) > 1:
            raise ValueError("Too many arguments")

        if len(args) == 1 and "methods" in kwargs:
            raise ValueError("Methods cannot be specified as both an argument and a keyword argument")

        if len(args) == 1:
            methods = args[0]

        elif "methods" in kwargs:
            methods = kwargs["methods"]

        else:
            methods = {"GET"}

        if not isinstance(methods, set) or not all(isinstance(method, str) for method in methods):
            raise ValueError("Methods must be a set of strings")

        def decorator(func: Callable[P, R]) -> Callable[P, R]:
            self.routes.append((path, func, methods))
            return func

        return decorator

    def build(self, container: Container) -> list[Route]:
        """Bind every registered handler to ``container`` as a Starlette route."""
        return [
            Route(path, self._wrap_endpoint(container, endpoint), methods=methods)
            for path, endpoint, methods in self.routes
        ]

    @staticmethod
    def _wrap_endpoint(container: Container, endpoint):
        protection: Protection | None = getattr(endpoint, "__protection__", None)

        async def wrapped_endpoint(request: Request) -> Response:
            with container.branch() as request_container:
                request_container.add(Request, request)

                if protection:
                    owner = await protection.owner(request) if protection.owner else None
                    target = request.path_params.get(protection.target_param) if protection.target_param else None
                    user = await gate(
                        request,
                        request_container.get(AuthCore),
                        request_container.get(AuthConfig),
                        protection.action,
                        target=target,
                        resource_owner=owner,
                    )
                    request_container.add(User, user)

                result = await request_container.call(endpoint, **request.path_params)

            if not isinstance(result, Response):
                raise ValueError(f"Unsupported return type: {type(result)}")
            return result

        return wrapped_endpoint
