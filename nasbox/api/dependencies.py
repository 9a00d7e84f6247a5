"""Request-scoped access to the application container."""

from fastapi import Request

from nasbox.container import AppContainer


def get_container(request: Request) -> AppContainer:
    """Get the container built at application startup."""
    return request.app.state.container
