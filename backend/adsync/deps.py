"""Request-scoped dependency providers.

Everything here reads from `request.app.state`, populated once by
`create_app(settings)`. Tests swap factories on app.state instead of
patching modules.
"""

from typing import Callable, Iterator

import httpx
from fastapi import Depends, Request

from .config import Settings
from .security import TokenCipher
from .services.platforms import AdapterMap


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cipher(request: Request) -> TokenCipher:
    """Return the app's TokenCipher, built on first use.

    Raises RuntimeError if TOKEN_ENCRYPTION_KEY is missing or malformed, so
    only credential-touching endpoints fail when the key is absent.
    """
    cipher = getattr(request.app.state, "cipher", None)
    if cipher is None:
        cipher = TokenCipher(request.app.state.settings.TOKEN_ENCRYPTION_KEY)
        request.app.state.cipher = cipher
    return cipher


def get_http_client(request: Request) -> Iterator[httpx.Client]:
    """One outbound HTTP client per request, closed afterwards."""
    client = request.app.state.http_client_factory()
    try:
        yield client
    finally:
        client.close()


def get_adapters(
    request: Request,
    http_client: httpx.Client = Depends(get_http_client),
) -> AdapterMap:
    return request.app.state.adapter_factory(request.app.state.settings, http_client)


def get_sleep(request: Request) -> Callable[[float], None]:
    return request.app.state.sleep
