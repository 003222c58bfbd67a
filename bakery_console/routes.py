from typing import Optional

from bakery_console.config import settings
from bakery_console.entities import ROUTES, Entity

LOGIN_ROUTE = "/login"
ROOT_ROUTE = "/"

CONSOLE_ROUTES: dict[str, Entity] = {f"/{route}": entity for route, entity in ROUTES.items()}


def redirect_for(path: str, authenticated: bool, default_route: Optional[str] = None) -> Optional[str]:
    """Where the console sends a visitor of ``path``, or None to let them in.

    Signed-out visitors of any entity page go to the login page; signed-in
    visitors of the login page (or the root) go to the default entity page.
    """
    default_route = default_route or settings.default_route
    path = path.rstrip("/") or ROOT_ROUTE
    if path == LOGIN_ROUTE:
        return default_route if authenticated else None
    if path == ROOT_ROUTE:
        return default_route if authenticated else LOGIN_ROUTE
    if path in CONSOLE_ROUTES and not authenticated:
        return LOGIN_ROUTE
    return None


def entity_for(path: str) -> Optional[Entity]:
    return CONSOLE_ROUTES.get(path.rstrip("/"))
