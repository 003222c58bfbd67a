from datetime import datetime, timedelta, timezone

import pytest

from bakery_console.auth import InMemoryIdentityProvider, SessionEvent, SessionGate
from bakery_console.errors import AuthenticationError
from bakery_console.routes import CONSOLE_ROUTES, LOGIN_ROUTE, entity_for, redirect_for


def test_gate_follows_pushed_session_changes() -> None:
    provider = InMemoryIdentityProvider()
    gate = SessionGate(provider)
    assert not gate.is_authenticated

    session = provider.sign_in("github", "ana@example.com")
    assert gate.is_authenticated
    assert gate.require() == session

    refreshed = provider.refresh(session.access_token)
    assert gate.session == refreshed
    assert provider.lookup(session.access_token) is None

    provider.sign_out()
    assert not gate.is_authenticated
    with pytest.raises(AuthenticationError):
        gate.require()


def test_gate_picks_up_an_existing_session() -> None:
    provider = InMemoryIdentityProvider()
    provider.sign_in("google", "luis@example.com")
    assert SessionGate(provider).is_authenticated


def test_unsubscribed_gate_stops_listening() -> None:
    provider = InMemoryIdentityProvider()
    gate = SessionGate(provider)
    gate.close()
    provider.sign_in("google", "ana@example.com")
    assert not gate.is_authenticated


def test_listeners_receive_events_in_order() -> None:
    provider = InMemoryIdentityProvider()
    events = []
    provider.on_session_change(lambda event, session: events.append(event))
    session = provider.sign_in("google", "ana@example.com")
    provider.refresh(session.access_token)
    provider.sign_out()
    assert events == [SessionEvent.SIGNED_IN, SessionEvent.TOKEN_REFRESHED, SessionEvent.SIGNED_OUT]


def test_expired_sessions_are_not_honoured() -> None:
    provider = InMemoryIdentityProvider(ttl_seconds=0)
    session = provider.sign_in("google", "ana@example.com")
    assert session.is_expired()
    assert provider.lookup(session.access_token) is None
    assert provider.get_current_session() is None
    assert not session.is_expired(datetime.now(timezone.utc) - timedelta(minutes=1))


def test_sign_in_rejects_disabled_providers() -> None:
    provider = InMemoryIdentityProvider(providers=("google",))
    with pytest.raises(AuthenticationError):
        provider.sign_in("github", "ana@example.com")


def test_console_routes_cover_every_entity() -> None:
    assert sorted(CONSOLE_ROUTES) == [
        "/productions",
        "/products",
        "/purchases",
        "/raw-materials",
        "/recipes",
        "/roles",
        "/sales",
        "/units",
        "/user-roles",
        "/users",
    ]
    assert entity_for("/raw-materials/").name == "raw_material"
    assert entity_for("/nowhere") is None


def test_redirect_rules() -> None:
    for path in CONSOLE_ROUTES:
        assert redirect_for(path, authenticated=False) == LOGIN_ROUTE
        assert redirect_for(path, authenticated=True) is None
    assert redirect_for("/login", authenticated=False) is None
    assert redirect_for("/login", authenticated=True) == "/products"
    assert redirect_for("/", authenticated=True) == "/products"
    assert redirect_for("/", authenticated=False) == "/login"
    assert redirect_for("/login", authenticated=True, default_route="/sales") == "/sales"


def test_other_sessions_do_not_move_the_gate() -> None:
    provider = InMemoryIdentityProvider()
    first = provider.sign_in("google", "ana@example.com")
    second = provider.sign_in("github", "luis@example.com")
    gate = SessionGate(provider)
    events = []
    provider.on_session_change(lambda event, session: events.append(event))

    provider.refresh(first.access_token)
    assert gate.session == second

    provider.sign_out(first.access_token)
    assert gate.session == second
    assert provider.get_current_session() == second
    assert events == []

    provider.sign_out()
    assert not gate.is_authenticated
    assert events == [SessionEvent.SIGNED_OUT]
