from datetime import timedelta
from types import SimpleNamespace

from fastapi import Response

from classbook.auth.jwt import (
    create_access_token, create_refresh_token, verify_refresh_token, verify_token
)
from classbook.graphql.context import build_context
from classbook.services.gateways import StaticCalendarSyncGateway

STAFF = {"user_id": 3, "username": "frontdesk", "organization_id": 1}


def _request(headers=None, cookies=None):
    return SimpleNamespace(headers=headers or {}, cookies=cookies or {})


def test_access_and_refresh_tokens_use_separate_keys():
    access = create_access_token(STAFF)
    refresh = create_refresh_token(STAFF)

    assert verify_token(access)["username"] == "frontdesk"
    assert verify_refresh_token(refresh)["user_id"] == 3
    assert verify_token(refresh) is None
    assert verify_refresh_token(access) is None


def test_expired_token_is_rejected():
    token = create_access_token(STAFF, expires_delta=timedelta(seconds=-5))

    assert verify_token(token) is None


async def test_context_carries_the_operator(db):
    request = _request(headers={"x-access-token": create_access_token(STAFF)})

    context = await build_context(request, Response(), db=db)

    assert context.user.user_id == 3
    assert context.user.label == "frontdesk"
    assert context.db is db


async def test_expired_access_token_is_reissued_from_refresh_cookie(db):
    response = Response()
    request = _request(
        headers={"x-access-token": create_access_token(STAFF, expires_delta=timedelta(seconds=-5))},
        cookies={"refresh_token": create_refresh_token(STAFF)},
    )

    context = await build_context(request, response, db=db)

    assert context.user.organization_id == 1
    assert verify_token(response.headers["x-access-token"])["user_id"] == 3


async def test_anonymous_requests_have_no_operator(db):
    context = await build_context(_request(), Response(), db=db)

    assert context.user is None


async def test_context_picks_up_the_configured_calendar_provider(db):
    gateway = StaticCalendarSyncGateway()
    request = _request()
    request.app = SimpleNamespace(state=SimpleNamespace(calendar_gateway=gateway))

    context = await build_context(request, Response(), db=db)

    assert context.calendar_gateway is gateway
    assert (await build_context(_request(), Response(), db=db)).calendar_gateway is None
