from dataclasses import dataclass, field
from typing import Optional

from strawberry.fastapi import BaseContext
from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.auth.jwt import create_access_token, verify_refresh_token, verify_token
from classbook.db.postgresql import get_db
from classbook.services.gateways import CalendarSyncGateway, LoggingPaymentGateway, PaymentGateway


@dataclass
class Operator:
    """Staff member acting through the API, as carried by the access token"""
    user_id: int
    username: Optional[str] = None
    organization_id: Optional[int] = None

    @property
    def label(self) -> str:
        return self.username or f"user:{self.user_id}"


def operator_from_payload(payload: Optional[dict]) -> Optional[Operator]:
    if not payload or payload.get("user_id") is None:
        return None
    return Operator(
        user_id=payload["user_id"],
        username=payload.get("username"),
        organization_id=payload.get("organization_id"),
    )


@dataclass
class Context(BaseContext):
    db: AsyncSession
    request: Request
    response: Response
    user: Optional[Operator] = None
    payment_gateway: PaymentGateway = field(default_factory=LoggingPaymentGateway)
    calendar_gateway: Optional[CalendarSyncGateway] = None


async def build_context(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> Context:
    access_token = request.headers.get("x-access-token")
    refresh_token = request.cookies.get("refresh_token")

    user = None
    if access_token:
        user = operator_from_payload(verify_token(access_token))

        # Expired access token: reissue from a valid refresh cookie
        if user is None and refresh_token:
            payload_refresh = verify_refresh_token(refresh_token)
            user = operator_from_payload(payload_refresh)
            if user is not None:
                response.headers["x-access-token"] = create_access_token({
                    "user_id": user.user_id,
                    "username": user.username,
                    "organization_id": user.organization_id,
                })

    # Deployments put their calendar provider client on app.state
    app = getattr(request, "app", None)
    calendar_gateway = getattr(app.state, "calendar_gateway", None) if app is not None else None

    return Context(
        db=db, request=request, response=response, user=user, calendar_gateway=calendar_gateway
    )
