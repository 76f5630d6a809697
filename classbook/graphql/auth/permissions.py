from strawberry.types import Info
from strawberry.permission import BasePermission


class IsAuthenticated(BasePermission):
    message = "Authentication required."

    def has_permission(self, source, info: Info, **kwargs):
        return bool(info.context.user)
