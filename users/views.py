"""
Views for the users app.

The only view here is the JWT login endpoint. It wraps simplejwt's token view
with the lockout guard: the client address is throttled first, then the
account lock is checked, and only then are the credentials authenticated.
"""

import logging

from django.contrib.auth import get_user_model

from rest_framework import status
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.views import TokenObtainPairView

from src.common import client_ip

from .lockout import LockoutGuard

logger = logging.getLogger(__name__)


class LockoutTokenObtainPairView(TokenObtainPairView):
    """Issue an access/refresh token pair unless the caller is throttled or locked out."""

    guard_class = LockoutGuard

    def get_guard(self) -> LockoutGuard:
        return self.guard_class.from_settings()

    def _lookup_user(self, username):
        if not username:
            return None
        User = get_user_model()
        return User.objects.filter(**{User.USERNAME_FIELD: username}).first()

    def post(self, request, *args, **kwargs):
        guard = self.get_guard()
        address = client_ip(request)
        guard.register_attempt(address)

        user = self._lookup_user(request.data.get(get_user_model().USERNAME_FIELD))
        if user is not None:
            guard.ensure_not_locked(user)

        serializer = self.get_serializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
        except AuthenticationFailed:
            if user is not None:
                decision = guard.record_failure(user)
                logger.info(
                    "Failed login for user %s from %s (%d consecutive)",
                    user.pk,
                    address,
                    decision.failure_count,
                )
            raise
        except TokenError as exc:
            raise InvalidToken(exc.args[0]) from exc

        if user is not None:
            guard.record_success(user)
        return Response(serializer.validated_data, status=status.HTTP_200_OK)
