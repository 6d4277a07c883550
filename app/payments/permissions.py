"""
Permission classes for payments API.

- IsSeller: Authenticated user with the seller role
- IsCreator: Authenticated user with the creator role

Ownership of a specific payment (payer or platform admin) is checked by
the services, since they load the payment anyway.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsSeller(permissions.BasePermission):
    """Allows access only to sellers."""

    message = "Only sellers can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_seller)


class IsCreator(permissions.BasePermission):
    """Allows access only to creators."""

    message = "Only creators can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_creator)
