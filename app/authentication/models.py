"""
Authentication models.

This module defines the User model used by the payment flows:
- Sellers pay into escrow for their promotion requests
- Creators onboard a payee account and receive releases

Related files:
    - managers.py: Custom user manager for email-based creation

Security:
    - User passwords hashed with Django's PBKDF2
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        role: Marketplace role (seller or creator)
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        seller = User.objects.create_user(
            email="seller@example.com",
            password="securepassword",
            role=User.Role.SELLER,
        )
    """

    class Role(models.TextChoices):
        SELLER = "seller", "Seller"
        CREATOR = "creator", "Creator"
        ADMIN = "admin", "Admin"

    # Primary identifier (replaces username)
    email = models.EmailField(
        unique=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.SELLER,
        db_index=True,
        help_text="Marketplace role used for payment permissions",
    )

    # Account status flags
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    # Timestamps
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    @property
    def is_seller(self) -> bool:
        return self.role == self.Role.SELLER

    @property
    def is_creator(self) -> bool:
        return self.role == self.Role.CREATOR

    @property
    def is_platform_admin(self) -> bool:
        """Admins and staff may act on any payment."""
        return self.role == self.Role.ADMIN or self.is_staff
