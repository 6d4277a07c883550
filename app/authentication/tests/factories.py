"""
Factory Boy factories for authentication models.

Usage:
    from authentication.tests.factories import UserFactory

    seller = UserFactory()
    creator = UserFactory(role=User.Role.CREATOR)
    admin = UserFactory(role=User.Role.ADMIN)
"""

import factory

from authentication.models import User


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for User model.

    Creates active sellers by default. Pass role to get a creator or
    platform admin.

    Examples:
        # Seller
        user = UserFactory()

        # Creator
        user = UserFactory(role=User.Role.CREATOR)

        # Staff user (acts as platform admin)
        user = UserFactory(is_staff=True)
    """

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    role = User.Role.SELLER
    is_active = True
    is_staff = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Override create to use UserManager.create_user()."""
        password = kwargs.pop("password", "TestPass123!")
        return model_class.objects.create_user(
            email=kwargs.pop("email"), password=password, **kwargs
        )


class SellerFactory(UserFactory):
    """User who funds promotions."""

    email = factory.Sequence(lambda n: f"seller{n}@example.com")
    role = User.Role.SELLER


class CreatorFactory(UserFactory):
    """User who onboards a payee account and receives releases."""

    email = factory.Sequence(lambda n: f"creator{n}@example.com")
    role = User.Role.CREATOR
