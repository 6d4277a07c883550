"""
Stand-ins for Stripe SDK objects returned by mocked resources.

Usage:
    from payments.adapters.tests.factories import MockStripeList, MockStripeObject

    session = MockStripeObject({"id": "cs_test123", "status": "open"})
    listing = MockStripeList(items=[session], has_more=False)
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@dataclass
class MockStripeList:
    """
    Mock Stripe list response with data attribute.

    later_pages are what auto_paging_iter fetches after the first page
    while has_more is set.
    """

    items: list[MockStripeObject]
    has_more: bool = False
    later_pages: list[list[MockStripeObject]] = field(default_factory=list)
    pages_fetched: int = 1

    @property
    def data(self) -> list[MockStripeObject]:
        return self.items

    def auto_paging_iter(self):
        yield from self.items
        if not self.has_more:
            return
        for page in self.later_pages:
            self.pages_fetched += 1
            yield from page
