"""
Campaigns application.

Promotion requests published by sellers. A request records the budget
range a seller is willing to pay and the creator who accepted it. The
payments app marks a request completed when its escrow is released.
"""
