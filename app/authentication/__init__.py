"""
Authentication application.

Email-based User model with a marketplace role. Sellers fund escrow
payments and creators receive releases. API clients authenticate with
SimpleJWT bearer tokens issued by the token endpoints in config.urls.
"""
