"""
Payments app for escrow through Stripe Connect.

This app handles:
- Creator payee accounts and Stripe onboarding links
- Hosted checkout sessions that move seller funds into custody
- Webhook reconciliation of checkout outcomes
- Release of the net amount to the creator

Related apps:
    - authentication: User model with seller/creator roles
    - campaigns: PromotionRequest completed on release

Usage:
    from payments.services import EscrowSessionService, EscrowReleaseService

    result = EscrowSessionService.create_escrow_session(...)
    result = EscrowReleaseService.release_escrow(payment_id, actor=user)
"""
