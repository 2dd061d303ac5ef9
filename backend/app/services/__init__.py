"""
SnipSafe Backend — Services Layer
===================================

What:  Business rules between the routes (HTTP) and the models (persistence).
How:   Stateless singletons; every method takes the request's AsyncSession.

Service Inventory:
    - access_control:   decide(snippet, requester, operation), pure, no I/O
    - sharing_ledger:   grant / revoke / list share grants
    - presence_tracker: join / touch / leave / list current viewers
    - snippet_service:  snippet lifecycle, listings and search (uses the three above)
    - config_service:   runtime configuration row (auth mode, Azure AD settings)
    - auth_service:     accounts, tokens and the FastAPI auth dependencies
    - identity_base:    IdentityProvider interface
    - azure_ad_service: Azure AD IdentityProvider (retries + circuit breaker)
"""
