"""
SnipSafe Backend — Abstract Identity Provider Interface
=========================================================

What:  Contract for external identity providers that verify a user's credentials
       and return their directory profile.
How:   Concrete providers inherit from IdentityProvider and implement authenticate().
Who:   AuthService calls it during POST /api/auth/azure/login.

Implementations:
    - AzureADService: Microsoft identity platform (ROPC flow) + Microsoft Graph
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DirectoryProfile:
    """What SnipSafe needs from a directory account."""
    external_id: str
    email: str
    display_name: Optional[str] = None


class IdentityProvider(ABC):
    """
    Contract:
        - authenticate() verifies credentials and returns a DirectoryProfile
        - Rejected credentials raise AuthenticationError (→ 401)
        - Provider outages raise IdentityProviderError or CircuitBreakerOpenError (→ 503)
        - Implementations handle their own retries
    """

    @abstractmethod
    async def authenticate(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        username: str,
        password: str,
    ) -> DirectoryProfile:
        """
        Exchange a username/password for the account's directory profile.

        Raises:
            AuthenticationError:      credentials rejected by the provider
            IdentityProviderError:    provider failed after all retries
            CircuitBreakerOpenError:  too many recent failures; not attempted
        """
        ...

    @abstractmethod
    def status(self) -> str:
        """
        Health summary for GET /health without calling the provider:
        'available' or 'circuit_open'.
        """
        ...
