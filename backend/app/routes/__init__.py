"""
SnipSafe Backend — API Routes Package
=======================================

Route Inventory:
    - snippets.py: /api/snippets  (lifecycle, sharing, presence, listings, search)
    - auth.py:     /api/auth      (sign-in configuration, register, login, me)
    - admin.py:    /api/admin     (runtime configuration, user roles)
    - health.py:   /health

Routes stay thin: read the request, resolve the caller through a dependency,
call a service, return its response model. Rules live in the services.
"""
