"""
SnipSafe Backend — Middleware Package
=======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → [CORS] → Route

    - Rate limiting runs first so rejected requests do no other work
    - The request id is set before the access log line is written
    - Responses pass back through the same chain in reverse
"""
