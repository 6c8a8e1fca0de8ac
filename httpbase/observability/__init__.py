"""Request observability for httpbase.

structlog JSON logging, the access-log and recovery middleware, and an in-memory
metrics snapshot served from /debug/vars.
"""

