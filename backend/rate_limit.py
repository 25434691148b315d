"""Shared slowapi limiter so routers can rate limit their own endpoints.

Upload and posting endpoints: 10 requests/minute (parse + write heavy).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

UPLOAD_RATE_LIMIT = "10/minute"
POSTING_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address)
