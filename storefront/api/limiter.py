"""
Rate limiting for endpoints reachable without a session.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Keyed by client IP; storage is per process
limiter = Limiter(key_func=get_remote_address)
