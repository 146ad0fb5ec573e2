"""Per-client rate limiting with slowapi, shared by main.py and the routers."""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
