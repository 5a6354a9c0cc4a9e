"""
api/limiter.py -- The one slowapi Limiter shared by every route module.

api/main.py mounts it as middleware; api/routes/v1/auth.py decorates the
login and registration routes with @limiter.limit(). Both must see the same
instance or the counters would never be shared. Tests switch it off with
``limiter.enabled = False``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
