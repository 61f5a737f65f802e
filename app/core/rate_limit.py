"""Rate limiting for the batch trigger endpoints (slowapi)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Keyed on client address; triggers fan out into many provider calls
limiter = Limiter(key_func=get_remote_address)

DOMAIN_TRIGGER_LIMIT = "10/minute"
SWEEP_TRIGGER_LIMIT = "2/minute"
