"""FastAPI dependency: require_trigger_key.

Operator endpoints (manual runs, force-complete) are called by the scheduler,
cron jobs or an admin console, not by end users. They share one secret:

    from src.pd_gateway.auth.dependencies import require_trigger_key

    @router.post("/runs", dependencies=[Depends(require_trigger_key)])
    async def trigger_run(...):
        ...
"""

import hmac

from fastapi import Header

from config.settings import settings
from src.pd_common.errors import InvalidTriggerKeyError

TRIGGER_KEY_HEADER = "X-Trigger-Key"


async def require_trigger_key(
    x_trigger_key: str | None = Header(None, alias=TRIGGER_KEY_HEADER),
) -> None:
    """Raise InvalidTriggerKeyError (401) unless X-Trigger-Key matches TRIGGER_SECRET."""
    if x_trigger_key is None:
        raise InvalidTriggerKeyError()
    # Constant-time comparison
    if not hmac.compare_digest(x_trigger_key.encode(), settings.TRIGGER_SECRET.encode()):
        raise InvalidTriggerKeyError()
