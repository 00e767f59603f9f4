import logging

import httpx

from stepwise.config import settings

logger = logging.getLogger("activity_service")


async def log_activity(user_id: int, action: str, related_object_type: str, related_object_id: int,
                       transport: httpx.AsyncBaseTransport | None = None) -> bool:
    """Post an entry to the activity service. Failures are logged and ignored."""
    if not settings.ACTIVITY_SERVICE_URL:
        return False

    log_payload = {
        "user_id": user_id,
        "action": action,
        "related_object_type": related_object_type,
        "related_object_id": related_object_id,
    }
    async with httpx.AsyncClient(transport=transport, timeout=5.0) as client:
        try:
            res = await client.post(f"{settings.ACTIVITY_SERVICE_URL}/activity/logs", json=log_payload)
            res.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to post activity log: {e}")
            return False
    logger.info(f"Activity log created for user {user_id}: {action}")
    return True
