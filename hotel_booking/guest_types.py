import logging
import httpx

from .config import settings
from .models import GuestType

logger = logging.getLogger("booking_service")


async def resolve_guest_type(user_id: int) -> GuestType:
    """
    Asks the membership service which booking window applies to a user.
    Unknown users and an unreachable service both resolve to REGULAR, the
    most restrictive window.
    """
    url = f"{settings.MEMBERSHIP_SERVICE_URL}/members/{user_id}/guest-type"
    try:
        async with httpx.AsyncClient(timeout=settings.MEMBERSHIP_TIMEOUT_SECONDS) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        logger.warning(f"Membership service unreachable for user {user_id}: {e}. Using REGULAR.")
        return GuestType.REGULAR

    if response.status_code == 404:
        return GuestType.REGULAR
    if response.status_code != 200:
        logger.warning(
            f"Membership service answered {response.status_code} for user {user_id}. Using REGULAR."
        )
        return GuestType.REGULAR

    try:
        raw = response.json().get("guest_type", GuestType.REGULAR.value)
    except (ValueError, AttributeError) as e:
        logger.warning(f"Unreadable membership answer for user {user_id}: {e}. Using REGULAR.")
        return GuestType.REGULAR
    try:
        return GuestType(str(raw).upper())
    except ValueError:
        logger.warning(f"Unknown guest type {raw!r} for user {user_id}. Using REGULAR.")
        return GuestType.REGULAR
