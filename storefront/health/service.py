import logging
from typing import Any, Dict

import httpx

from storefront.config import COMMERCE_API_URL

logger = logging.getLogger(__name__)

async def commerce_health_info(http: httpx.AsyncClient) -> Dict[str, Any]:
    """
    Sonde la Commerce API (GET /actuator/health).
    Retour: {"ok": bool, "url": ..., "status": code HTTP | None, "error"?: message}
    """
    url = f"{COMMERCE_API_URL}/actuator/health"
    try:
        r = await http.get(url)
    except httpx.RequestError as e:
        logger.warning("health.commerce unreachable url=%s error=%s", url, e)
        return {"ok": False, "url": COMMERCE_API_URL, "status": None, "error": str(e)}
    return {"ok": r.status_code < 400, "url": COMMERCE_API_URL, "status": r.status_code}
