"""Built-in call-control tools for the voice gateway (AMI bridge)."""

import httpx

from config.settings import settings


async def post_ami(path: str, payload: dict) -> dict:
    cfg = settings.tools
    async with httpx.AsyncClient(timeout=cfg.timeout_seconds) as client:
        resp = await client.post(f"{cfg.ami_url.rstrip('/')}{path}", json=payload)
        resp.raise_for_status()
    return {"data": resp.json() if resp.content else None}
