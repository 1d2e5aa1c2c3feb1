import logging

from config.settings import settings
from tools.avr_functions import post_ami

logger = logging.getLogger("app")


async def handler(args: dict) -> dict:
    logger.info(f"Transferring call to another agent with args: {args}")
    return await post_ami("/transfer", {
        "uuid": args[settings.tools.session_arg_key],
        "exten": args.get("transfer_extension") or 600,
        "context": args.get("transfer_context") or "demo",
        "priority": args.get("transfer_priority") or 1,
    })
