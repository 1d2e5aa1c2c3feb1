import logging

from config.settings import settings
from tools.avr_functions import post_ami

logger = logging.getLogger("app")


async def handler(args: dict) -> dict:
    logger.info(f"Hangup call with args: {args}")
    return await post_ami("/hangup", {"uuid": args[settings.tools.session_arg_key]})
