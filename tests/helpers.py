import json
from typing import Any, Dict, List

from streaming.framer import FrameChannel


def parse_frames(body: str) -> List[Dict[str, Any]]:
    """Split a body of concatenated JSON objects."""
    decoder = json.JSONDecoder()
    frames, pos = [], 0
    while pos < len(body):
        frame, pos = decoder.raw_decode(body, pos)
        frames.append(frame)
    return frames


async def collect(channel: FrameChannel) -> List[Dict[str, Any]]:
    """Frames written to an already closed channel."""
    return [json.loads(chunk) async for chunk in channel]
