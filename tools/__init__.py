from typing import List

from config.settings import settings
from tools.registry import DirectoryToolSource, PackageToolSource, ToolRegistry, ToolSource

# built-in telephony handlers take precedence over user-provided ones
INTERNAL_TOOLS_PACKAGE = "tools.avr_functions"


def default_sources(functions_dir: str = None) -> List[ToolSource]:
    return [
        PackageToolSource(INTERNAL_TOOLS_PACKAGE, name="avr_functions"),
        DirectoryToolSource(functions_dir or settings.tools.functions_dir, name="functions"),
    ]


def build_registry(functions_dir: str = None) -> ToolRegistry:
    return ToolRegistry.from_sources(default_sources(functions_dir))
