import importlib
import importlib.util
import logging
import os
import pkgutil
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Tuple

from errors import HandlerNotFound

ToolHandler = Callable[[Dict[str, Any]], Any]

logger = logging.getLogger("app")


class ToolSource(ABC):
    """A place tool handler modules are loaded from.

    A module contributes one tool named after the module; it must expose a
    module-level ``handler`` callable taking the argument dict and returning
    ``{"data": ...}`` (or an awaitable of it).
    """

    name: str

    @abstractmethod
    def discover(self) -> List[Tuple[str, ToolHandler]]:
        """Return (tool name, handler) pairs"""


def _handler_of(module: Any, tool_name: str) -> ToolHandler:
    handler = getattr(module, "handler", None)
    if not callable(handler):
        raise AttributeError(f"module for tool {tool_name!r} has no callable 'handler'")
    return handler


class PackageToolSource(ToolSource):
    def __init__(self, package: str, name: str = None):
        self.package = package
        self.name = name or package

    def discover(self) -> List[Tuple[str, ToolHandler]]:
        pkg = importlib.import_module(self.package)
        found = []
        for info in pkgutil.iter_modules(pkg.__path__):
            if info.name.startswith("_"):
                continue
            try:
                module = importlib.import_module(f"{self.package}.{info.name}")
                found.append((info.name, _handler_of(module, info.name)))
            except Exception as e:
                logger.error(f"Skipping tool {info.name} from {self.name}: {e}")
        return found


class DirectoryToolSource(ToolSource):
    def __init__(self, path: str, name: str = None):
        self.path = path
        self.name = name or os.path.basename(os.path.normpath(path))

    def discover(self) -> List[Tuple[str, ToolHandler]]:
        if not os.path.isdir(self.path):
            logger.info(f"Tool directory {self.path} does not exist; no {self.name} tools loaded")
            return []
        found = []
        for filename in sorted(os.listdir(self.path)):
            tool_name, ext = os.path.splitext(filename)
            if ext != ".py" or tool_name.startswith("_"):
                continue
            try:
                spec = importlib.util.spec_from_file_location(
                    f"_tools_{self.name}_{tool_name}", os.path.join(self.path, filename))
                module = importlib.util.module_from_spec(spec)
                spec.loader.exec_module(module)
                found.append((tool_name, _handler_of(module, tool_name)))
            except Exception as e:
                logger.error(f"Skipping tool {tool_name} from {self.name}: {e}")
        return found


class ToolRegistry:
    """Function name -> handler, filled from sources in priority order."""

    def __init__(self):
        self._handlers: Dict[str, ToolHandler] = {}
        self._origins: Dict[str, str] = {}

    @classmethod
    def from_sources(cls, sources: Iterable[ToolSource]) -> "ToolRegistry":
        registry = cls()
        for source in sources:
            for tool_name, handler in source.discover():
                registry.register(tool_name, handler, source.name)
        logger.info(f"Loaded tools: {', '.join(registry.describe()) or 'none'}")
        return registry

    def register(self, tool_name: str, handler: ToolHandler, origin: str = "manual") -> bool:
        # first match wins; later sources never override
        if tool_name in self._handlers:
            logger.warning(f"Tool {tool_name} from {origin} shadowed by {self._origins[tool_name]}")
            return False
        self._handlers[tool_name] = handler
        self._origins[tool_name] = origin
        return True

    def resolve(self, tool_name: str) -> ToolHandler:
        try:
            return self._handlers[tool_name]
        except KeyError:
            raise HandlerNotFound("Function not found.") from None

    def origin(self, tool_name: str) -> str:
        return self._origins[tool_name]

    def describe(self) -> List[str]:
        return [f"{name} ({self._origins[name]})" for name in sorted(self._handlers)]

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
