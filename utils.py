import inspect
from typing import Any, Callable

from llm import BACKENDS


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def lazy_external_import(module_name: str, class_name: str) -> Callable[..., Any]:
    """Lazily import a class from an external module based on the package of the caller."""
    # Get the caller's module and package
    caller_frame = inspect.currentframe().f_back
    module = inspect.getmodule(caller_frame)
    package = module.__package__ if module else None

    def import_class(*args: Any, **kwargs: Any):
        import importlib

        module = importlib.import_module(module_name, package=package)
        cls = getattr(module, class_name)
        return cls(*args, **kwargs)

    return import_class


def get_backend_class(backend_name: str) -> Callable[..., Any]:
    # Direct imports for default backend implementations
    import_path = BACKENDS[backend_name]
    backend_class = lazy_external_import(import_path, backend_name)
    return backend_class
