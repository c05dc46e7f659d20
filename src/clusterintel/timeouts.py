"""Run collaborator calls under a deadline."""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Any, Callable, TypeVar

from .errors import CollaboratorTimeoutError

T = TypeVar("T")


def call_with_timeout(fn: Callable[..., T], timeout: float | None, *args: Any, **kwargs: Any) -> T:
    """Call ``fn`` and give up after ``timeout`` seconds.

    ``None`` or ``0`` means no deadline. The worker thread is not joined on
    timeout, so a hung call cannot block the caller.
    """
    if not timeout:
        return fn(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as e:
        name = getattr(fn, "__qualname__", repr(fn))
        raise CollaboratorTimeoutError(f"{name} timed out after {timeout}s") from e
    finally:
        executor.shutdown(wait=False)
