import asyncio
import inspect
import typing

from .configured_logger import logger

T = typing.TypeVar('T')

Predicate = typing.Callable[[], typing.Union[T, typing.Awaitable[T]]]


class PollTimeoutError(TimeoutError):
    pass


async def poll_until(predicate: Predicate,
                     *,
                     interval: float,
                     timeout: typing.Optional[float] = None,
                     description: str = 'condition') -> T:
    """Calls `predicate` every `interval` seconds until it returns a truthy value.

    The predicate may be a plain function or a coroutine function.  Its first
    truthy result is returned.  Exceptions raised by the predicate propagate.

    Args:
        predicate: Function queried for the condition.
        interval: Delay in seconds between two queries.
        timeout: Overall deadline in seconds.  With None the function keeps
            polling for as long as it takes and relies on the test runner to
            give up.
        description: Used in log and error messages.
    Raises:
        PollTimeoutError: If `timeout` seconds pass without the condition
            being met.
    """
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    attempts = 0
    while True:
        value = predicate()
        if inspect.isawaitable(value):
            value = await value
        attempts += 1
        if value:
            return value
        if deadline is not None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise PollTimeoutError(
                    f'Timed out waiting for {description} after {timeout} '
                    f'seconds ({attempts} attempts)')
            await asyncio.sleep(min(interval, remaining))
        else:
            await asyncio.sleep(interval)
        if attempts % 20 == 0:
            logger.debug(f'Still waiting for {description} '
                         f'({attempts} attempts)')
