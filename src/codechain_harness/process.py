import asyncio
import logging
import signal
import typing

from .configured_logger import logger as default_logger
from .readiness import MarkerReadinessDetector, ReadinessDetector

# Trace level node logs can have very long lines.
STDERR_LINE_LIMIT = 1 << 20


class ProcessExitedError(Exception):
    """The node process terminated before it reported readiness."""

    def __init__(self, returncode: typing.Optional[int]) -> None:
        self.returncode = returncode
        super().__init__(f'CodeChain exited with {describe_exit(returncode)}')


class ReadyTimeoutError(TimeoutError):
    pass


def describe_exit(returncode: typing.Optional[int]) -> str:
    if returncode is not None and returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f'signal {name}'
    return f'code {returncode}'


class NodeProcess:
    """Owns one spawned node process.

    The process' stderr is read line by line by a background task.  Each line
    is handed to a `ReadinessDetector` until the detector accepts one; lines
    following that one are appended to `log_path` if it is set.  Lines up to
    and including the accepted one are dropped.

    Usage:
        proc = NodeProcess(['codechain', '--chain', 'solo'], cwd=root, env=env)
        await proc.start()
        ...
        await proc.stop()
    """

    def __init__(self,
                 command: typing.Sequence[str],
                 *,
                 cwd: typing.Optional[str] = None,
                 env: typing.Optional[typing.Dict[str, str]] = None,
                 log_path: typing.Optional[str] = None,
                 detector: typing.Optional[ReadinessDetector] = None,
                 name: str = 'CodeChain',
                 logger: logging.Logger = default_logger) -> None:
        self.command = [str(arg) for arg in command]
        self.cwd = cwd
        self.env = env
        self.log_path = log_path
        self.detector = detector or MarkerReadinessDetector()
        self.name = name
        self.logger = logger
        self._process: typing.Optional[asyncio.subprocess.Process] = None
        self._reader: typing.Optional[asyncio.Task] = None
        self._ready: typing.Optional[asyncio.Future] = None
        self._log = None

    @property
    def pid(self) -> typing.Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> typing.Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def ready(self) -> bool:
        return self._ready is not None and self._ready.done()

    async def start(self, ready_timeout: typing.Optional[float] = None) -> None:
        """Spawns the process and waits until it reports readiness.

        Raises:
            OSError: If the process could not be spawned.
            ProcessExitedError: If the process terminated before readiness.
            ReadyTimeoutError: If `ready_timeout` seconds passed without
                readiness.  The process is killed in that case.
        """
        if self._process is not None:
            raise RuntimeError(f'{self.name} has already been started')

        self.logger.debug(f'Spawning {self.name}: {" ".join(self.command)}')
        self._ready = asyncio.get_running_loop().create_future()
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=self.env,
            limit=STDERR_LINE_LIMIT)
        self._reader = asyncio.create_task(self._watch_stderr())

        done, _ = await asyncio.wait({self._ready, self._reader},
                                     timeout=ready_timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
        if self._ready in done:
            self.logger.info(f'{self.name} is ready (pid {self.pid})')
            return
        if self._reader in done:
            # Re-raises a failure of the reader itself.
            self._reader.result()
            raise ProcessExitedError(self._process.returncode)

        self.logger.error(
            f'{self.name} not ready after {ready_timeout} seconds, killing it')
        await self.stop(signal.SIGKILL)
        raise ReadyTimeoutError(
            f'{self.name} not ready after {ready_timeout} seconds')

    async def _watch_stderr(self) -> int:
        ready = False
        try:
            while True:
                raw = await self._process.stderr.readline()
                if not raw:
                    break
                line = raw.decode('utf-8', 'replace').rstrip('\r\n')
                if ready:
                    self._append_log(line)
                elif self.detector.feed(line):
                    ready = True
                    self._ready.set_result(None)
        finally:
            if self._log is not None:
                self._log.close()
                self._log = None
        return await self._process.wait()

    def _append_log(self, line: str) -> None:
        if self.log_path is None:
            return
        if self._log is None:
            self._log = open(self.log_path, 'a', encoding='utf-8')
        self._log.write(line + '\n')
        self._log.flush()

    async def stop(self, sig: signal.Signals = signal.SIGTERM
                  ) -> typing.Optional[int]:
        """Signals the process and waits for it to exit.

        Never raises because of how the process exited: a non-zero exit code
        or a signal other than the one sent is logged as an error.  Returns
        the exit code, or None if the process was never started.
        """
        if self._process is None:
            return None
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            # Already gone.
            pass
        returncode = await self._process.wait()
        if self._reader is not None:
            try:
                await self._reader
            except Exception:
                self.logger.exception(f'Reading {self.name} stderr failed')
        if returncode not in (0, -sig):
            self.logger.error(
                f'{self.name} exited with {describe_exit(returncode)}')
        else:
            self.logger.info(f'{self.name} stopped')
        return returncode
