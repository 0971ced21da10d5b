import logging
import os
import sys
import uuid

from typing import Optional

# LogLevel type since logging lib doesn't define its own enum/type for it
LogLevel = int

LOG_LEVEL_ENV_VAR = 'CODECHAIN_HARNESS_LOG_LEVEL'


def level_from_env(default: LogLevel = logging.INFO) -> LogLevel:
    """Reads the harness log level name (e.g. `debug`) from the environment."""
    name = os.environ.get(LOG_LEVEL_ENV_VAR, '')
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f'Unknown log level in {LOG_LEVEL_ENV_VAR}: {name}')
    return level


def new_logger(
    name: Optional[str] = None,
    level: Optional[LogLevel] = None,
    outfile: Optional[str] = None,
    stderr: Optional[bool] = None,
) -> logging.Logger:
    """
    Create a new configured logger.

    :param name: The name of the logger. A unique one is generated when omitted.
    :param level: The logging level. Defaults to the level named by
        CODECHAIN_HARNESS_LOG_LEVEL, or INFO.
    :param outfile: When set, log to this file instead of stdout.
    :param stderr: If outfile is not set and stderr is True, log to stderr
        instead of stdout.
    :return: The configured logger.
    """
    if name is None:
        name = f"logger_{uuid.uuid1()}"
    if level is None:
        level = level_from_env()

    log = logging.getLogger(name)
    log.setLevel(level)
    fmt = logging.Formatter('[%(asctime)s] %(name)s %(levelname)s: %(message)s',
                            '%Y-%m-%d %H:%M:%S')

    if outfile is not None:
        handler = logging.FileHandler(outfile)
    elif stderr:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(fmt)

    log.addHandler(handler)
    log.propagate = False

    return log


def node_logger(node_id: int) -> logging.Logger:
    """Child of the harness logger tagged with the node id."""
    return logger.getChild(f'node{node_id}')


logger = new_logger("codechain")
