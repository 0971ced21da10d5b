import json
import os
import pathlib
import typing

from .configured_logger import logger

# Chain presets understood by `codechain --chain`.  Anything else is taken to
# be a path to a custom chain specification file.
CHAIN_PRESETS = (
    'solo',
    'simple_poa',
    'tendermint',
    'cuckoo',
    'blake_pow',
    'husky',
)
DEFAULT_CHAIN = 'solo'

DEFAULT_LOG_LEVEL = 'trace,mio=warn,tokio=warn,hyper=warn'

CONFIG_ENV_VAR = 'CODECHAIN_HARNESS_CONFIG'
ROOT_ENV_VAR = 'CODECHAIN_ROOT'


def get_project_root() -> str:
    return os.environ.get(ROOT_ENV_VAR, os.getcwd())


DEFAULT_CONFIG = {
    'project_root': None,
    'binary_name': 'codechain',
    # Explicit path to the node binary; overrides project_root/binary_name.
    'binary': None,
    'release': False,
    'log_level': DEFAULT_LOG_LEVEL,
    'extra_env': {},
    'rpc_timeout': 30,
    'invoice_timeout': 300,
    # None keeps waiting helpers unbounded.
    'poll_timeout': None,
    'ready_timeout': None,
}


def load_config(overrides: typing.Optional[typing.Dict[str, typing.Any]] = None):
    """Builds the harness configuration.

    Starts from `DEFAULT_CONFIG`, applies the JSON file named by the
    `CODECHAIN_HARNESS_CONFIG` environment variable if any, and finally the
    given overrides.  Unknown keys are rejected.
    """
    config = dict(DEFAULT_CONFIG)

    config_file = os.environ.get(CONFIG_ENV_VAR, '')
    if config_file:
        try:
            with open(config_file) as f:
                _apply(config, json.load(f))
                logger.info(f"Load config from {config_file}, config {config}")
        except FileNotFoundError:
            logger.info(
                f"Failed to load config file, use default config {config}")
    if overrides:
        _apply(config, overrides)

    if not config['project_root']:
        config['project_root'] = get_project_root()
    return config


def _apply(config, changes):
    for k, v in changes.items():
        if k not in DEFAULT_CONFIG:
            raise ValueError(f'Unknown configuration option: {k}')
        config[k] = v


def get_binary_path(config) -> str:
    if config.get('binary'):
        return str(config['binary'])
    build = 'release' if config.get('release') else 'debug'
    root = pathlib.Path(config['project_root'])
    return str(root / 'target' / build / config['binary_name'])


def is_chain_preset(chain: str) -> bool:
    return chain in CHAIN_PRESETS
