import datetime
import pathlib
import tempfile
import typing


class Workspace(typing.NamedTuple):
    """Per-node directories and files on the local file system.

    Attributes:
        db_path: Freshly created database directory, unique to the node.
        keys_path: Freshly created key store directory, unique to the node.
        log_file: Name of the node log file, `<timestamp>.<node id>.log`.
        log_path: Full path of the log file.  The file is created lazily when
            the first line gets written to it.
    """
    db_path: str
    keys_path: str
    log_file: str
    log_path: str

    @property
    def local_key_store_path(self) -> str:
        return str(pathlib.Path(self.keys_path) / 'keystore.db')


def log_timestamp(now: typing.Optional[datetime.datetime] = None) -> str:
    """ISO-8601 UTC timestamp with separators replaced so it is file name safe.

    For example `2018-08-01T12:34:56.789Z` becomes `2018_08_01T12_34_56_789Z`.
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    stamp = now.strftime('%Y-%m-%dT%H:%M:%S.') + f'{now.microsecond // 1000:03d}Z'
    for c in '-:.':
        stamp = stamp.replace(c, '_')
    return stamp


def base_dirs(project_root) -> typing.Tuple[pathlib.Path, pathlib.Path,
                                             pathlib.Path]:
    root = pathlib.Path(project_root)
    return root / 'db', root / 'keys', root / 'test' / 'log'


def provision_workspace(project_root,
                        node_id: int,
                        now: typing.Optional[datetime.datetime] = None
                       ) -> Workspace:
    """Creates the directories a node needs.

    The three base directories are created if missing, which is safe to do
    from concurrent callers.  Database and key store directories are created
    with `mkdtemp` so they never collide with the ones of any other node.
    `OSError` raised while creating directories is propagated.
    """
    db_root, keys_root, log_root = base_dirs(project_root)
    for d in (db_root, keys_root, log_root):
        d.mkdir(parents=True, exist_ok=True)

    db_path = tempfile.mkdtemp(dir=db_root)
    keys_path = tempfile.mkdtemp(dir=keys_root)
    log_file = f'{log_timestamp(now)}.{node_id}.log'
    return Workspace(db_path=db_path,
                     keys_path=keys_path,
                     log_file=log_file,
                     log_path=str(log_root / log_file))
