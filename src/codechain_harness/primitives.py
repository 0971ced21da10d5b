import typing


class H256:
    """A 32-byte hash as returned by the node, e.g. a parcel hash.

    Accepts `0x`-prefixed or bare hex strings of exactly 64 digits, raw bytes
    of length 32 and other `H256` instances.  Anything else raises
    `ValueError`.
    """

    __slots__ = ('value',)

    def __init__(self, value: typing.Union[str, bytes, 'H256']) -> None:
        if isinstance(value, H256):
            self.value = value.value
            return
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 32:
                raise ValueError(f'Expected 32 bytes, got {len(value)}')
            self.value = bytes(value)
            return
        if not isinstance(value, str):
            raise ValueError(f'Expected a hex string, got {value!r}')
        digits = value[2:] if value.startswith('0x') else value
        if len(digits) != 64:
            raise ValueError(
                f'Expected 64 hex digits, got {len(digits)}: {value!r}')
        try:
            self.value = bytes.fromhex(digits)
        except ValueError:
            raise ValueError(f'Invalid hex string: {value!r}') from None

    def to_hex(self) -> str:
        return '0x' + self.value.hex()

    def __str__(self) -> str:
        return self.to_hex()

    def __repr__(self) -> str:
        return f'H256({self.to_hex()!r})'

    def __eq__(self, rhs) -> bool:
        if isinstance(rhs, str):
            try:
                rhs = H256(rhs)
            except ValueError:
                return False
        return isinstance(rhs, H256) and self.value == rhs.value

    def __hash__(self) -> int:
        return hash(self.value)


def to_hex(value: typing.Any) -> str:
    """Formats a hash-like value the way the node expects it in parameters."""
    if isinstance(value, H256):
        return value.to_hex()
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    return str(value)


class Invoice(typing.NamedTuple):
    """Outcome of a parcel or transaction as reported by the node."""
    success: bool
    error: typing.Optional[typing.Any] = None

    @classmethod
    def from_json(cls, j: typing.Dict[str, typing.Any]) -> 'Invoice':
        if not isinstance(j, dict):
            raise ValueError(f'Expected an invoice object, got {j!r}')
        return cls(success=bool(j.get('success')), error=j.get('error'))


def parse_invoice(result) -> typing.Optional[Invoice]:
    if result is None:
        return None
    if isinstance(result, Invoice):
        return result
    return Invoice.from_json(result)


def parse_u256(value) -> int:
    """Node returns big numbers as hex strings; small ones may come as ints."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith('0x') else int(value)
    raise ValueError(f'Expected a number, got {value!r}')
