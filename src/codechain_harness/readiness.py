import re

READY_MARKER = 'Initialization complete'

# Pattern matching ANSI escape codes starting with a Control Sequence
# Introducer (CSI) sequence.  Most notably Select Graphic Rendition (SGR)
# such as ‘\x1b[35;41m’.
_CSI_RE = re.compile('\x1b\\[[^\x40-\x7E]*[\x40-\x7E]')


def strip_ansi(line: str) -> str:
    return _CSI_RE.sub('', line)


class ReadinessDetector:
    """Decides from the node's diagnostic output when the node is ready.

    The supervisor feeds every stderr line to `feed` until it returns True
    once.  After that the detector is not consulted again.
    """

    def feed(self, line: str) -> bool:
        raise NotImplementedError()


class MarkerReadinessDetector(ReadinessDetector):
    """Ready as soon as a line contains the marker phrase.

    Matching is done on the line with ANSI colour codes removed, as the node
    colours its log output when it thinks it writes to a terminal.
    """

    def __init__(self, marker: str = READY_MARKER) -> None:
        self.marker = marker

    def feed(self, line: str) -> bool:
        return self.marker in strip_ansi(line)
