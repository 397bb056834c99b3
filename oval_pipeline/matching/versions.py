"""
RPM epoch:version-release ordering.

Provides parsing, validation and comparison of package versions in the
"[epoch:]version[-release]" form used by RPM-family distributions.

Comparison rules:
- Epoch (absent = 0) is compared numerically first
- Version, then release, are compared with rpmvercmp: each string is
  split into runs of digits and runs of letters, separators are skipped
- Numeric runs compare as integers, alphabetic runs lexically
- A numeric run is newer than an alphabetic run
- "~" sorts before everything, including the end of the string
- When all shared runs are equal, the string with runs left over is newer

The reserved sentinels MAX_VERSION / MIN_VERSION compare above / below
every real version.
"""
import re
from dataclasses import dataclass

from ..errors import MalformedVersionError

MAX_VERSION = "#MAXV#"
MIN_VERSION = "#MINV#"

ALLOWED_SYMBOLS = ".-+~:_"

_SEPARATORS = re.compile(r"^[^A-Za-z0-9~]+")
_DIGITS = re.compile(r"^[0-9]*")
_LETTERS = re.compile(r"^[A-Za-z]*")


@dataclass(frozen=True)
class EVR:
    """Parsed epoch, version and release of a package version."""
    epoch: int
    version: str
    release: str

    def __str__(self) -> str:
        text = self.version
        if self.release:
            text = f"{text}-{self.release}"
        if self.epoch:
            text = f"{self.epoch}:{text}"
        return text


def parse_evr(text: str) -> EVR:
    """
    Parse a version string into its epoch, version and release.

    Args:
        text: Version such as "2:1.0.3-4.el7"

    Returns:
        EVR with epoch defaulted to 0 and release defaulted to ""

    Raises:
        MalformedVersionError: If the string is empty, the epoch is not a
            non-negative integer, the version is empty, or a character
            outside letters, digits and ALLOWED_SYMBOLS appears
    """
    if text is None:
        raise MalformedVersionError("version string is empty", version=text)

    value = text.strip()
    if not value:
        raise MalformedVersionError("version string is empty", version=text)

    epoch = 0
    rest = value
    if ":" in value:
        epoch_text, rest = value.split(":", 1)
        if not epoch_text.isdigit():
            raise MalformedVersionError("epoch in version is not a number", version=text)
        epoch = int(epoch_text)

    if "-" in rest:
        version, release = rest.rsplit("-", 1)
    else:
        version, release = rest, ""

    if not version:
        raise MalformedVersionError("no version", version=text)

    for part, label in ((version, "version"), (release, "release")):
        for char in part:
            if not (char.isascii() and char.isalnum()) and char not in ALLOWED_SYMBOLS:
                raise MalformedVersionError(f"invalid character {char!r} in {label}", version=text)

    return EVR(epoch=epoch, version=version, release=release)


def validate_version(text: str) -> None:
    """Raise MalformedVersionError unless text is a sentinel or a valid EVR."""
    if text is not None and text.strip() in (MAX_VERSION, MIN_VERSION):
        return
    parse_evr(text)


def rpmvercmp(a: str, b: str) -> int:
    """
    Compare two version (or release) strings segment by segment.

    Returns:
        -1 if a is older than b, 0 if equal, 1 if a is newer
    """
    if a == b:
        return 0

    while True:
        a = _SEPARATORS.sub("", a)
        b = _SEPARATORS.sub("", b)

        if a.startswith("~") or b.startswith("~"):
            if not a.startswith("~"):
                return 1
            if not b.startswith("~"):
                return -1
            a, b = a[1:], b[1:]
            continue

        if not a or not b:
            break

        is_num = a[0].isdigit()
        pattern = _DIGITS if is_num else _LETTERS
        seg_a = pattern.match(a).group()
        seg_b = pattern.match(b).group()
        a, b = a[len(seg_a):], b[len(seg_b):]

        # Segments of different types: numeric is always newer
        if not seg_b:
            return 1 if is_num else -1

        if is_num:
            seg_a = seg_a.lstrip("0")
            seg_b = seg_b.lstrip("0")
            if len(seg_a) != len(seg_b):
                return 1 if len(seg_a) > len(seg_b) else -1

        if seg_a != seg_b:
            return 1 if seg_a > seg_b else -1

    if not a and not b:
        return 0
    return -1 if not a else 1


def _sentinel_rank(text: str) -> int:
    value = text.strip()
    if value == MAX_VERSION:
        return 1
    if value == MIN_VERSION:
        return -1
    return 0


def compare_versions(a: str, b: str) -> int:
    """
    Order two full version strings.

    Returns:
        -1 if a < b, 0 if a == b, 1 if a > b

    Raises:
        MalformedVersionError: If either side is not a valid version
    """
    rank_a = _sentinel_rank(a or "")
    rank_b = _sentinel_rank(b or "")
    if rank_a or rank_b:
        if rank_a == rank_b:
            return 0
        return 1 if rank_a > rank_b else -1

    evr_a = parse_evr(a)
    evr_b = parse_evr(b)

    if evr_a.epoch != evr_b.epoch:
        return 1 if evr_a.epoch > evr_b.epoch else -1

    result = rpmvercmp(evr_a.version, evr_b.version)
    if result != 0:
        return result
    return rpmvercmp(evr_a.release, evr_b.release)


def is_older(installed: str, fixed: str) -> bool:
    """True when the installed version is strictly older than the fixed one."""
    return compare_versions(installed, fixed) < 0
