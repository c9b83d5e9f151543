"""Semantic versions and npm-style ranges. Pure functions, no I/O.

Plugins declare which svrx versions they support with npm range syntax
(``^1.0.0``, ``>=0.0.1 <1.0.0``, ``0.9.x``, ``1.0.0 - 2.x`` ...). Every range
is desugared into comparator sets (OR of ANDs) so that matching reduces to
a handful of ordered comparisons.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, NamedTuple, Optional, Union

if TYPE_CHECKING:
    from svrx.package_manager.manifest import VersionEntry


class InvalidRange(ValueError):
    """Range text cannot be parsed."""


_IDENT = r"[0-9A-Za-z-]+"

_SEMVER_RE = re.compile(
    r"^\s*[v=]*\s*"
    r"(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    rf"(?:-({_IDENT}(?:\.{_IDENT})*))?"
    rf"(?:\+({_IDENT}(?:\.{_IDENT})*))?\s*$"
)

# Partial versions used inside ranges: "1", "1.2", "1.x", "1.2.*", "1.2.3-beta"
_PARTIAL_RE = re.compile(
    r"^[v=]*"
    r"(\d+|[xX*])"
    r"(?:\.(\d+|[xX*])"
    r"(?:\.(\d+|[xX*])"
    rf"(?:-?({_IDENT}(?:\.{_IDENT})*))?"
    rf"(?:\+({_IDENT}(?:\.{_IDENT})*))?"
    r")?)?$"
)

_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|~>|~|\^)\s+")
_PRIMITIVE_RE = re.compile(r"^(<=|>=|<|>|=)?(.*)$")


# ─── SemVer ──────────────────────────────────────────────────────────────────


def _prerelease_key(prerelease: tuple) -> tuple:
    # A release sorts after every pre-release of the same MAJOR.MINOR.PATCH.
    if not prerelease:
        return (1,)
    parts = []
    for ident in prerelease:
        if isinstance(ident, int):
            parts.append((0, ident, ""))
        else:
            parts.append((1, 0, ident))
    return (0,) + tuple(parts)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class SemVer:
    """A parsed semantic version. Build metadata does not affect ordering."""

    major: int
    minor: int
    patch: int
    prerelease: tuple = field(default=())
    build: tuple = field(default=())

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def key(self) -> tuple:
        return (self.major, self.minor, self.patch, _prerelease_key(self.prerelease))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.key == other.key

    def __lt__(self, other: "SemVer") -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.key < other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(str(p) for p in self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


def _split_prerelease(text: Optional[str]) -> tuple:
    if not text:
        return ()
    return tuple(int(p) if p.isdigit() else p for p in text.split("."))


def parse_version(text: Optional[str]) -> Optional[SemVer]:
    """Parse ``MAJOR.MINOR.PATCH[-pre][+build]``. Returns ``None`` if invalid."""
    if not isinstance(text, str):
        return None
    m = _SEMVER_RE.match(text)
    if not m:
        return None
    major, minor, patch, pre, build = m.groups()
    return SemVer(
        int(major),
        int(minor),
        int(patch),
        _split_prerelease(pre),
        tuple(build.split(".")) if build else (),
    )


def compare(a: Union[str, SemVer], b: Union[str, SemVer]) -> int:
    """Return -1, 0 or 1. Raises ``ValueError`` for unparsable input."""
    va = a if isinstance(a, SemVer) else parse_version(a)
    vb = b if isinstance(b, SemVer) else parse_version(b)
    if va is None or vb is None:
        raise ValueError(f"Cannot compare versions '{a}' and '{b}'")
    return (va > vb) - (va < vb)


# ─── Ranges ──────────────────────────────────────────────────────────────────


class Comparator(NamedTuple):
    op: str
    version: SemVer

    def test(self, version: SemVer) -> bool:
        if self.op == "<":
            return version < self.version
        if self.op == "<=":
            return version <= self.version
        if self.op == ">":
            return version > self.version
        if self.op == ">=":
            return version >= self.version
        return version == self.version

    def __str__(self) -> str:
        return f"{'' if self.op == '=' else self.op}{self.version}"


_NOTHING = (Comparator("<", SemVer(0, 0, 0, (0,))),)


def _is_x(part: Optional[str]) -> bool:
    return part is None or part in ("x", "X", "*")


def _parse_partial(text: str, raw: str):
    m = _PARTIAL_RE.match(text)
    if not m:
        raise InvalidRange(f"Invalid version '{text}' in range '{raw}'")
    major, minor, patch, pre, _build = m.groups()
    if pre and (_is_x(major) or _is_x(minor) or _is_x(patch)):
        raise InvalidRange(f"Pre-release on a partial version '{text}' in range '{raw}'")
    return (
        None if _is_x(major) else int(major),
        None if _is_x(minor) else int(minor),
        None if _is_x(patch) else int(patch),
        _split_prerelease(pre),
    )


def _tilde(text: str, raw: str) -> tuple[Comparator, ...]:
    major, minor, patch, pre = _parse_partial(text, raw)
    if major is None:
        return ()
    if minor is None:
        return (Comparator(">=", SemVer(major, 0, 0)), Comparator("<", SemVer(major + 1, 0, 0)))
    if patch is None:
        return (Comparator(">=", SemVer(major, minor, 0)), Comparator("<", SemVer(major, minor + 1, 0)))
    return (
        Comparator(">=", SemVer(major, minor, patch, pre)),
        Comparator("<", SemVer(major, minor + 1, 0)),
    )


def _caret(text: str, raw: str) -> tuple[Comparator, ...]:
    major, minor, patch, pre = _parse_partial(text, raw)
    if major is None:
        return ()
    if minor is None:
        return (Comparator(">=", SemVer(major, 0, 0)), Comparator("<", SemVer(major + 1, 0, 0)))
    if patch is None:
        if major == 0:
            upper = SemVer(0, minor + 1, 0)
        else:
            upper = SemVer(major + 1, 0, 0)
        return (Comparator(">=", SemVer(major, minor, 0)), Comparator("<", upper))
    lower = Comparator(">=", SemVer(major, minor, patch, pre))
    if major == 0 and minor == 0:
        return (lower, Comparator("<", SemVer(0, 0, patch + 1)))
    if major == 0:
        return (lower, Comparator("<", SemVer(0, minor + 1, 0)))
    return (lower, Comparator("<", SemVer(major + 1, 0, 0)))


def _primitive(op: str, text: str, raw: str) -> tuple[Comparator, ...]:
    major, minor, patch, pre = _parse_partial(text, raw)
    if major is None:
        # "<*" and ">*" match nothing; every other form of "*" matches anything
        return _NOTHING if op in ("<", ">") else ()
    if minor is not None and patch is not None:
        return (Comparator(op or "=", SemVer(major, minor, patch, pre)),)

    # X-range with the missing parts filled with zero
    filled = SemVer(major, minor or 0, 0)
    if minor is None:
        bumped = SemVer(major + 1, 0, 0)
    else:
        bumped = SemVer(major, minor + 1, 0)

    if op == ">":
        return (Comparator(">=", bumped),)
    if op == "<=":
        return (Comparator("<", bumped),)
    if op in (">=", "<"):
        return (Comparator(op, filled),)
    return (Comparator(">=", filled), Comparator("<", bumped))


def _hyphen(low: str, high: str, raw: str) -> tuple[Comparator, ...]:
    comparators: list[Comparator] = []

    major, minor, patch, pre = _parse_partial(low, raw)
    if major is not None:
        comparators.append(Comparator(">=", SemVer(major, minor or 0, patch or 0, pre)))

    major, minor, patch, pre = _parse_partial(high, raw)
    if major is None:
        pass
    elif minor is None:
        comparators.append(Comparator("<", SemVer(major + 1, 0, 0)))
    elif patch is None:
        comparators.append(Comparator("<", SemVer(major, minor + 1, 0)))
    else:
        comparators.append(Comparator("<=", SemVer(major, minor, patch, pre)))
    return tuple(comparators)


def _parse_set(text: str, raw: str) -> tuple[Comparator, ...]:
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        return _hyphen(hyphen.group(1), hyphen.group(2), raw)

    comparators: list[Comparator] = []
    for token in _OPERATOR_SPACE_RE.sub(r"\1", text.strip()).split():
        if token.startswith("~>"):
            comparators.extend(_tilde(token[2:], raw))
        elif token.startswith("~"):
            comparators.extend(_tilde(token[1:], raw))
        elif token.startswith("^"):
            comparators.extend(_caret(token[1:], raw))
        else:
            m = _PRIMITIVE_RE.match(token)
            comparators.extend(_primitive(m.group(1) or "", m.group(2), raw))
    return tuple(comparators)


class Range:
    """An npm-style version range, e.g. ``^1.0.0 || >=2.5.0 <3``.

    Raises:
        InvalidRange: *text* is not a valid range.
    """

    def __init__(self, text: str):
        self.raw = text
        self.sets: tuple[tuple[Comparator, ...], ...] = tuple(
            _parse_set(part, text) for part in text.split("||")
        )

    def test(self, version: Union[str, SemVer]) -> bool:
        parsed = version if isinstance(version, SemVer) else parse_version(version)
        if parsed is None:
            return False
        return any(_set_matches(s, parsed) for s in self.sets)

    def __contains__(self, version: Union[str, SemVer]) -> bool:
        return self.test(version)

    def __str__(self) -> str:
        return " || ".join(" ".join(str(c) for c in s) or "*" for s in self.sets)

    def __repr__(self) -> str:
        return f"Range({self.raw!r})"


def _set_matches(comparators: tuple[Comparator, ...], version: SemVer) -> bool:
    if not all(c.test(version) for c in comparators):
        return False
    if not version.prerelease:
        return True
    # Pre-releases only match when the range opts in on the same release tuple
    return any(
        c.version.prerelease and c.version.release == version.release
        for c in comparators
    )


def satisfies(version: Union[str, SemVer], range_text: Optional[str]) -> bool:
    """True if *version* is inside *range_text*.

    A missing or blank range places no constraint. Unparsable input never
    raises; it simply does not satisfy.
    """
    parsed = version if isinstance(version, SemVer) else parse_version(version)
    if parsed is None:
        return False
    if range_text is None or not str(range_text).strip():
        return True
    try:
        return Range(str(range_text)).test(parsed)
    except InvalidRange:
        return False


def valid_range(range_text: str) -> bool:
    try:
        Range(range_text)
    except InvalidRange:
        return False
    return True


# ─── Selection ───────────────────────────────────────────────────────────────


def sort_entries(entries: Iterable["VersionEntry"]) -> list["VersionEntry"]:
    """De-duplicate by version (first seen wins), drop unparsable, sort descending."""
    seen: dict[SemVer, "VersionEntry"] = {}
    for entry in entries:
        parsed = parse_version(entry.version)
        if parsed is None or parsed in seen:
            continue
        seen[parsed] = entry
    return [seen[v] for v in sorted(seen, reverse=True)]


def best_fit(candidates: Iterable["VersionEntry"], core_version: str) -> Optional[str]:
    """Highest candidate version whose svrx range contains *core_version*.

    Returns ``None`` when nothing matches. If the same version appears more
    than once, the range of the last occurrence is used.
    """
    latest: dict[SemVer, "VersionEntry"] = {}
    for entry in candidates:
        parsed = parse_version(entry.version)
        if parsed is not None:
            latest[parsed] = entry

    for parsed in sorted(latest, reverse=True):
        entry = latest[parsed]
        if satisfies(core_version, entry.svrx_range):
            return entry.version
    return None


def max_satisfying(versions: Iterable[str], range_text: str) -> Optional[str]:
    """Highest version in *versions* that lies inside *range_text*."""
    rng = Range(range_text)
    best: Optional[SemVer] = None
    best_text: Optional[str] = None
    for text in versions:
        parsed = parse_version(text)
        if parsed is None or not rng.test(parsed):
            continue
        if best is None or parsed > best:
            best, best_text = parsed, text
    return best_text
