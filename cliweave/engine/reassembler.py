"""Stream line reassembly.

Turns arbitrary stdout byte chunks into logical protocol units:
single lines for line-oriented dialects, or complete multi-line
JSON objects for dialects that pretty-print their events. Output
is identical however the bytes were split across reads.
"""
from __future__ import annotations

import codecs
import json
import logging
import re
from typing import AsyncIterator, Iterable, Protocol

logger = logging.getLogger(__name__)


class NoiseFilter:
    """Per-provider deny list for diagnostic banner lines.

    A line is noise when its stripped text starts with one of
    ``prefixes``, equals one of ``exact``, matches one of ``patterns``,
    or is shorter than ``min_length``.
    """

    def __init__(
        self,
        prefixes: Iterable[str] = (),
        *,
        exact: Iterable[str] = (),
        patterns: Iterable[str] = (),
        min_length: int = 0,
    ) -> None:
        self.prefixes = tuple(prefixes)
        self.exact = frozenset(exact)
        self.patterns = tuple(re.compile(p) for p in patterns)
        self.min_length = min_length

    def is_noise(self, line: str) -> bool:
        stripped = line.strip()
        if len(stripped) < self.min_length:
            return True
        if stripped in self.exact:
            return True
        if self.prefixes and stripped.startswith(self.prefixes):
            return True
        return any(p.search(line) for p in self.patterns)


NO_NOISE = NoiseFilter()


def is_json_complete(text: str) -> bool:
    """True when every ``{`` outside string literals has been closed."""
    depth = 0
    in_string = False
    escape = False
    for ch in text:
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if not in_string:
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
    return depth == 0 and "{" in text


class Reassembler(Protocol):
    def feed(self, chunk: bytes) -> list[str]: ...

    def flush(self) -> list[str]: ...


class _LineSplitter:
    """Incremental UTF-8 decoding plus newline splitting."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def split(self, chunk: bytes) -> list[str]:
        self._partial += self._decoder.decode(chunk)
        if "\n" not in self._partial:
            return []
        *lines, self._partial = self._partial.split("\n")
        return [line.rstrip("\r") for line in lines]

    def remainder(self) -> str:
        self._partial += self._decoder.decode(b"", final=True)
        rest, self._partial = self._partial.rstrip("\r"), ""
        return rest


class LineReassembler:
    """Line mode: one unit per non-empty, non-noise line."""

    def __init__(self, noise: NoiseFilter = NO_NOISE) -> None:
        self._noise = noise
        self._splitter = _LineSplitter()

    def _keep(self, line: str) -> bool:
        return bool(line.strip()) and not self._noise.is_noise(line)

    def feed(self, chunk: bytes) -> list[str]:
        return [line for line in self._splitter.split(chunk) if self._keep(line)]

    def flush(self) -> list[str]:
        rest = self._splitter.remainder()
        return [rest] if self._keep(rest) else []


class BlockReassembler:
    """Block mode: one unit per complete (possibly multi-line) JSON object.

    A block opens on a line starting with ``{`` and closes once its
    braces balance and the text parses. A block that balances but does
    not parse is dropped when the next column-0 ``{`` line arrives.
    Lines outside any block are dropped. An unterminated block is
    discarded on flush.
    """

    def __init__(self, noise: NoiseFilter = NO_NOISE) -> None:
        self._noise = noise
        self._splitter = _LineSplitter()
        self._block: list[str] = []

    @property
    def in_block(self) -> bool:
        return bool(self._block)

    def _accept(self, line: str) -> str | None:
        if not self._block:
            stripped = line.strip()
            if not stripped or self._noise.is_noise(line):
                return None
            if not stripped.startswith("{"):
                logger.debug("Dropping line outside JSON block: %.80s", stripped)
                return None
        elif not line.strip():
            return None
        elif line.startswith("{") and is_json_complete("\n".join(self._block)):
            logger.debug("Discarding malformed JSON block (%d lines)", len(self._block))
            self._block = []

        self._block.append(line)
        text = "\n".join(self._block)
        if not is_json_complete(text):
            return None
        try:
            json.loads(text)
        except ValueError:
            # Balanced but not yet valid; keep buffering.
            return None
        self._block = []
        return text

    def feed(self, chunk: bytes) -> list[str]:
        units = []
        for line in self._splitter.split(chunk):
            unit = self._accept(line)
            if unit is not None:
                units.append(unit)
        return units

    def flush(self) -> list[str]:
        rest = self._splitter.remainder()
        units = []
        if rest:
            unit = self._accept(rest)
            if unit is not None:
                units.append(unit)
        if self._block:
            logger.debug(
                "Discarding unterminated JSON block (%d lines)", len(self._block),
            )
            self._block = []
        return units


async def iter_units(
    chunks: AsyncIterator[bytes], reassembler: Reassembler,
) -> AsyncIterator[str]:
    """Lazily yield logical units from an async stream of byte chunks."""
    async for chunk in chunks:
        for unit in reassembler.feed(chunk):
            yield unit
    for unit in reassembler.flush():
        yield unit
