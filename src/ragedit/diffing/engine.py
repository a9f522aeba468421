"""Incremental alignment of generated text against a document region.

A :class:`DiffSession` turns the growing model output into ordered
:class:`PatchHunk` objects; :class:`AnchorResolver` relocates a hunk inside
the live document text, which may have drifted since the stream started.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import List, Sequence

from rapidfuzz import fuzz

from ragedit.models import AnchorResolution, PatchHunk

_TOKEN_RE = re.compile(r"\w+|\s+|[^\w\s]")
_WORD_CHAR = re.compile(r"\w")


def tokenize(text: str) -> list[str]:
    """Split into words, whitespace runs and single punctuation marks.

    Joining the tokens gives back ``text``.
    """

    return _TOKEN_RE.findall(text)


@dataclass(frozen=True)
class EngineConfig:
    """Tunables for alignment and anchor resolution."""

    lookahead_tokens: int = 4
    context_chars: int = 24
    search_radius: int = 400
    fuzzy_threshold: float = 0.85


class DiffSession:
    """Align one stream's output against the region it is rewriting.

    Alignment restarts from a committed cursor on every delta. A change is
    emitted once it is followed by ``lookahead_tokens`` unchanged tokens, or
    when the stream finishes. Emitted hunks are in document order and never
    overlap.
    """

    def __init__(self, text: str, region_start: int, region_end: int, config: EngineConfig) -> None:
        if not 0 <= region_start <= region_end <= len(text):
            raise ValueError(f"Region [{region_start}, {region_end}) is outside the document")
        self._text = text
        self._region_start = region_start
        self._config = config
        self._orig_tokens = tokenize(text[region_start:region_end])
        self._orig_offsets = [0]
        for token in self._orig_tokens:
            self._orig_offsets.append(self._orig_offsets[-1] + len(token))
        self._generated = ""
        self._orig_cursor = 0
        self._gen_cursor = 0
        self._order = 0
        self._finished = False

    @property
    def generated(self) -> str:
        return self._generated

    @property
    def pending_text(self) -> str:
        """Generated text not yet covered by an emitted hunk or matched run."""

        return self._generated[self._gen_cursor :]

    def feed(self, delta: str) -> list[PatchHunk]:
        if self._finished:
            raise RuntimeError("DiffSession already finished")
        self._generated += delta
        return self._emit(final=False)

    def finish(self) -> list[PatchHunk]:
        if self._finished:
            return []
        hunks = self._emit(final=True)
        self._finished = True
        return hunks

    def discard(self) -> None:
        """Drop buffered output; used when the stream is cancelled."""

        self._generated = self._generated[: self._gen_cursor]
        self._finished = True

    def _emit(self, *, final: bool) -> list[PatchHunk]:
        gen_tokens = tokenize(self._generated[self._gen_cursor :])
        if not final and gen_tokens:
            # the trailing token may still grow with the next delta
            gen_tokens = gen_tokens[:-1]
        orig_tokens = self._orig_tokens[self._orig_cursor :]
        opcodes = SequenceMatcher(None, orig_tokens, gen_tokens, autojunk=False).get_opcodes()
        lookahead = max(0, self._config.lookahead_tokens)

        hunks: List[PatchHunk] = []
        committed_i = 0
        committed_j = 0
        for index, (tag, i1, i2, j1, j2) in enumerate(opcodes):
            if tag == "equal":
                continue
            following = opcodes[index + 1] if index + 1 < len(opcodes) else None
            stable = final or (
                following is not None and following[0] == "equal" and following[2] - following[1] >= lookahead
            )
            if not stable:
                break
            hunks.append(self._make_hunk(i1, i2, gen_tokens[j1:j2]))
            committed_i, committed_j = i2, j2

        if hunks or final:
            if final:
                committed_i, committed_j = len(orig_tokens), len(gen_tokens)
            self._gen_cursor += sum(len(token) for token in gen_tokens[:committed_j])
            self._orig_cursor += committed_i
        return hunks

    def _make_hunk(self, i1: int, i2: int, replacement_tokens: Sequence[str]) -> PatchHunk:
        start = self._region_start + self._orig_offsets[self._orig_cursor + i1]
        end = self._region_start + self._orig_offsets[self._orig_cursor + i2]
        context = self._config.context_chars
        hunk = PatchHunk(
            anchor=self._text[start:end],
            replacement="".join(replacement_tokens),
            start=start,
            end=end,
            order=self._order,
            context_before=self._text[max(0, start - context) : start],
            context_after=self._text[end : end + context],
        )
        self._order += 1
        return hunk


class AnchorResolver:
    """Locate a hunk's anchor in the current document text.

    Tries, in order: the expected offsets, an exact search of the anchor with
    its context inside a bounded neighborhood, the anchor alone, and finally
    fuzzy alignment of anchor plus context.
    """

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def resolve(self, hunk: PatchHunk, text: str, shift: int = 0) -> AnchorResolution:
        expected_start = hunk.start + shift
        expected_end = hunk.end + shift
        if 0 <= expected_start <= expected_end <= len(text):
            if text[expected_start:expected_end] == hunk.anchor and self._context_matches(
                hunk, text, expected_start, expected_end
            ):
                return AnchorResolution.found(expected_start, expected_end, 1.0, "exact")

        radius = self._config.search_radius
        low = max(0, min(expected_start, len(text)) - radius)
        high = min(len(text), max(expected_end, 0) + radius)
        window = text[low:high]

        needle = hunk.context_before + hunk.anchor + hunk.context_after
        if needle:
            positions = [
                low + position + len(hunk.context_before) for position in _occurrences(window, needle, False)
            ]
            resolution = self._pick(positions, expected_start, len(hunk.anchor), 1.0)
            if resolution is not None:
                return resolution
        if hunk.anchor:
            positions = [low + position for position in _occurrences(window, hunk.anchor, True)]
            resolution = self._pick(positions, expected_start, len(hunk.anchor), 0.9)
            if resolution is not None:
                return resolution
        if not needle:
            if 0 <= expected_start <= len(text):
                return AnchorResolution.found(expected_start, expected_start, 1.0, "exact")
            return AnchorResolution.unresolved("anchor_not_found")
        return self._fuzzy(hunk, needle, text, low, window)

    def _fuzzy(self, hunk: PatchHunk, needle: str, text: str, low: int, window: str) -> AnchorResolution:
        if not window:
            return AnchorResolution.unresolved("anchor_not_found")
        alignment = fuzz.partial_ratio_alignment(needle, window, score_cutoff=self._config.fuzzy_threshold * 100)
        if alignment is None:
            return AnchorResolution.unresolved("anchor_not_found")
        score = alignment.score / 100.0
        matched = window[alignment.dest_start : alignment.dest_end]
        blocks = SequenceMatcher(None, needle, matched, autojunk=False).get_matching_blocks()
        anchor_start = len(hunk.context_before)
        anchor_end = anchor_start + len(hunk.anchor)
        start = _map_position(blocks, anchor_start, len(matched))
        end = max(start, _map_position(blocks, anchor_end, len(matched)))
        offset = low + alignment.dest_start
        return AnchorResolution.found(offset + start, offset + end, score, "fuzzy")

    @staticmethod
    def _context_matches(hunk: PatchHunk, text: str, start: int, end: int) -> bool:
        before = hunk.context_before
        after = hunk.context_after
        if before and text[max(0, start - len(before)) : start] != before:
            return False
        if after and text[end : end + len(after)] != after:
            return False
        return True

    @staticmethod
    def _pick(positions: Sequence[int], expected: int, length: int, confidence: float) -> AnchorResolution | None:
        if not positions:
            return None
        if len(positions) == 1:
            return AnchorResolution.found(positions[0], positions[0] + length, confidence, "context")
        ranked = sorted(positions, key=lambda position: abs(position - expected))
        if abs(ranked[0] - expected) == abs(ranked[1] - expected):
            return AnchorResolution.unresolved("ambiguous_match")
        return AnchorResolution.found(ranked[0], ranked[0] + length, confidence * 0.95, "context")


class DiffAnchorEngine:
    """Entry point combining incremental diffing and anchor resolution."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._resolver = AnchorResolver(self._config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    def open(self, text: str, region: tuple[int, int] | None = None) -> DiffSession:
        start, end = region if region is not None else (0, len(text))
        return DiffSession(text, start, end, self._config)

    def resolve(self, hunk: PatchHunk, text: str, shift: int = 0) -> AnchorResolution:
        return self._resolver.resolve(hunk, text, shift)


def _occurrences(haystack: str, needle: str, word_bounded: bool) -> list[int]:
    found: list[int] = []
    position = haystack.find(needle)
    while position != -1:
        if not word_bounded or _on_word_boundary(haystack, needle, position):
            found.append(position)
        position = haystack.find(needle, position + 1)
    return found


def _on_word_boundary(haystack: str, needle: str, position: int) -> bool:
    end = position + len(needle)
    if _WORD_CHAR.match(needle[0]) and position > 0 and _WORD_CHAR.match(haystack[position - 1]):
        return False
    if _WORD_CHAR.match(needle[-1]) and end < len(haystack) and _WORD_CHAR.match(haystack[end]):
        return False
    return True


def _map_position(blocks: Sequence, position: int, limit: int) -> int:
    """Map an index of the needle onto the matched window via matching blocks."""

    for block in blocks:
        if block.size == 0:
            continue
        if block.a <= position <= block.a + block.size:
            return block.b + (position - block.a)
        if position < block.a:
            return block.b
    return limit
