from __future__ import annotations

from ragedit.diffing import DiffAnchorEngine, EngineConfig, tokenize
from ragedit.models import PatchHunk


def _run(engine: DiffAnchorEngine, text: str, deltas, region=None):
    session = engine.open(text, region)
    streamed = []
    for delta in deltas:
        streamed.extend(session.feed(delta))
    return streamed, session.finish()


def test_tokenize_keeps_every_character():
    text = "Hello,  world!\nNew line\t(tab)."
    tokens = tokenize(text)
    assert "".join(tokens) == text
    assert tokens[:4] == ["Hello", ",", "  ", "world"]


def test_single_word_change_becomes_one_hunk():
    engine = DiffAnchorEngine()
    streamed, flushed = _run(engine, "The cat sit.", ["The", " cat", " sat."])
    hunks = streamed + flushed
    assert len(hunks) == 1
    hunk = hunks[0]
    assert (hunk.start, hunk.end) == (8, 11)
    assert hunk.anchor == "sit"
    assert hunk.replacement == "sat"


def test_change_is_emitted_once_followed_by_lookahead_tokens():
    engine = DiffAnchorEngine(EngineConfig(lookahead_tokens=4))
    session = engine.open("The cat sit on the warm mat today.")
    emitted_at = None
    for index, delta in enumerate(["The", " cat", " sat", " on", " the", " warm", " mat", " today."]):
        if session.feed(delta) and emitted_at is None:
            emitted_at = index
    assert emitted_at == 5
    assert session.finish() == []


def test_hunks_are_ordered_and_disjoint():
    original = "alpha one two three four beta one two three four gamma one two three four end"
    generated = "ALPHA one two three four beta one two three four GAMMA one two three four END"
    streamed, flushed = _run(DiffAnchorEngine(), original, [word + " " for word in generated.split(" ")][:-1] + ["END"])
    hunks = streamed + flushed
    assert [hunk.anchor for hunk in hunks] == ["alpha", "gamma", "end"]
    assert [hunk.replacement for hunk in hunks] == ["ALPHA", "GAMMA", "END"]
    for left, right in zip(hunks, hunks[1:]):
        assert left.end <= right.start
    assert [hunk.order for hunk in hunks] == [0, 1, 2]


def test_trailing_insertion_flushed_on_finish():
    engine = DiffAnchorEngine()
    streamed, flushed = _run(engine, "Hello world.", ["Hello world.", " Bye."])
    hunks = streamed + flushed
    assert len(hunks) == 1
    assert hunks[0].anchor == ""
    assert hunks[0].replacement == " Bye."
    assert (hunks[0].start, hunks[0].end) == (12, 12)
    resolution = engine.resolve(hunks[0], "Hello world.")
    assert resolution.resolved and (resolution.start, resolution.end) == (12, 12)


def test_region_offsets_are_document_offsets():
    text = "Keep this. The cat sit. Keep that."
    streamed, flushed = _run(DiffAnchorEngine(), text, ["The cat sat."], region=(11, 23))
    (hunk,) = streamed + flushed
    assert text[hunk.start : hunk.end] == "sit"
    assert hunk.context_before.endswith("The cat ")


def test_discard_drops_uncommitted_output():
    session = DiffAnchorEngine().open("one two three four five six")
    session.feed("one two")
    session.discard()
    assert session.pending_text == ""
    assert session.finish() == []


def _hunk(text: str, anchor: str, replacement: str = "X", context: int = 24) -> PatchHunk:
    start = text.index(anchor)
    end = start + len(anchor)
    return PatchHunk(
        anchor=anchor,
        replacement=replacement,
        start=start,
        end=end,
        order=0,
        context_before=text[max(0, start - context) : start],
        context_after=text[end : end + context],
    )


def test_resolve_exact_at_expected_offset():
    text = "The quick brown fox jumps over the lazy dog."
    resolution = DiffAnchorEngine().resolve(_hunk(text, "jumps"), text)
    assert resolution.resolved
    assert resolution.method == "exact"
    assert resolution.confidence == 1.0
    assert (resolution.start, resolution.end) == (20, 25)


def test_resolve_follows_drift():
    original = "The quick brown fox jumps over the lazy dog."
    drifted = "Preface added here. " + original
    resolution = DiffAnchorEngine().resolve(_hunk(original, "jumps"), drifted)
    assert resolution.resolved
    assert drifted[resolution.start : resolution.end] == "jumps"
    assert resolution.start == 40


def test_resolve_reports_equidistant_matches_as_ambiguous():
    hunk = PatchHunk(anchor="cat", replacement="dog", start=5, end=8, order=0)
    resolution = DiffAnchorEngine().resolve(hunk, "cat 12345 cat")
    assert not resolution.resolved
    assert resolution.reason == "ambiguous_match"


def test_resolve_prefers_nearest_match():
    hunk = PatchHunk(anchor="cat", replacement="dog", start=8, end=11, order=0)
    resolution = DiffAnchorEngine().resolve(hunk, "cat 1234 cat")
    assert resolution.resolved
    assert (resolution.start, resolution.end) == (9, 12)


def test_resolve_fuzzy_when_anchor_was_reworded():
    original = "The quick brown fox jumps over the lazy dog."
    reworded = "The quick brown fox jumped over the lazy dog."
    resolution = DiffAnchorEngine().resolve(_hunk(original, "jumps"), reworded)
    assert resolution.resolved
    assert resolution.method == "fuzzy"
    assert resolution.confidence >= 0.85
    assert resolution.start == 20
    assert reworded[resolution.start : resolution.end].startswith("jump")


def test_resolve_reports_missing_anchor():
    original = "The quick brown fox jumps over the lazy dog."
    resolution = DiffAnchorEngine().resolve(_hunk(original, "jumps"), "Completely unrelated sentence about weather.")
    assert not resolution.resolved
    assert resolution.reason == "anchor_not_found"


def test_fuzzy_threshold_is_configurable():
    original = "The quick brown fox jumps over the lazy dog."
    reworded = "The quick brown fox jumped over the lazy dog."
    strict = DiffAnchorEngine(EngineConfig(fuzzy_threshold=1.0))
    resolution = strict.resolve(_hunk(original, "jumps"), reworded)
    assert not resolution.resolved
    assert resolution.reason == "anchor_not_found"
