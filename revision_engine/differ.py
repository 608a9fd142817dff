"""
Snapshot Differ v1.0.0
======================
Token-level comparison of two text snapshots with move detection,
replacement grouping, change classification and paragraph alignment.

Uses diff-match-patch for the edit script: tokens (words, sentences or
lines) are mapped to single characters, diffed with the Myers bisection in
`diff_main`, then mapped back with `diff_charsToLines`.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

import diff_match_patch as dmp_module

from config_logging import get_logger, handle_errors, UnknownChangeError, ValidationError
from .config import EngineConfig, get_config
from .models import (
    AlignmentPair, ChangeKind, ChangeRecord, Classification, DiffReport,
    DiffStats, EditSpan, Granularity, SpanOp, TextRange
)
from .similarity import normalize, normalized_similarity, similarity

logger = get_logger('revision_engine.differ')

_PARAGRAPH_BREAK_RE = re.compile(r'\n\n+')
_SENTENCE_END_RE = re.compile(r'[.!?]+')


@dataclass
class TextChunk:
    """A paragraph and its [start, end) offsets in the source text."""
    text: str
    start: int
    end: int


@dataclass
class _Move:
    base: TextChunk
    current: TextChunk
    base_index: int
    current_index: int
    confidence: float


def extract_chunks(text: str) -> List[TextChunk]:
    """Split text on blank lines, keeping non-blank paragraphs with their offsets."""
    chunks = []
    pos = 0
    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        if text[pos:match.start()].strip():
            chunks.append(TextChunk(text[pos:match.start()], pos, match.start()))
        pos = match.end()
    if text[pos:].strip():
        chunks.append(TextChunk(text[pos:], pos, len(text)))
    return chunks


def extract_paragraphs(text: str) -> List[str]:
    return [chunk.text for chunk in extract_chunks(text)]


def _coerce_granularity(granularity: Union[Granularity, str]) -> Granularity:
    if isinstance(granularity, Granularity):
        return granularity
    try:
        return Granularity(str(granularity).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown granularity: {granularity!r}",
            field='granularity',
            allowed=[g.value for g in Granularity]
        ) from None


def _require_text(value, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(
            f"{field_name} must be a string, got {type(value).__name__}",
            field=field_name
        )
    return value


class SnapshotDiffer:
    """
    Stateless comparison engine for two full snapshots of a document.

    One instance may be shared between threads; every call works on its own
    locals.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        """
        Initialize the differ.

        Args:
            config: Engine thresholds; the global configuration when omitted
        """
        self.config = config or get_config()
        self.dmp = dmp_module.diff_match_patch()
        self.dmp.Diff_Timeout = self.config.diff.diff_timeout
        self.dmp.Diff_EditCost = 4

    # ------------------------------------------------------------------
    # Edit script
    # ------------------------------------------------------------------

    def tokenize(self, text: str, granularity: Union[Granularity, str] = Granularity.WORD) -> List[str]:
        """
        Split text into tokens whose concatenation is exactly the input.

        Words and the whitespace runs between them are separate tokens;
        sentences end after terminal punctuation; lines keep their line
        endings.
        """
        granularity = _coerce_granularity(granularity)
        if not text:
            return []
        if granularity is Granularity.WORD:
            return re.findall(r'\S+|\s+', text)
        if granularity is Granularity.SENTENCE:
            return [t for t in re.split(r'(?<=[.!?])(\s+)', text) if t]
        return text.splitlines(keepends=True)

    def _diff_tokens(self, baseline_tokens: List[str], current_tokens: List[str]) -> list:
        token_array = ['']
        token_index = {}

        def encode(tokens: List[str]) -> str:
            chars = []
            for token in tokens:
                if token not in token_index:
                    token_index[token] = len(token_array)
                    token_array.append(token)
                chars.append(chr(token_index[token]))
            return ''.join(chars)

        baseline_chars = encode(baseline_tokens)
        current_chars = encode(current_tokens)
        diffs = self.dmp.diff_main(baseline_chars, current_chars, False)
        self.dmp.diff_charsToLines(diffs, token_array)
        return diffs

    def compute_edit_script(self, baseline: str, current: str,
                            granularity: Union[Granularity, str] = Granularity.WORD) -> List[EditSpan]:
        """
        Compute the token-level edit script between two snapshots.

        Args:
            baseline: Original text
            current: New text
            granularity: Token unit (word, sentence or line)

        Returns:
            Spans in order. Equal and insert spans advance the current-text
            offset; delete spans sit at a point in the current text.
        """
        _require_text(baseline, 'baseline')
        _require_text(current, 'current')
        granularity = _coerce_granularity(granularity)

        if not baseline and not current:
            return []
        if baseline == current:
            return [EditSpan(SpanOp.EQUAL, current, 0, len(current), 0, len(baseline))]

        diffs = self._diff_tokens(self.tokenize(baseline, granularity),
                                  self.tokenize(current, granularity))

        spans = []
        position = 0
        base_position = 0
        for op, text in diffs:
            length = len(text)
            if not length:
                continue
            if op == self.dmp.DIFF_EQUAL:
                spans.append(EditSpan(SpanOp.EQUAL, text, position, position + length,
                                      base_position, base_position + length))
                position += length
                base_position += length
            elif op == self.dmp.DIFF_INSERT:
                spans.append(EditSpan(SpanOp.INSERT, text, position, position + length,
                                      base_position, base_position))
                position += length
            else:
                spans.append(EditSpan(SpanOp.DELETE, text, position, position,
                                      base_position, base_position + length))
                base_position += length
        return spans

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def _detect_moves(self, base_chunks: List[TextChunk],
                      current_chunks: List[TextChunk]) -> List[_Move]:
        """Pair paragraphs that reappear at a different index."""
        cfg = self.config.diff
        moves = []
        for i, base in enumerate(base_chunks):
            if len(base.text.strip()) < cfg.min_move_chars:
                continue
            # A paragraph still in its old slot has not moved
            if i < len(current_chunks) and current_chunks[i].text == base.text:
                continue
            for j, cur in enumerate(current_chunks):
                if i == j:
                    continue
                if j < len(base_chunks) and base_chunks[j].text == cur.text:
                    continue
                score = normalized_similarity(base.text, cur.text)
                if score >= cfg.move_threshold:
                    moves.append(_Move(base, cur, i, j, score))
        logger.debug(f"Move detection: {len(moves)} moves across "
                     f"{len(base_chunks)}/{len(current_chunks)} paragraphs")
        return moves

    @staticmethod
    def _owning_move(span: EditSpan, move_sides: List[Tuple[str, str, str]]) -> Optional[str]:
        """
        Id of the move whose paragraph this span belongs to, or None.

        A span belongs to the moves when every paragraph piece of it appears
        in some moved text; it is credited to the move whose matching side
        (baseline for deletions, current for insertions) contains it.
        """
        if not move_sides:
            return None
        pieces = [normalize(piece) for piece in _PARAGRAPH_BREAK_RE.split(span.text)]
        for piece in pieces:
            if not any(piece in base or piece in current for _, base, current in move_sides):
                return None
        for move_id, base, current in move_sides:
            side = base if span.op is SpanOp.DELETE else current
            if all(piece in side for piece in pieces):
                return move_id
        return move_sides[0][0]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def classify(self, old_text: str, new_text: str) -> Classification:
        """
        Decide whether a change alters meaning, presentation, or both.

        Identical normalized text means only case, punctuation or spacing
        changed.
        """
        old_norm = normalize(old_text)
        new_norm = normalize(new_text)
        if old_norm == new_norm:
            return Classification(is_substantive=False, is_stylistic=True)
        if similarity(old_norm, new_norm) > self.config.diff.stylistic_threshold:
            return Classification(is_substantive=True, is_stylistic=True)
        return Classification(is_substantive=True, is_stylistic=False)

    @staticmethod
    def _affected_sentences(text: str) -> int:
        return len(_SENTENCE_END_RE.split(text))

    def _make_record(self, counter: int, kind: ChangeKind, span_range: TextRange,
                     original_range: TextRange, deleted: str = "", inserted: str = "",
                     confidence: float = 1.0) -> ChangeRecord:
        return ChangeRecord(
            id=f"change-{counter}",
            kind=kind,
            range=span_range,
            original_range=original_range,
            deleted_text=deleted,
            inserted_text=inserted,
            classification=self.classify(deleted, inserted),
            confidence=confidence,
            metadata={'affected_sentences': max(self._affected_sentences(deleted) if deleted else 0,
                                                self._affected_sentences(inserted) if inserted else 0)}
        )

    def _should_group(self, deleted: EditSpan, inserted: EditSpan) -> bool:
        cfg = self.config.diff
        if abs(inserted.start - deleted.start) >= cfg.replacement_distance:
            return False
        old_text = deleted.text.strip()
        new_text = inserted.text.strip()
        both_short = len(old_text) < cfg.short_text_chars and len(new_text) < cfg.short_text_chars
        return both_short or similarity(old_text, new_text) > cfg.replacement_similarity

    def _records_from_spans(self, spans: List[EditSpan], move_sides: List[Tuple[str, str, str]],
                            counter: int) -> Tuple[List[ChangeRecord], Dict[int, str]]:
        """
        Turn the non-equal spans into records.

        Returns:
            (records, owners) where owners maps every non-equal span index
            to the id of the record (or move) it belongs to
        """
        cfg = self.config.diff
        owners = {}
        changed = []
        for index, span in enumerate(spans):
            if span.op is SpanOp.EQUAL:
                continue
            move_id = self._owning_move(span, move_sides)
            if move_id is not None:
                owners[index] = move_id
            else:
                changed.append(index)

        records = []
        i = 0
        while i < len(changed):
            span = spans[changed[i]]
            nxt = spans[changed[i + 1]] if i + 1 < len(changed) else None
            if (span.op is SpanOp.DELETE and nxt is not None
                    and nxt.op is SpanOp.INSERT and self._should_group(span, nxt)):
                record = self._make_record(
                    counter, ChangeKind.REPLACEMENT,
                    TextRange(nxt.start, nxt.end),
                    TextRange(span.base_start, span.base_end),
                    deleted=span.text, inserted=nxt.text,
                    confidence=cfg.replacement_confidence
                )
                owners[changed[i + 1]] = record.id
            elif span.op is SpanOp.DELETE:
                record = self._make_record(
                    counter, ChangeKind.DELETION,
                    TextRange(span.start, span.start),
                    TextRange(span.base_start, span.base_end),
                    deleted=span.text
                )
            else:
                record = self._make_record(
                    counter, ChangeKind.INSERTION,
                    TextRange(span.start, span.end),
                    TextRange(span.base_start, span.base_start),
                    inserted=span.text,
                    confidence=cfg.insertion_confidence
                )
            owners[changed[i]] = record.id
            records.append(record)
            i += 2 if record.kind is ChangeKind.REPLACEMENT else 1
            counter += 1
        return records, owners

    def diff_snapshots(self, baseline: str, current: str,
                       granularity: Union[Granularity, str] = Granularity.WORD) -> List[ChangeRecord]:
        """
        Compare two snapshots and return change records in document order.

        Args:
            baseline: Original text
            current: New text
            granularity: Token unit for the edit script

        Returns:
            Insertions, deletions, replacements and moves sorted by
            range.start; empty when the snapshots are identical
        """
        return self._diff(baseline, current, granularity)[0]

    def _diff(self, baseline: str, current: str,
              granularity: Union[Granularity, str]
              ) -> Tuple[List[ChangeRecord], List[EditSpan], Dict[int, str]]:
        spans = self.compute_edit_script(baseline, current, granularity)
        if all(s.op is SpanOp.EQUAL for s in spans):
            return [], spans, {}

        moves = self._detect_moves(extract_chunks(baseline), extract_chunks(current))
        move_sides = []

        records = []
        counter = 0
        for move in moves:
            move_sides.append((f"change-{counter}", normalize(move.base.text),
                               normalize(move.current.text)))
            records.append(ChangeRecord(
                id=f"change-{counter}",
                kind=ChangeKind.MOVE,
                range=TextRange(move.current.start, move.current.end),
                original_range=TextRange(move.base.start, move.base.end),
                deleted_text=move.base.text,
                inserted_text=move.current.text,
                classification=Classification(is_substantive=False, is_stylistic=False),
                confidence=move.confidence,
                metadata={
                    'affected_sentences': self._affected_sentences(move.base.text),
                    'moved_from': move.base_index,
                    'moved_to': move.current_index
                }
            ))
            counter += 1

        span_records, owners = self._records_from_spans(spans, move_sides, counter)
        records.extend(span_records)
        records.sort(key=lambda r: (r.range.start, r.range.end))
        return records, spans, owners

    # ------------------------------------------------------------------
    # Alignment
    # ------------------------------------------------------------------

    def align_chunks(self, baseline_chunks: List[str],
                     current_chunks: List[str]) -> List[AlignmentPair]:
        """
        Align paragraphs between two versions, tolerating reordering.

        Exact matches are paired first, then each remaining baseline
        paragraph takes its most similar unused current paragraph above the
        match threshold. Leftovers become (i, None) or (None, j). Pairs are
        ordered by baseline position; an added paragraph follows the pair
        that precedes it in the current version.
        """
        threshold = self.config.alignment.match_threshold
        new_for_old = {}
        scores = {}
        used = set()

        for i, old in enumerate(baseline_chunks):
            for j, new in enumerate(current_chunks):
                if j not in used and old == new:
                    new_for_old[i] = j
                    scores[i] = 1.0
                    used.add(j)
                    break

        for i, old in enumerate(baseline_chunks):
            if i in new_for_old:
                continue
            best_j = None
            best_score = threshold
            for j, new in enumerate(current_chunks):
                if j in used:
                    continue
                score = similarity(old, new)
                if score > best_score:
                    best_j, best_score = j, score
            if best_j is not None:
                new_for_old[i] = best_j
                scores[i] = best_score
                used.add(best_j)

        old_for_new = {j: i for i, j in new_for_old.items()}
        keyed = []
        for i in range(len(baseline_chunks)):
            pair = AlignmentPair(i, new_for_old.get(i), scores.get(i, 0.0))
            keyed.append(((i, 0, 0), pair))

        anchor = -1
        for j in range(len(current_chunks)):
            if j in old_for_new:
                anchor = old_for_new[j]
                continue
            keyed.append(((anchor, 1, j), AlignmentPair(None, j, 0.0)))

        keyed.sort(key=lambda item: item[0])
        pairs = [pair for _, pair in keyed]
        logger.debug(f"Aligned {len(baseline_chunks)} -> {len(current_chunks)} paragraphs: "
                     f"{sum(1 for p in pairs if p.status == 'unchanged')} unchanged, "
                     f"{sum(1 for p in pairs if p.status == 'modified')} modified")
        return pairs

    def align_snapshots(self, baseline: str, current: str) -> List[AlignmentPair]:
        """Split both snapshots into paragraphs and align them."""
        _require_text(baseline, 'baseline')
        _require_text(current, 'current')
        return self.align_chunks(extract_paragraphs(baseline), extract_paragraphs(current))

    # ------------------------------------------------------------------
    # Full comparison
    # ------------------------------------------------------------------

    @staticmethod
    def compute_stats(records: List[ChangeRecord], high_confidence: float = 0.85) -> DiffStats:
        return DiffStats(
            total=len(records),
            insertions=sum(1 for r in records if r.kind is ChangeKind.INSERTION),
            deletions=sum(1 for r in records if r.kind is ChangeKind.DELETION),
            replacements=sum(1 for r in records if r.kind is ChangeKind.REPLACEMENT),
            moves=sum(1 for r in records if r.kind is ChangeKind.MOVE),
            substantive_changes=sum(1 for r in records
                                    if r.classification and r.classification.is_substantive),
            stylistic_changes=sum(1 for r in records
                                  if r.classification and r.classification.is_stylistic),
            high_confidence=sum(1 for r in records if r.confidence > high_confidence)
        )

    def _magnitude(self, score: float) -> str:
        cfg = self.config.alignment
        if score > cfg.minor_threshold:
            return 'minor'
        if score > cfg.moderate_threshold:
            return 'moderate'
        if score > cfg.major_threshold:
            return 'major'
        return 'rewrite'

    @handle_errors(logger)
    def compare(self, baseline: str, current: str,
                granularity: Union[Granularity, str] = Granularity.WORD) -> DiffReport:
        """
        Full comparison: change records, statistics and document-level metrics.

        Args:
            baseline: Original text
            current: New text
            granularity: Token unit for the edit script

        Returns:
            DiffReport with records, stats, similarity, magnitude,
            suggested mode, change percent and view mode
        """
        granularity = _coerce_granularity(granularity)
        logger.info(f"Starting diff: baseline={len(baseline) if isinstance(baseline, str) else '?'} chars, "
                    f"current={len(current) if isinstance(current, str) else '?'} chars, "
                    f"granularity={granularity.value}")

        with logger.log_operation("snapshot diff", granularity=granularity.value):
            records, spans, _ = self._diff(baseline, current, granularity)

        total_chars = sum(len(s.text) for s in spans)
        changed_chars = sum(len(s.text) for s in spans if s.op is not SpanOp.EQUAL)
        change_percent = (changed_chars / total_chars) * 100 if total_chars else 0.0

        longer = max(len(baseline), len(current))
        if longer == 0:
            doc_similarity = 1.0
        else:
            diffs = [(self._span_dmp_op(s.op), s.text) for s in spans]
            doc_similarity = (longer - self.dmp.diff_levenshtein(diffs)) / longer

        magnitude = self._magnitude(doc_similarity)
        stats = self.compute_stats(records, self.config.diff.high_confidence)
        side_by_side = change_percent >= self.config.alignment.side_by_side_percent

        report = DiffReport(
            granularity=granularity.value,
            changes=records,
            stats=stats,
            similarity=doc_similarity,
            change_magnitude=magnitude,
            suggested_mode='diff-regenerate' if magnitude in ('major', 'rewrite') else 'tracking',
            change_percent=round(change_percent, 1),
            view_mode='side-by-side' if side_by_side else 'track-changes',
            summary=change_summary(records)
        )

        logger.info(f"Diff complete: {stats.total} changes (+{stats.insertions}, -{stats.deletions}, "
                    f"~{stats.replacements}, moves={stats.moves}), similarity={doc_similarity:.3f}")
        return report

    @handle_errors(logger)
    def merge(self, baseline: str, current: str, accepted_ids: Iterable[str],
              granularity: Union[Granularity, str] = Granularity.WORD) -> str:
        """
        Build the text that results from accepting only some changes.

        The edit script is replayed over the baseline: equal runs are kept,
        a change's inserted side is kept when it is accepted and its deleted
        side otherwise. A move contributes both of its paragraph positions.

        Args:
            baseline: Original text
            current: New text
            accepted_ids: Ids from diff_snapshots() for the same inputs
            granularity: Token unit; must match the one used for the ids

        Returns:
            The merged text: baseline when nothing is accepted, current when
            everything is

        Raises:
            UnknownChangeError: An id is not one of this diff's records
        """
        if isinstance(accepted_ids, str):
            raise ValidationError("accepted_ids must be a list of change ids",
                                  field='accepted_ids')
        accepted = set(accepted_ids or ())

        with logger.log_operation("snapshot merge", accepted=len(accepted)):
            records, spans, owners = self._diff(baseline, current, granularity)

        unknown = accepted - {r.id for r in records}
        if unknown:
            raise UnknownChangeError(sorted(unknown)[0], diff_size=len(records))

        parts = []
        for index, span in enumerate(spans):
            if span.op is SpanOp.EQUAL:
                parts.append(span.text)
            elif (span.op is SpanOp.INSERT) == (owners.get(index) in accepted):
                parts.append(span.text)
        return ''.join(parts)

    def _span_dmp_op(self, op: SpanOp) -> int:
        if op is SpanOp.INSERT:
            return self.dmp.DIFF_INSERT
        if op is SpanOp.DELETE:
            return self.dmp.DIFF_DELETE
        return self.dmp.DIFF_EQUAL


def change_summary(records: List[ChangeRecord]) -> str:
    """Human-readable counts, e.g. '2 insertions, 1 replacement'."""
    labels = [
        (ChangeKind.INSERTION, 'insertion', 'insertions'),
        (ChangeKind.DELETION, 'deletion', 'deletions'),
        (ChangeKind.REPLACEMENT, 'replacement', 'replacements'),
        (ChangeKind.MOVE, 'move', 'moves'),
    ]
    parts = []
    for kind, singular, plural in labels:
        count = sum(1 for r in records if r.kind is kind)
        if count:
            parts.append(f"{count} {singular if count == 1 else plural}")
    return ', '.join(parts) if parts else 'No changes'


# Module-level conveniences over a differ built from the global configuration

def diff_snapshots(baseline: str, current: str,
                   granularity: Union[Granularity, str] = Granularity.WORD) -> List[ChangeRecord]:
    return SnapshotDiffer().diff_snapshots(baseline, current, granularity)


def compute_edit_script(baseline: str, current: str,
                        granularity: Union[Granularity, str] = Granularity.WORD) -> List[EditSpan]:
    return SnapshotDiffer().compute_edit_script(baseline, current, granularity)


def align_chunks(baseline_chunks: List[str], current_chunks: List[str]) -> List[AlignmentPair]:
    return SnapshotDiffer().align_chunks(baseline_chunks, current_chunks)


def compare(baseline: str, current: str,
            granularity: Union[Granularity, str] = Granularity.WORD) -> DiffReport:
    """
    Convenience function for a full snapshot comparison.

    Args:
        baseline: Original text
        current: New text
        granularity: 'word', 'sentence' or 'line'

    Returns:
        DiffReport
    """
    return SnapshotDiffer().compare(baseline, current, granularity)


def merge(baseline: str, current: str, accepted_ids: Iterable[str],
          granularity: Union[Granularity, str] = Granularity.WORD) -> str:
    return SnapshotDiffer().merge(baseline, current, accepted_ids, granularity)
