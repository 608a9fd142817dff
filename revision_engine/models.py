"""
Revision Engine Models v1.0.0
=============================
Data classes shared by the snapshot differ and the live change tracker.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Any


class ChangeKind(Enum):
    """What a change record describes."""
    INSERTION = "insertion"
    DELETION = "deletion"
    REPLACEMENT = "replacement"
    MOVE = "move"


class ChangeStatus(Enum):
    """Review state of a tracked change."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AuthorKind(Enum):
    HUMAN = "human"
    AGENT = "agent"


class Granularity(Enum):
    """Token unit used by the snapshot differ."""
    WORD = "word"
    SENTENCE = "sentence"
    LINE = "line"


class EditSource(Enum):
    """
    Origin of an edit operation.

    USER edits are recorded. UNDO and REDO come from the host's history and
    invalidate the change set. REVERSAL marks edits the tracker emitted itself
    while accepting or rejecting changes; they are never recorded.
    """
    USER = "user"
    UNDO = "undo"
    REDO = "redo"
    REVERSAL = "reversal"


class SpanOp(Enum):
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class TextRange:
    """Half-open character range [start, end)."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def shift(self, delta: int) -> 'TextRange':
        return TextRange(self.start + delta, self.end + delta)

    def to_dict(self) -> Dict[str, int]:
        return {'start': self.start, 'end': self.end}


@dataclass(frozen=True)
class Author:
    """Opaque author identity attached to every tracked change."""
    id: str
    display_name: str = ""
    kind: AuthorKind = AuthorKind.HUMAN

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'display_name': self.display_name or self.id,
            'kind': self.kind.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Author':
        return cls(
            id=str(data['id']),
            display_name=data.get('display_name') or data.get('name') or '',
            kind=AuthorKind(data.get('kind', 'human'))
        )


@dataclass(frozen=True)
class Classification:
    """Whether a change alters meaning, presentation, or both."""
    is_substantive: bool
    is_stylistic: bool

    def to_dict(self) -> Dict[str, bool]:
        return {
            'is_substantive': self.is_substantive,
            'is_stylistic': self.is_stylistic
        }


@dataclass
class ChangeRecord:
    """
    A single attributed change.

    Attributes:
        id: Unique identifier (e.g., "change-0" or "tc-1a2b3c4d")
        kind: Insertion, deletion, replacement or move
        range: Position in the current document; a pure deletion is a point
        inserted_text: Text present in the current document at `range`
        deleted_text: Text removed from the document, anchored at range.start
        author: Who made the change
        timestamp: Milliseconds on the clock of whoever recorded it
        status: Review state (live tracking only)
        original_range: Where the change sat before the edit that produced it
        classification: Substantive/stylistic flags (snapshot diffs only)
        confidence: 0..1 certainty of the detection
        metadata: Free-form extras (affected sentences, move indices)
    """
    id: str
    kind: ChangeKind
    range: TextRange
    inserted_text: str = ""
    deleted_text: str = ""
    author: Optional[Author] = None
    timestamp: int = 0
    status: ChangeStatus = ChangeStatus.PENDING
    original_range: Optional[TextRange] = None
    classification: Optional[Classification] = None
    confidence: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def start(self) -> int:
        return self.range.start

    @property
    def end(self) -> int:
        return self.range.end

    def copy(self) -> 'ChangeRecord':
        """Detached copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'kind': self.kind.value,
            'range': self.range.to_dict(),
            'original_range': self.original_range.to_dict() if self.original_range else None,
            'inserted_text': self.inserted_text,
            'deleted_text': self.deleted_text,
            'author': self.author.to_dict() if self.author else None,
            'timestamp': self.timestamp,
            'status': self.status.value,
            'classification': self.classification.to_dict() if self.classification else None,
            'confidence': round(self.confidence, 4),
            'metadata': self.metadata
        }


@dataclass
class AlignmentPair:
    """
    One row of a paragraph alignment.

    Either index may be None: (i, None) is a paragraph deleted from the
    baseline, (None, j) a paragraph added in the current version.
    """
    old_index: Optional[int]
    new_index: Optional[int]
    similarity: float = 0.0

    @property
    def status(self) -> str:
        if self.old_index is None:
            return 'added'
        if self.new_index is None:
            return 'deleted'
        return 'unchanged' if self.similarity >= 1.0 else 'modified'

    def as_tuple(self) -> tuple:
        return (self.old_index, self.new_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'old_index': self.old_index,
            'new_index': self.new_index,
            'similarity': round(self.similarity, 4),
            'status': self.status
        }


@dataclass
class ChangeSet:
    """Ordered pending changes of one tracking session."""
    records: List[ChangeRecord] = field(default_factory=list)
    version: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def find(self, change_id: str) -> Optional[ChangeRecord]:
        for record in self.records:
            if record.id == change_id:
                return record
        return None

    def bump(self) -> int:
        self.version += 1
        return self.version

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'changes': [r.to_dict() for r in self.records]
        }


@dataclass
class EditOp:
    """
    Atomic edit against the tracked document: replace [start, end) with text.

    Every host transaction (keystroke, paste, cut, programmatic edit) is
    expressed as a sequence of these.
    """
    start: int
    end: int
    text: str = ""
    source: EditSource = EditSource.USER

    @classmethod
    def insert(cls, position: int, text: str,
               source: EditSource = EditSource.USER) -> 'EditOp':
        return cls(position, position, text, source)

    @classmethod
    def delete(cls, start: int, end: int,
               source: EditSource = EditSource.USER) -> 'EditOp':
        return cls(start, end, "", source)

    @classmethod
    def replace(cls, start: int, end: int, text: str,
                source: EditSource = EditSource.USER) -> 'EditOp':
        return cls(start, end, text, source)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EditOp':
        start = data.get('start', data.get('from'))
        end = data.get('end', data.get('to', start))
        return cls(start, end, data.get('text', ''),
                   EditSource(data.get('source', 'user')))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start,
            'end': self.end,
            'text': self.text,
            'source': self.source.value
        }


@dataclass(frozen=True)
class PatchStep:
    """Replace [start, end) with text, in the coordinates left by the previous step."""
    start: int
    end: int
    text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'start': self.start, 'end': self.end, 'text': self.text}


@dataclass
class DocumentPatch:
    """
    Edits produced by accept/reject, to be applied in order by the host.

    Always tagged as a reversal so that echoing the steps back into the
    tracker does not record them as new changes.
    """
    steps: List[PatchStep] = field(default_factory=list)
    change_ids: List[str] = field(default_factory=list)
    source: EditSource = EditSource.REVERSAL

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def apply(self, text: str) -> str:
        """Apply every step to text and return the result."""
        for step in self.steps:
            text = text[:step.start] + step.text + text[step.end:]
        return text

    def as_edit_ops(self) -> List[EditOp]:
        return [EditOp(s.start, s.end, s.text, self.source) for s in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'steps': [s.to_dict() for s in self.steps],
            'change_ids': list(self.change_ids),
            'source': self.source.value
        }


@dataclass
class EditSpan:
    """
    One run of the token-level edit script.

    `start`/`end` are offsets in the current text (an empty range for
    deletions), `base_start`/`base_end` the same run in the baseline text
    (an empty range for insertions).
    """
    op: SpanOp
    text: str
    start: int
    end: int
    base_start: int
    base_end: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'op': self.op.value,
            'text': self.text,
            'start': self.start,
            'end': self.end,
            'base_start': self.base_start,
            'base_end': self.base_end
        }


@dataclass
class DiffStats:
    """Summary counts for a snapshot comparison."""
    total: int = 0
    insertions: int = 0
    deletions: int = 0
    replacements: int = 0
    moves: int = 0
    substantive_changes: int = 0
    stylistic_changes: int = 0
    high_confidence: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'total': self.total,
            'insertions': self.insertions,
            'deletions': self.deletions,
            'replacements': self.replacements,
            'moves': self.moves,
            'substantive_changes': self.substantive_changes,
            'stylistic_changes': self.stylistic_changes,
            'high_confidence': self.high_confidence
        }


@dataclass
class DiffReport:
    """
    Complete result of comparing two snapshots.

    Attributes:
        changes: Change records in document order
        stats: Counts by kind and classification
        similarity: Whole-document similarity (0..1)
        change_magnitude: 'minor', 'moderate', 'major' or 'rewrite'
        suggested_mode: 'tracking' or 'diff-regenerate'
        change_percent: Percentage of characters touched by the edit script
        view_mode: 'track-changes' or 'side-by-side'
        summary: Human-readable description of the counts
    """
    granularity: str
    changes: List[ChangeRecord] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)
    similarity: float = 1.0
    change_magnitude: str = "minor"
    suggested_mode: str = "tracking"
    change_percent: float = 0.0
    view_mode: str = "track-changes"
    summary: str = "No changes"

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'granularity': self.granularity,
            'changes': [c.to_dict() for c in self.changes],
            'stats': self.stats.to_dict(),
            'similarity': round(self.similarity, 4),
            'change_magnitude': self.change_magnitude,
            'suggested_mode': self.suggested_mode,
            'change_percent': round(self.change_percent, 2),
            'view_mode': self.view_mode,
            'summary': self.summary,
            'has_changes': self.has_changes
        }
