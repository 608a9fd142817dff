"""
Change Tracker v1.0.0
=====================
Live, author-attributed change tracking over a stream of edit operations.

Every pending change is kept in one uniform shape: text deleted from the
original document (anchored at range.start) followed by text inserted into
the current document at [range.start, range.end). Insertions, deletions
and replacements differ only in which half is empty, so the original
document is always recoverable by walking the records in order.

Accepting a change only forgets it. Rejecting a change restores its deleted
text and removes its inserted text; the edits needed for that are returned
as a DocumentPatch tagged as a reversal, so the host can apply them without
them being tracked again.
"""

import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional

from config_logging import (
    get_logger, ValidationError, UnknownChangeError, InvalidTransitionError
)
from .config import EngineConfig, get_config
from .models import (
    Author, ChangeKind, ChangeRecord, ChangeSet, ChangeStatus, DocumentPatch,
    EditOp, EditSource, PatchStep, TextRange
)

logger = get_logger('revision_engine.tracker')


def _now_ms() -> int:
    return int(time.time() * 1000)


def _kind_for(record: ChangeRecord) -> ChangeKind:
    if record.deleted_text and record.inserted_text:
        return ChangeKind.REPLACEMENT
    if record.deleted_text:
        return ChangeKind.DELETION
    return ChangeKind.INSERTION


def _place(record: ChangeRecord, start: int, end: Optional[int] = None):
    record.range = TextRange(start, start if end is None else end)
    record.kind = _kind_for(record)


def _shift(record: ChangeRecord, delta: int):
    if delta:
        record.range = record.range.shift(delta)


class ChangeTracker:
    """
    Tracks pending changes for one document.

    Not thread-safe: callers serialize access per document (see
    SessionManager).
    """

    def __init__(self, document: str = "", author: Optional[Author] = None,
                 enabled: bool = True, clock: Optional[Callable[[], int]] = None,
                 config: Optional[EngineConfig] = None):
        """
        Initialize the tracker.

        Args:
            document: Initial document text
            author: Author attributed to edits that do not name one
            enabled: Whether edits are recorded
            clock: Returns the current time in milliseconds
            config: Engine thresholds; the global configuration when omitted
        """
        if not isinstance(document, str):
            raise ValidationError("document must be a string", field='document')
        self.config = config or get_config()
        tracking = self.config.tracking
        self.author = author or Author(tracking.default_author_id, tracking.default_author_name)
        self.enabled = enabled
        self._clock = clock or _now_ms
        self._document = document
        self._changes = ChangeSet()
        # Ids no longer pending: resolved status, or None when merged away or cancelled
        self._history: Dict[str, Optional[ChangeStatus]] = OrderedDict()
        self._last_record_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def document(self) -> str:
        return self._document

    @property
    def version(self) -> int:
        return self._changes.version

    def current_changes(self) -> List[ChangeRecord]:
        """Pending changes in document order, as detached copies."""
        return [record.copy() for record in self._changes.records]

    def get_change(self, change_id: str) -> Optional[ChangeRecord]:
        record = self._changes.find(change_id)
        return record.copy() if record else None

    def original_text(self) -> str:
        """The document as it would read if every pending change were rejected."""
        parts = []
        pos = 0
        for record in self._changes.records:
            parts.append(self._document[pos:record.start])
            parts.append(record.deleted_text)
            pos = record.end
        parts.append(self._document[pos:])
        return ''.join(parts)

    def to_dict(self) -> Dict:
        return {
            'document': self._document,
            'enabled': self.enabled,
            'author': self.author.to_dict(),
            **self._changes.to_dict()
        }

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def set_enabled(self, enabled: bool):
        self.enabled = bool(enabled)
        logger.info(f"Change tracking {'enabled' if self.enabled else 'disabled'}")

    def set_author(self, author: Author):
        if not isinstance(author, Author):
            raise ValidationError("author must be an Author", field='author')
        self.author = author

    def clear(self):
        """Forget every pending change without touching the document."""
        self._retire_all()
        self._changes.bump()

    def reset(self, document: str):
        """Replace the document and forget every pending change."""
        if not isinstance(document, str):
            raise ValidationError("document must be a string", field='document')
        self._document = document
        self.clear()

    def notify_external_undo(self, document: Optional[str] = None):
        """
        The host undid or redid history the tracker cannot follow.

        Pending changes are discarded; when the host passes its current text,
        the tracker adopts it.
        """
        dropped = len(self._changes)
        if document is not None:
            self.reset(document)
        else:
            self.clear()
        logger.info(f"External undo: discarded {dropped} pending changes")

    def _retire_all(self):
        for record in self._changes.records:
            self._remember(record.id, None)
        self._changes.records = []
        self._last_record_id = None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _validate(self, op: EditOp, length: Optional[int] = None):
        if not isinstance(op, EditOp):
            raise ValidationError("edit must be an EditOp", field='op')
        for name in ('start', 'end'):
            value = getattr(op, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer", field=name)
        if not isinstance(op.text, str):
            raise ValidationError("text must be a string", field='text')
        if length is None:
            length = len(self._document)
        if not 0 <= op.start <= op.end <= length:
            raise ValidationError(
                f"Range [{op.start}, {op.end}) outside document of length {length}",
                field='range', start=op.start, end=op.end, length=length
            )

    def _new_id(self) -> str:
        change_id = f"tc-{str(uuid.uuid4())[:8]}"
        while change_id in self._history or self._changes.find(change_id):
            change_id = f"tc-{str(uuid.uuid4())[:8]}"
        return change_id

    def _remember(self, change_id: str, status: Optional[ChangeStatus]):
        """Keep the outcome of a finished change, forgetting the oldest past the limit."""
        self._history[change_id] = status
        self._history.move_to_end(change_id)
        limit = self.config.tracking.max_remembered_ids
        while len(self._history) > limit:
            self._history.popitem(last=False)

    def apply_edits(self, ops: Iterable[EditOp], author: Optional[Author] = None):
        """
        Apply a batch of edits as one transaction.

        Every op is checked against the document length it will see once the
        ops before it have been applied; nothing changes unless all of them
        are valid.

        Raises:
            ValidationError: Any op in the batch is malformed
        """
        ops = list(ops)
        if author is not None and not isinstance(author, Author):
            raise ValidationError("author must be an Author", field='author')
        length = len(self._document)
        for index, op in enumerate(ops):
            try:
                self._validate(op, length)
            except ValidationError as e:
                e.details['index'] = index
                raise
            if op.source is not EditSource.REVERSAL:
                length += len(op.text) - (op.end - op.start)

        for op in ops:
            self.apply_edit(op, author)

    def apply_edit(self, op: EditOp, author: Optional[Author] = None):
        """
        Apply one edit to the document and record it.

        Args:
            op: Replace [op.start, op.end) with op.text
            author: Author of this edit; the tracker's author when omitted

        Raises:
            ValidationError: The range is reversed or outside the document
        """
        self._validate(op)
        if author is not None and not isinstance(author, Author):
            raise ValidationError("author must be an Author", field='author')

        if op.source is EditSource.REVERSAL:
            logger.debug(f"Ignoring reversal edit [{op.start}, {op.end})")
            return
        if op.start == op.end and not op.text:
            return

        if op.source in (EditSource.UNDO, EditSource.REDO):
            self._document = self._document[:op.start] + op.text + self._document[op.end:]
            self.notify_external_undo()
            return

        author = author or self.author
        now = self._clock()
        record = self.enabled

        deletion = None
        if op.start < op.end:
            deletion = self._apply_deletion(op.start, op.end, author, now, record)
        if op.text:
            self._apply_insertion(op.start, op.text, author, now, record, deletion)
        elif deletion is not None:
            self._coalesce(deletion)

        self._changes.bump()
        logger.debug(f"Applied edit [{op.start}, {op.end}) +{len(op.text)} chars; "
                     f"{len(self._changes)} pending", author=author.id)

    def _apply_deletion(self, start: int, end: int, author: Author, now: int,
                        record: bool) -> Optional[ChangeRecord]:
        """
        Remove [start, end) from the document.

        Pending inserted text inside the range is simply trimmed away; only
        original text becomes a new deletion. Deleted text of changes
        strictly inside the range joins the new deletion in document order.
        """
        doc = self._document
        length = end - start
        pieces = []
        pos = start
        kept = []
        before = 0

        for rec in self._changes.records:
            rs, r_end = rec.start, rec.end
            overlaps = rs < end and r_end > start
            inside = start < rs < end
            if not (overlaps or inside):
                if rs <= start:
                    before += 1
                else:
                    _shift(rec, -length)
                kept.append(rec)
                continue

            seg = max(rs, start)
            if seg > pos:
                pieces.append(doc[pos:seg])
                pos = seg
            if inside and record:
                pieces.append(rec.deleted_text)
                rec.deleted_text = ""
            if r_end > pos:
                pos = min(r_end, end)

            left = doc[rs:start] if rs < start else ""
            right = doc[end:r_end] if r_end > end else ""
            rec.inserted_text = left + right
            new_start = min(rs, start)
            _place(rec, new_start, new_start + len(rec.inserted_text))

            if rec.deleted_text or rec.inserted_text:
                if rs <= start:
                    before += 1
                kept.append(rec)
            else:
                self._remember(rec.id, None)
                logger.debug(f"Change {rec.id} cancelled by deletion")
        if pos < end:
            pieces.append(doc[pos:end])

        self._document = doc[:start] + doc[end:]
        self._changes.records = kept

        deleted = ''.join(pieces)
        if not record or not deleted:
            return None

        change = ChangeRecord(
            id=self._new_id(),
            kind=ChangeKind.DELETION,
            range=TextRange(start, start),
            original_range=TextRange(start, end),
            deleted_text=deleted,
            author=author,
            timestamp=now
        )
        kept.insert(before, change)
        return change

    def _apply_insertion(self, pos: int, text: str, author: Author, now: int,
                         record: bool, deletion: Optional[ChangeRecord]):
        """
        Insert text at pos.

        Typing inside one's own pending insertion extends it; typing inside
        someone else's splits it around the new text.
        """
        n = len(text)
        records = self._changes.records
        self._document = self._document[:pos] + text + self._document[pos:]

        host = next((r for r in records if r.start < pos < r.end), None)
        if host is not None and record and host.author == author:
            offset = pos - host.start
            host.inserted_text = host.inserted_text[:offset] + text + host.inserted_text[offset:]
            for rec in records:
                if rec is not host and rec.start > pos:
                    _shift(rec, n)
            _place(host, host.start, host.end + n)
            host.timestamp = now
            self._last_record_id = host.id
            return

        if host is not None:
            offset = pos - host.start
            tail = ChangeRecord(
                id=self._new_id(),
                kind=ChangeKind.INSERTION,
                range=TextRange(pos, pos + len(host.inserted_text) - offset),
                original_range=host.original_range,
                inserted_text=host.inserted_text[offset:],
                author=host.author,
                timestamp=host.timestamp
            )
            host.inserted_text = host.inserted_text[:offset]
            _place(host, host.start, pos)
            records.insert(records.index(host) + 1, tail)

        # Everything after the insertion point in document order moves right;
        # deletions anchored at pos stay in front unless they follow `deletion`
        after_deletion = False
        for rec in records:
            if rec is deletion:
                after_deletion = True
                continue
            if rec.start > pos or (rec.start == pos and (rec.end > pos or after_deletion)):
                _shift(rec, n)

        if not record:
            return

        if deletion is not None:
            deletion.inserted_text = text
            _place(deletion, pos, pos + n)
            change = deletion
        else:
            change = ChangeRecord(
                id=self._new_id(),
                kind=ChangeKind.INSERTION,
                range=TextRange(pos, pos + n),
                original_range=TextRange(pos, pos),
                inserted_text=text,
                author=author,
                timestamp=now
            )
            index = next((i for i, r in enumerate(records) if r.start > pos), len(records))
            records.insert(index, change)
        self._coalesce(change)

    def _coalesce(self, change: ChangeRecord):
        """
        Merge a fresh change into the one recorded just before it.

        Both must share an author, fall within the coalescing window, sit
        next to each other in the document and describe the same kind of
        edit. Deleted text is ordered by comparing where each deletion
        started before it was applied: a backspace run grows leftward, a
        forward-delete run grows rightward.
        """
        cfg = self.config.tracking
        previous = self._changes.find(self._last_record_id) if self._last_record_id else None
        self._last_record_id = change.id
        if previous is None or previous is change:
            return
        if previous.author != change.author:
            return
        if change.timestamp - previous.timestamp >= cfg.coalesce_window_ms:
            return

        records = self._changes.records
        i_prev, i_change = records.index(previous), records.index(change)
        if abs(i_prev - i_change) != 1:
            return
        first, second = (previous, change) if i_prev < i_change else (change, previous)

        if change.kind is ChangeKind.INSERTION and previous.inserted_text:
            if first.end != second.start or second.deleted_text:
                return
            previous.inserted_text = first.inserted_text + second.inserted_text
            _place(previous, first.start, second.end)
            if previous.kind is ChangeKind.INSERTION:
                origin = first.original_range.start
                previous.original_range = TextRange(origin, origin)
        elif change.kind is ChangeKind.DELETION and previous.kind is ChangeKind.DELETION:
            if first.start != second.start:
                return
            limit = cfg.max_deletion_merge_chars
            if len(previous.deleted_text) > limit or len(change.deleted_text) > limit:
                return
            single = len(previous.deleted_text) == 1 and len(change.deleted_text) == 1
            close = abs(change.original_range.start - previous.original_range.start) <= cfg.deletion_distance
            if not (single or close):
                return
            backward = change.original_range.start < previous.original_range.start
            if backward != (first is change):
                return
            previous.deleted_text = first.deleted_text + second.deleted_text
            origin = min(change.original_range.start, previous.original_range.start)
            previous.original_range = TextRange(origin, origin + len(previous.deleted_text))
            _place(previous, previous.start)
        else:
            return

        records.remove(change)
        self._remember(change.id, None)
        previous.timestamp = change.timestamp
        self._last_record_id = previous.id
        logger.debug(f"Coalesced {change.id} into {previous.id}")

    # ------------------------------------------------------------------
    # Accept / reject
    # ------------------------------------------------------------------

    def _pending(self, change_id: str, requested: ChangeStatus) -> Optional[ChangeRecord]:
        """Look up a pending change; None when the request is a no-op."""
        record = self._changes.find(change_id)
        if record is not None:
            return record
        if change_id in self._history:
            current = self._history[change_id]
            if current is None or current is requested:
                return None
            raise InvalidTransitionError(change_id, current.value, requested.value)
        raise UnknownChangeError(change_id)

    def _resolve(self, record: ChangeRecord, status: ChangeStatus):
        record.status = status
        self._remember(record.id, status)
        if self._last_record_id == record.id:
            self._last_record_id = None

    def accept(self, change_id: str) -> DocumentPatch:
        """
        Keep one change as it stands in the document.

        Returns:
            An empty DocumentPatch; accepting never edits the text

        Raises:
            UnknownChangeError: The id was never issued, or has been forgotten
            InvalidTransitionError: The change was already rejected
        """
        record = self._pending(change_id, ChangeStatus.ACCEPTED)
        if record is None:
            return DocumentPatch()
        self._changes.records.remove(record)
        self._resolve(record, ChangeStatus.ACCEPTED)
        self._changes.bump()
        logger.info(f"Accepted change {change_id}", kind=record.kind.value)
        return DocumentPatch(change_ids=[change_id])

    def reject(self, change_id: str) -> DocumentPatch:
        """
        Undo one change: its inserted text is removed and its deleted text restored.

        Returns:
            DocumentPatch with a single replace step

        Raises:
            UnknownChangeError: The id was never issued, or has been forgotten
            InvalidTransitionError: The change was already accepted
        """
        record = self._pending(change_id, ChangeStatus.REJECTED)
        if record is None:
            return DocumentPatch()

        records = self._changes.records
        index = records.index(record)
        step = PatchStep(record.start, record.end, record.deleted_text)
        delta = len(record.deleted_text) - len(record.inserted_text)
        self._document = self._document[:step.start] + step.text + self._document[step.end:]
        for rec in records[index + 1:]:
            _shift(rec, delta)
        records.remove(record)
        self._resolve(record, ChangeStatus.REJECTED)
        self._changes.bump()
        logger.info(f"Rejected change {change_id}", kind=record.kind.value)
        return DocumentPatch(steps=[step], change_ids=[change_id])

    def accept_all(self) -> DocumentPatch:
        """Keep every pending change. Calling it again is a no-op."""
        records = self._changes.records
        ids = [r.id for r in records]
        for record in records:
            self._resolve(record, ChangeStatus.ACCEPTED)
        self._changes.records = []
        self._last_record_id = None
        if ids:
            self._changes.bump()
            logger.info(f"Accepted all changes ({len(ids)})")
        return DocumentPatch(change_ids=ids)

    def reject_all(self) -> DocumentPatch:
        """
        Undo every pending change, restoring the original document.

        Inserted text is removed from the end of the document backwards,
        then deleted text is restored from the start forwards; each step is
        expressed in the coordinates left by the step before it.
        """
        records = self._changes.records
        ids = [r.id for r in records]
        steps = []
        doc = self._document

        for index in range(len(records) - 1, -1, -1):
            record = records[index]
            if not record.inserted_text:
                continue
            steps.append(PatchStep(record.start, record.end, ""))
            doc = doc[:record.start] + doc[record.end:]
            length = len(record.inserted_text)
            for rec in records[index + 1:]:
                _shift(rec, -length)
            record.range = TextRange(record.start, record.start)

        for index, record in enumerate(records):
            if not record.deleted_text:
                continue
            steps.append(PatchStep(record.start, record.start, record.deleted_text))
            doc = doc[:record.start] + record.deleted_text + doc[record.start:]
            for rec in records[index + 1:]:
                _shift(rec, len(record.deleted_text))

        self._document = doc
        for record in records:
            self._resolve(record, ChangeStatus.REJECTED)
        self._changes.records = []
        self._last_record_id = None
        if ids:
            self._changes.bump()
            logger.info(f"Rejected all changes ({len(ids)}) in {len(steps)} steps")
        return DocumentPatch(steps=steps, change_ids=ids)
