"""
Revision Engine v1.0.0
======================
Attributed change tracking for text documents.

Features:
- Token-level comparison of two snapshots (word, sentence or line)
- Move detection, replacement grouping, substantive/stylistic classification
- Paragraph alignment that tolerates reordering
- Live tracking of an edit stream with coalescing and position remapping
- Accept/reject of single changes or all changes, as reversal patches
"""

from .routes import revision_blueprint
from .differ import (
    SnapshotDiffer,
    diff_snapshots,
    compute_edit_script,
    align_chunks,
    extract_chunks,
    extract_paragraphs,
    change_summary,
    compare,
    merge
)
from .tracker import ChangeTracker
from .sessions import SessionManager, get_session_manager
from .similarity import levenshtein, similarity, normalize, normalized_similarity, strip_markup
from .models import (
    AlignmentPair,
    Author,
    AuthorKind,
    ChangeKind,
    ChangeRecord,
    ChangeSet,
    ChangeStatus,
    Classification,
    DiffReport,
    DiffStats,
    DocumentPatch,
    EditOp,
    EditSource,
    EditSpan,
    Granularity,
    PatchStep,
    SpanOp,
    TextRange
)

__version__ = "1.0.0"
__all__ = [
    'revision_blueprint',
    'SnapshotDiffer',
    'diff_snapshots',
    'compute_edit_script',
    'align_chunks',
    'extract_chunks',
    'extract_paragraphs',
    'change_summary',
    'compare',
    'merge',
    'ChangeTracker',
    'SessionManager',
    'get_session_manager',
    'levenshtein',
    'similarity',
    'normalize',
    'normalized_similarity',
    'strip_markup',
    'AlignmentPair',
    'Author',
    'AuthorKind',
    'ChangeKind',
    'ChangeRecord',
    'ChangeSet',
    'ChangeStatus',
    'Classification',
    'DiffReport',
    'DiffStats',
    'DocumentPatch',
    'EditOp',
    'EditSource',
    'EditSpan',
    'Granularity',
    'PatchStep',
    'SpanOp',
    'TextRange'
]
