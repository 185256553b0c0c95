"""
Data-consistency layer for notes.

Keeps the note document, its tag pivots and usage counters, its embedded
and collection attachment metadata, and its revision chain eventually
consistent on a store without multi-document transactions.
"""

from consistency.attachments import AttachmentManager, UploadedFile
from consistency.maintenance import TagMaintenance
from consistency.notes import NoteService
from consistency.plans import PlanPolicy, PlanService, SubscriptionPlanService
from consistency.reader import NotePage, NoteReader
from consistency.results import StepResult, SyncError, SyncReport
from consistency.revisions import RevisionTracker
from consistency.signing import AccessTokenSigner
from consistency.tag_sync import TagSynchronizer

__all__ = [
    "AccessTokenSigner",
    "AttachmentManager",
    "NotePage",
    "NoteReader",
    "NoteService",
    "PlanPolicy",
    "PlanService",
    "RevisionTracker",
    "StepResult",
    "SubscriptionPlanService",
    "SyncError",
    "SyncReport",
    "TagMaintenance",
    "TagSynchronizer",
    "UploadedFile",
]
