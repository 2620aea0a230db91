"""
Models package for the UserPulse service.

This package contains the Pydantic DTOs shared by every stage.
"""

from .dtos import (
    AnalysisResult,
    Aspect,
    ContextPack,
    CoverageMeta,
    Job,
    JobStatus,
    JobStatusView,
    JobSubmitted,
    JobUpdate,
    MiningRequest,
    RankedRecord,
    RawRecord,
    RecordKind,
    ReportSections,
    SourcePost,
    SourceReply,
)

__all__ = [
    "AnalysisResult",
    "Aspect",
    "ContextPack",
    "CoverageMeta",
    "Job",
    "JobStatus",
    "JobStatusView",
    "JobSubmitted",
    "JobUpdate",
    "MiningRequest",
    "RankedRecord",
    "RawRecord",
    "RecordKind",
    "ReportSections",
    "SourcePost",
    "SourceReply",
]
