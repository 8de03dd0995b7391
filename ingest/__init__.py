"""YouTube channel harvesting: resolve, list, fetch details and transcripts."""

from .pipeline import (
    ArtifactMissing,
    ArtifactText,
    ChannelNotFoundError,
    IngestionJob,
    IngestionPipeline,
    InvalidReferenceError,
    Item,
    JobState,
    PipelineFatalError,
    resolve_reference,
)
from .normalize import clamp_limit
from .source import CollectionDetails, CollectionSource, ItemPage
