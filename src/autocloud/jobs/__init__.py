"""Job state tracking for the automation cloud client."""

from .fetcher import CallableJobFetcher, HttpJobFetcher, JobFetcher  # noqa: F401
from .models import TERMINAL_STATES, JobSnapshot, JobState  # noqa: F401
from .sources import PollingSource, SnapshotSource, StreamingSource  # noqa: F401
from .tracker import JobTracker, Subscription, TrackerSession, TrackerState  # noqa: F401
