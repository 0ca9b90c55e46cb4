"""btagger - retention tags for database backups stored in S3.

Evaluates which retention periods a run falls on and drives the backup
pipelines that upload and tag the resulting objects.
"""

from .tags import Tag, TagSet, STANDARD_TAG
from .periods import PeriodDefinition, build_periods
from .evaluator import EvaluationContext, MatchDecision, evaluate, evaluate_periods
from .object_store import EndpointOverride, ObjectStoreClient
from .runner import ProcessRunner, ProcessResult, SubprocessRunner, DryRunRunner
from .errors import (
    BtaggerError,
    ConfigurationError,
    ClockAdjustmentError,
    ScheduleParseError,
    ExternalProcessError,
    ListParseError,
    TaggingError,
)

__all__ = [
    'Tag',
    'TagSet',
    'STANDARD_TAG',
    'PeriodDefinition',
    'build_periods',
    'EvaluationContext',
    'MatchDecision',
    'evaluate',
    'evaluate_periods',
    'EndpointOverride',
    'ObjectStoreClient',
    'ProcessRunner',
    'ProcessResult',
    'SubprocessRunner',
    'DryRunRunner',
    'BtaggerError',
    'ConfigurationError',
    'ClockAdjustmentError',
    'ScheduleParseError',
    'ExternalProcessError',
    'ListParseError',
    'TaggingError',
]
