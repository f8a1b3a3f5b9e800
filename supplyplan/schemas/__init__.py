from .fo_suggestion import (
    CoverageDemandSegment,
    FoSuggestion,
    FoSuggestionRationale,
    FoSuggestionRequest,
    MinDohEtaResult,
    SuggestionConfidence,
    SuggestionStatus,
)
from .forecast_impact import (
    AbcClass,
    FoConflictType,
    FoImpactConflictRow,
    ForecastImpactRequest,
    ForecastImpactResult,
    ForecastImpactSummary,
    ForecastSkuImpactRow,
    ImpactWindows,
)
from .forecast_version import (
    ForecastEntry,
    ForecastVersion,
    ForecastVersionCreate,
    ForecastVersionList,
    ForecastVersionStats,
    ForecastVersionUpdate,
    VersionOpResult,
)
from .po_arrival import PoArrivalTask, PoArrivalTaskResponse
from .workspace import WorkspaceStateRead, WorkspaceStateWrite
