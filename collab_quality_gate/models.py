"""Data models for the Quality Gate server."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ViolationKind(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ViolationCategory(str, Enum):
    COMPLEXITY = "complexity"
    MAINTAINABILITY = "maintainability"
    STANDARDS = "standards"
    SECURITY = "security"
    SOLID = "solid"
    VALIDATION = "validation"
    ERROR_HANDLING = "error_handling"
    TESTING = "testing"
    PERFORMANCE = "performance"


class Violation(BaseModel):
    """A single static-analysis finding. Produced externally, never mutated."""

    model_config = ConfigDict(frozen=True)

    kind: ViolationKind
    file: str
    line: int = 0
    column: int = 0
    message: str = ""
    rule: str = ""
    category: ViolationCategory = ViolationCategory.STANDARDS
    severity: int = Field(default=1, ge=0)
    source_analyzer: str = "external"


class FileMetrics(BaseModel):
    cyclomatic_complexity: float = Field(default=0, ge=0)
    cognitive_complexity: float = Field(default=0, ge=0)
    lines_of_code: int = Field(default=0, ge=0)
    maintainability_index: float = Field(default=100, ge=0)
    class_count: int = Field(default=0, ge=0)
    method_count: int = Field(default=0, ge=0)
    function_count: int = Field(default=0, ge=0)
    halstead_volume: float = Field(default=0, ge=0)


class HealthScore(BaseModel):
    value: int = Field(ge=0, le=100)
    raw: float  # unrounded, kept for trend comparison
    weighted_severity: float = 0.0
    metrics_factor: float = 1.0


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARNING = "WARNING"
    FAIL = "FAIL"


class QualityCheckResult(BaseModel):
    category: str
    status: CheckStatus
    message: str
    details: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class ReviewScope(str, Enum):
    COMPREHENSIVE = "comprehensive"
    DIAGNOSTIC = "diagnostic"
    SECURITY_ONLY = "security_only"
    QUALITY_ONLY = "quality_only"


class CleanupMode(str, Enum):
    ANALYSIS_ONLY = "analysis_only"
    SAFE = "safe"
    AGGRESSIVE = "aggressive"


class RiskAction(str, Enum):
    IMMEDIATE_SEARCH = "IMMEDIATE_SEARCH"
    VERIFY = "VERIFY"
    MONITOR = "MONITOR"
    NONE = "NONE"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Intervention(str, Enum):
    NONE = "NONE"
    MONITOR = "MONITOR"
    VERIFY = "VERIFY"
    FORCE_SEARCH = "FORCE_SEARCH"
    PREVENT_CHEATING = "PREVENT_CHEATING"


class RiskVerdict(BaseModel):
    """General conversational risk: uncertainty, research intent, and friends."""

    flags: dict[str, bool] = Field(default_factory=dict)
    score: int = Field(default=0, ge=0)
    detected_patterns: list[str] = Field(default_factory=list)
    intervention_required: bool = False
    recommended_action: RiskAction = RiskAction.NONE


class ResponseRiskVerdict(BaseModel):
    flags: dict[str, bool] = Field(default_factory=dict)
    score: int = Field(default=0, ge=0)
    detected_patterns: list[str] = Field(default_factory=list)
    intervention_required: bool = False


class CheatingVerdict(BaseModel):
    """Quality-cheating risk, including the tool-call history signal."""

    flags: dict[str, bool] = Field(default_factory=dict)
    score: int = Field(default=0, ge=0)
    detected_patterns: list[str] = Field(default_factory=list)
    intervention_required: bool = False


class ConversationAssessment(BaseModel):
    risk: RiskVerdict
    response_risk: ResponseRiskVerdict
    cheating: CheatingVerdict
    overall_risk: RiskLevel = RiskLevel.LOW
    intervention: Intervention = Intervention.NONE
    reason: str = ""


class ProblemType(str, Enum):
    REAL_ISSUE = "real_issue"
    TOOL_ARTIFACT = "tool_artifact"
    ACCEPTABLE_COMPLEXITY = "acceptable_complexity"
    BUSINESS_LOGIC = "business_logic"


class FunctionalImpact(str, Enum):
    NONE = "none"
    LOW = "low"
    HIGH = "high"
    BREAKING = "breaking"


class ImprovementNecessity(str, Enum):
    CRITICAL = "critical"
    BENEFICIAL = "beneficial"
    OPTIONAL = "optional"
    UNNECESSARY = "unnecessary"


class Strategy(str, Enum):
    IMMEDIATE_FIX = "immediate_fix"
    GRADUAL_REFACTOR = "gradual_refactor"
    MONITOR_ONLY = "monitor_only"
    NO_ACTION = "no_action"


class Decision(BaseModel):
    problem_type: ProblemType
    functional_impact: FunctionalImpact
    improvement_necessity: ImprovementNecessity
    strategy: Strategy
    reasoning: str
    risk_assessment: str
    recommended_actions: list[str] = Field(default_factory=list)
    preventive_constraints: list[str] = Field(default_factory=list)
    cheating_prevented: bool = False


class LayoutFindingKind(str, Enum):
    DUPLICATE_BASENAME = "duplicate_basename"
    MISPLACED_TEST = "misplaced_test"
    MISSING_TEST_DIRECTORY = "missing_test_directory"
    ISOLATED_DIRECTORY = "isolated_directory"
    MULTIPLE_TEST_DIRECTORIES = "multiple_test_directories"


class LayoutFinding(BaseModel):
    kind: LayoutFindingKind
    severity: str = "medium"  # "high" | "medium" | "low"
    message: str
    paths: list[str] = Field(default_factory=list)
    suggestion: str = ""


class CleanupResult(BaseModel):
    mode: CleanupMode = CleanupMode.ANALYSIS_ONLY
    files_analyzed: int = 0
    files_removed: int = 0
    removed_files: list[str] = Field(default_factory=list)
    candidates: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    findings: list[LayoutFinding] = Field(default_factory=list)
    security_rejected: bool = False
    timed_out: bool = False


class RelatedFileType(str, Enum):
    TO_MODIFY = "to_modify"
    REFERENCE = "reference"
    CREATE = "create"
    DEPENDENCY = "dependency"
    OTHER = "other"


class RelatedFile(BaseModel):
    path: str
    type: RelatedFileType = RelatedFileType.TO_MODIFY


class TaskDescriptor(BaseModel):
    project: str = "default"
    project_root: str
    related_files: list[RelatedFile] = Field(default_factory=list)
    review_scope: ReviewScope = ReviewScope.COMPREHENSIVE
    cleanup_mode: CleanupMode = CleanupMode.ANALYSIS_ONLY
    description: str = ""


class ViolationSummary(BaseModel):
    total: int = 0
    errors: int = 0
    warnings: int = 0
    infos: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_file: dict[str, int] = Field(default_factory=dict)


class AnalysisReport(BaseModel):
    passed: bool
    health_score: HealthScore
    summary: ViolationSummary = Field(default_factory=ViolationSummary)
    checks: list[QualityCheckResult] = Field(default_factory=list)
    overall_score: int = 100
    files_checked: list[str] = Field(default_factory=list)
    missing_files: list[str] = Field(default_factory=list)
    metrics: Optional[FileMetrics] = None
    recommendations: list[str] = Field(default_factory=list)


class NextStep(str, Enum):
    PROCEED = "proceed"
    VERIFY = "verify"
    PLAN_FIX = "plan_fix"
    FIX_LAYOUT = "fix_layout"
    STOP = "stop"


class WorkflowContinuation(BaseModel):
    should_continue: bool
    next_step: NextStep
    reason: str


class GateReport(BaseModel):
    project: str
    assessment: Optional[ConversationAssessment] = None
    analysis: Optional[AnalysisReport] = None
    decision: Optional[Decision] = None
    cleanup: Optional[CleanupResult] = None
    continuation: Optional[WorkflowContinuation] = None
    error: Optional[str] = None
