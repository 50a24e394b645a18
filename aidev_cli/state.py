"""Persistent working state for long-running tasks.

The state lives in ``<project>/.aidev/session/internal_state.yaml`` and has
two layers:

* **code_context**: facts taken from an impact report.  They can always be
  recomputed, so a refresh replaces them wholesale.
* **task_context**: objectives, facts, questions, constraints and decisions
  recorded while working.  They accumulate and are pruned oldest-first
  once the serialized state exceeds its token budget.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Literal, Optional, TypeVar

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import PROJECT_DIR_NAME
from .errors import ConfigError
from .models import ImpactReport
from .tokens import GenericTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)

STATE_VERSION = "1.0.0"
SESSION_DIR = "session"
STATE_FILE = "internal_state.yaml"
DEFAULT_STATE_BUDGET = 50000

# how many of each kind survive pruning before they become candidates
KEEP_RESOLVED_OBJECTIVES = 5
KEEP_KNOWN_FACTS = 20
KEEP_OPEN_QUESTIONS = 10
KEEP_DECISIONS = 15
MAX_PRUNED_PER_RUN = 100

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ===================================================================
# Code context (facts layer)
# ===================================================================

class ChangedFileState(BaseModel):
    path: str
    change_type: Literal["added", "modified", "deleted", "renamed"]
    old_path: Optional[str] = None


class ImpactEdgeState(BaseModel):
    source: str
    target: str
    type: Literal["direct", "transitive"]
    confidence: float = Field(ge=0, le=1)
    distance: int = Field(ge=0)
    reason: str


class FileImpactEdgeState(BaseModel):
    source: str
    target: str
    type: str
    confidence: float = Field(ge=0, le=1)
    detection_method: Literal["declared", "ast", "regex", "heuristic"]
    distance: int = Field(ge=0)


class ImpactSummaryState(BaseModel):
    files_changed: int = Field(ge=0)
    components_affected: int = Field(ge=0)
    files_affected: int = Field(ge=0)
    confidence_mean: float = Field(ge=0, le=1)


class CodeContext(BaseModel):
    changed_files: List[ChangedFileState]
    affected_components: List[str]
    affected_files: List[str]
    impact_edges: List[ImpactEdgeState]
    file_impact_edges: List[FileImpactEdgeState]
    summary: ImpactSummaryState
    as_of: datetime
    git_ref: Optional[str] = None

    @classmethod
    def from_report(cls, report: ImpactReport, git_ref: Optional[str] = None) -> "CodeContext":
        return cls(
            changed_files=[
                ChangedFileState(path=c.path, change_type=c.change_type, old_path=c.old_path)
                for c in report.changed_files
            ],
            affected_components=list(report.affected_components),
            affected_files=list(report.affected_files),
            impact_edges=[
                ImpactEdgeState(
                    source=e.source, target=e.target, type=e.type,
                    confidence=e.confidence, distance=e.distance, reason=e.reason,
                )
                for e in report.impact_edges
            ],
            file_impact_edges=[
                FileImpactEdgeState(
                    source=e.source, target=e.target, type=e.type,
                    confidence=e.confidence, detection_method=e.detection_method,
                    distance=e.distance,
                )
                for e in report.file_impact_edges
            ],
            summary=ImpactSummaryState(
                files_changed=report.summary.files_changed,
                components_affected=report.summary.components_affected,
                files_affected=report.summary.files_affected,
                confidence_mean=report.summary.confidence_mean,
            ),
            as_of=_now(),
            git_ref=git_ref,
        )


# ===================================================================
# Task context (reasoning layer)
# ===================================================================

class Objective(BaseModel):
    id: str = Field(default_factory=_new_id)
    goal: str
    status: Literal["active", "resolved", "blocked", "deferred"] = "active"
    created_at: datetime = Field(default_factory=_now)
    resolved_at: Optional[datetime] = None


class KnownFact(BaseModel):
    id: str = Field(default_factory=_new_id)
    fact: str
    source: str
    confidence: Literal["certain", "likely", "uncertain"] = "likely"
    learned_at: datetime = Field(default_factory=_now)


class OpenQuestion(BaseModel):
    id: str = Field(default_factory=_new_id)
    question: str
    priority: Literal["high", "medium", "low"] = "medium"
    related_objective: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class Decision(BaseModel):
    id: str = Field(default_factory=_new_id)
    what: str
    why: str
    alternatives: List[str] = Field(default_factory=list)
    related_objective: Optional[str] = None
    decided_at: datetime = Field(default_factory=_now)


class Constraint(BaseModel):
    id: str = Field(default_factory=_new_id)
    constraint: str
    type: Literal["hard", "soft", "preference"] = "soft"
    source: str = "user"


class TaskContext(BaseModel):
    objectives: List[Objective] = Field(default_factory=list)
    known_facts: List[KnownFact] = Field(default_factory=list)
    open_questions: List[OpenQuestion] = Field(default_factory=list)
    constraints: List[Constraint] = Field(default_factory=list)
    decisions: List[Decision] = Field(default_factory=list)
    next_action: Optional[str] = None


class StateBudget(BaseModel):
    max_tokens: int = Field(default=DEFAULT_STATE_BUDGET, gt=0)
    current_tokens: int = Field(default=0, ge=0)
    last_pruned: Optional[datetime] = None


class InternalState(BaseModel):
    version: Literal["1.0.0"] = STATE_VERSION
    code_context: Optional[CodeContext] = None
    task_context: TaskContext = Field(default_factory=TaskContext)
    budget: StateBudget = Field(default_factory=StateBudget)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    session_id: str = Field(default_factory=_new_id)


def estimate_state_tokens(state: InternalState, estimator: Optional[TokenEstimator] = None) -> int:
    """Token estimate of the state's JSON form."""
    estimator = estimator or GenericTokenEstimator()
    return estimator.estimate_text(state.model_dump_json())


@dataclass
class PruneResult:
    pruned_items: int
    tokens_before: int
    tokens_after: int


# ===================================================================
# Manager
# ===================================================================

class StateManager:
    """Load, mutate and persist the internal state of one project.

    Every mutating call saves immediately.  A state file that cannot be
    parsed is logged and replaced by a fresh state on the next save.

    Args:
        project_root: Project whose ``.aidev/session/`` holds the state.
        max_tokens: Budget for a fresh state; also applied to a loaded one.
        estimator: Token estimator used for budgeting; generic by default.
    """

    def __init__(
        self,
        project_root: Path,
        max_tokens: Optional[int] = None,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        if max_tokens is not None and max_tokens <= 0:
            raise ConfigError(f"Invalid state budget: {max_tokens}. Must be a positive integer.")
        self.session_dir = project_root / PROJECT_DIR_NAME / SESSION_DIR
        self.state_file = self.session_dir / STATE_FILE
        self.max_tokens = max_tokens
        self.estimator = estimator or GenericTokenEstimator()
        self._state: Optional[InternalState] = None

    def exists(self) -> bool:
        return self.state_file.exists()

    def load(self) -> InternalState:
        if self._state is not None:
            return self._state

        state = None
        if self.state_file.exists():
            try:
                data = yaml.safe_load(self.state_file.read_text(encoding="utf-8"))
                state = InternalState.model_validate(data)
            except (yaml.YAMLError, ValidationError, OSError) as exc:
                logger.warning("Could not parse %s, starting fresh: %s", self.state_file, exc)

        if state is None:
            state = self._fresh()
        elif self.max_tokens is not None:
            state.budget.max_tokens = self.max_tokens
        self._state = state
        return state

    def save(self) -> Path:
        state = self.load()
        self.session_dir.mkdir(parents=True, exist_ok=True)
        state.updated_at = _now()
        state.budget.current_tokens = self.estimate_tokens()
        payload = state.model_dump(mode="json")
        self.state_file.write_text(
            yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, width=120),
            encoding="utf-8",
        )
        return self.state_file

    def reset(self) -> InternalState:
        self._state = self._fresh()
        self.save()
        return self._state

    def estimate_tokens(self) -> int:
        return estimate_state_tokens(self.load(), self.estimator)

    def _fresh(self) -> InternalState:
        state = InternalState()
        if self.max_tokens is not None:
            state.budget.max_tokens = self.max_tokens
        return state

    # ------------------------------------------------------------------
    # Code context
    # ------------------------------------------------------------------

    def refresh_code_context(self, report: ImpactReport, git_ref: Optional[str] = None) -> CodeContext:
        """Replace the facts layer with *report*."""
        state = self.load()
        state.code_context = CodeContext.from_report(report, git_ref)
        self.save()
        return state.code_context

    def clear_code_context(self) -> None:
        self.load().code_context = None
        self.save()

    # ------------------------------------------------------------------
    # Task context
    # ------------------------------------------------------------------

    def _add(self, factory: Callable[[], T], bucket: List[T]) -> T:
        try:
            item = factory()
        except ValidationError as exc:
            raise ConfigError(f"Invalid state entry: {exc}") from exc
        bucket.append(item)
        self.save()
        return item

    def add_objective(self, goal: str) -> Objective:
        tc = self.load().task_context
        return self._add(lambda: Objective(goal=goal), tc.objectives)

    def resolve_objective(self, objective_id: str) -> Optional[Objective]:
        """Mark the objective matching *objective_id* (or a unique prefix) resolved."""
        objective = _find_by_id(self.load().task_context.objectives, objective_id)
        if objective is None:
            return None
        objective.status = "resolved"
        objective.resolved_at = _now()
        self.save()
        return objective

    def add_known_fact(self, fact: str, source: str = "user", confidence: str = "likely") -> KnownFact:
        tc = self.load().task_context
        return self._add(
            lambda: KnownFact(fact=fact, source=source, confidence=confidence),
            tc.known_facts,
        )

    def add_open_question(
        self,
        question: str,
        priority: str = "medium",
        related_objective: Optional[str] = None,
    ) -> OpenQuestion:
        tc = self.load().task_context
        return self._add(
            lambda: OpenQuestion(question=question, priority=priority, related_objective=related_objective),
            tc.open_questions,
        )

    def remove_question(self, question_id: str) -> bool:
        tc = self.load().task_context
        question = _find_by_id(tc.open_questions, question_id)
        if question is None:
            return False
        tc.open_questions = [q for q in tc.open_questions if q.id != question.id]
        self.save()
        return True

    def add_decision(
        self,
        what: str,
        why: str,
        alternatives: Optional[List[str]] = None,
        related_objective: Optional[str] = None,
    ) -> Decision:
        tc = self.load().task_context
        return self._add(
            lambda: Decision(
                what=what, why=why,
                alternatives=list(alternatives or []),
                related_objective=related_objective,
            ),
            tc.decisions,
        )

    def add_constraint(self, constraint: str, type: str = "soft", source: str = "user") -> Constraint:
        tc = self.load().task_context
        return self._add(lambda: Constraint(constraint=constraint, type=type, source=source), tc.constraints)

    def set_next_action(self, action: Optional[str]) -> None:
        self.load().task_context.next_action = action or None
        self.save()

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def is_over_budget(self) -> bool:
        return self.estimate_tokens() > self.load().budget.max_tokens

    def prune(self) -> PruneResult:
        """Drop the oldest low-value reasoning until the state fits its budget.

        Order: resolved objectives beyond the newest five, known facts beyond
        twenty, low-priority questions, questions beyond ten, then decisions
        beyond fifteen.  Active objectives, constraints and the code context
        are never pruned.
        """
        state = self.load()
        tc = state.task_context
        tokens_before = self.estimate_tokens()
        pruned = 0

        while self.estimate_tokens() > state.budget.max_tokens and pruned < MAX_PRUNED_PER_RUN:
            resolved = [o for o in tc.objectives if o.status == "resolved"]
            if len(resolved) > KEEP_RESOLVED_OBJECTIVES:
                oldest = min(resolved, key=lambda o: o.resolved_at or o.created_at)
                tc.objectives = [o for o in tc.objectives if o.id != oldest.id]
            elif len(tc.known_facts) > KEEP_KNOWN_FACTS:
                oldest = min(tc.known_facts, key=lambda f: f.learned_at)
                tc.known_facts = [f for f in tc.known_facts if f.id != oldest.id]
            elif any(q.priority == "low" for q in tc.open_questions):
                first_low = next(q for q in tc.open_questions if q.priority == "low")
                tc.open_questions = [q for q in tc.open_questions if q.id != first_low.id]
            elif len(tc.open_questions) > KEEP_OPEN_QUESTIONS:
                oldest = min(tc.open_questions, key=lambda q: q.created_at)
                tc.open_questions = [q for q in tc.open_questions if q.id != oldest.id]
            elif len(tc.decisions) > KEEP_DECISIONS:
                oldest = min(tc.decisions, key=lambda d: d.decided_at)
                tc.decisions = [d for d in tc.decisions if d.id != oldest.id]
            else:
                break
            pruned += 1

        state.budget.last_pruned = _now()
        self.save()
        if pruned:
            logger.info("Pruned %d state entries (%d -> %d tokens)", pruned, tokens_before, state.budget.current_tokens)
        return PruneResult(pruned, tokens_before, state.budget.current_tokens)


def _find_by_id(items: List[T], item_id: str) -> Optional[T]:
    """Exact id match, else the single item whose id starts with *item_id*."""
    if not item_id:
        return None
    for item in items:
        if item.id == item_id:
            return item
    matches = [item for item in items if item.id.startswith(item_id)]
    return matches[0] if len(matches) == 1 else None
