"""
Migration readiness scoring.

Scores each POU on five dimensions (documentation, safety, complexity,
determinism and testability), folds them into a weighted overall score and a
letter grade, and lists the blockers that must be resolved before the POU can
be migrated. Scoring is a pure function of its inputs.
"""

import logging
from collections import Counter, defaultdict
from typing import Dict, List, Mapping, Optional, Sequence

from .config import ScoringWeights
from .models import (
    POU, BlockerCategory, DimensionScores, Docstring, ExtractionBundle, MigrationBlocker,
    MigrationReadinessReport, MigrationRisk, MigrationScore, POUKind, SafetyInterlock,
    SafetyType, SEVERITY_RANK, Severity, StateMachine, VarSection,
)
from .utils import belongs_to, involves

logger = logging.getLogger(__name__)

GRADE_THRESHOLDS = [
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
]
GRADES = ["A", "B", "C", "D", "F"]

UNDOCUMENTED_STATE_LIMIT = 0.5
MIN_DOCUMENTATION_SCORE = 30.0
MIN_COMPLEXITY_SCORE = 30.0
MAX_RISKS = 10

BASE_EFFORT_HOURS = {
    POUKind.PROGRAM: 8.0,
    POUKind.FUNCTION_BLOCK: 4.0,
    POUKind.FUNCTION: 2.0,
}

WARNING_PENALTIES = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
}


def score_to_grade(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def _clamp(value: float) -> float:
    return float(max(0.0, min(100.0, value)))


def _comment_ratio(variables) -> float:
    if not variables:
        return 1.0
    return sum(1 for v in variables if v.comment) / len(variables)


class MigrationScorer:
    """
    Computes MigrationScore objects for POUs.

    Args:
        weights: Dimension weights; defaults to ScoringWeights()
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()
        self._normalized = self.weights.normalized()

    def score(self, pou: POU, bundle: ExtractionBundle) -> MigrationScore:
        """
        Score one POU against the extraction results of its project.

        Args:
            pou: POU to score
            bundle: Extraction results; only findings owned by ``pou`` count

        Returns:
            MigrationScore with dimensions, grade and blockers
        """
        machines = [sm for sm in bundle.state_machines if belongs_to(pou, sm.pou_id, sm.location)]
        interlocks = [i for i in bundle.safety.interlocks if involves(pou, i.pou_ids, i.location)]
        warnings = [w for w in bundle.safety.critical_warnings if involves(pou, w.pou_ids, w.location)]
        doc = self._documentation_for(pou, bundle.docstrings)

        dimensions = DimensionScores(
            documentation=self._documentation_score(pou, doc),
            safety=self._safety_score(pou, interlocks, warnings),
            complexity=self._complexity_score(pou, machines),
            determinism=self._determinism_score(pou, machines),
            testability=self._testability_score(pou, machines),
        )
        overall = round(sum(
            getattr(dimensions, name) * weight for name, weight in self._normalized.items()
        ), 2)

        score = MigrationScore(
            pou_id=pou.id,
            pou_name=pou.name,
            file=pou.location.file,
            overall_score=overall,
            grade=score_to_grade(overall),
            dimensions=dimensions,
            blockers=self._blockers(dimensions, machines, interlocks),
            warnings=self._warnings(dimensions),
            suggestions=self._suggestions(pou, doc, dimensions, machines),
        )
        logger.debug(f"Scored {pou.name}: {overall} ({score.grade}), {len(score.blockers)} blockers")
        return score

    @staticmethod
    def _documentation_for(pou: POU, docstrings: Sequence[Docstring]) -> Optional[Docstring]:
        if pou.documentation is not None:
            return pou.documentation
        return next((d for d in docstrings
                     if (d.associated_block or "").lower() == pou.name.lower()
                     and d.location.file == pou.location.file), None)

    @staticmethod
    def _documentation_score(pou: POU, doc: Optional[Docstring]) -> float:
        score = 0.0
        if doc is not None:
            score += 20
            if doc.summary:
                score += 15
            if doc.history:
                score += 15
        score += 20 * _comment_ratio(pou.variables_in(VarSection.VAR_INPUT))
        score += 15 * _comment_ratio(pou.variables)
        safety_vars = [v for v in pou.variables if v.is_safety_critical]
        if not safety_vars or any(v.comment for v in safety_vars):
            score += 15
        return _clamp(score)

    @staticmethod
    def _safety_score(pou: POU, interlocks: List[SafetyInterlock], warnings) -> float:
        score = 100.0
        if any(i.type == SafetyType.BYPASS for i in interlocks):
            score -= 40
        score -= 10 * sum(1 for i in interlocks if i.is_bypassed and i.type != SafetyType.BYPASS)
        for warning in warnings:
            score -= WARNING_PENALTIES[warning.severity]
        score -= 3 * sum(1 for v in pou.variables if v.is_safety_critical and not v.comment)
        return _clamp(score)

    @staticmethod
    def _complexity_score(pou: POU, machines: List[StateMachine]) -> float:
        score = 100.0
        lines = pou.body_end_line - pou.body_start_line
        if lines > 500:
            score -= 30
        elif lines > 200:
            score -= 15
        elif lines > 100:
            score -= 5

        for sm in machines:
            if sm.state_count > 20:
                score -= 20
            elif sm.state_count > 10:
                score -= 10
            elif sm.state_count > 5:
                score -= 5
            if sm.deadlock_states:
                score -= 15
            if sm.has_gaps:
                score -= 10
            if sm.unreachable_states:
                score -= 5

        count = len(pou.variables)
        if count > 50:
            score -= 15
        elif count > 30:
            score -= 10
        elif count > 20:
            score -= 5
        return _clamp(score)

    @staticmethod
    def _determinism_score(pou: POU, machines: List[StateMachine]) -> float:
        # Scan-time dependent constructs make migrated behavior harder to reproduce.
        score = 100.0
        score -= min(30, 5 * sum(1 for v in pou.variables if v.is_timer))
        score -= min(15, 5 * sum(1 for v in pou.variables if v.is_edge_trigger))
        score -= 10 * sum(1 for sm in machines if sm.has_gaps)
        if any(v.io_address for v in pou.variables):
            score -= 10
        return _clamp(score)

    @staticmethod
    def _testability_score(pou: POU, machines: List[StateMachine]) -> float:
        score = 100.0
        inputs = pou.variables_in(VarSection.VAR_INPUT)
        outputs = pou.variables_in(VarSection.VAR_OUTPUT)
        if not inputs and not outputs:
            score -= 20
        if inputs and _comment_ratio(inputs) < 0.5:
            score -= 15
        if outputs and _comment_ratio(outputs) < 0.5:
            score -= 15
        for sm in machines:
            named = sum(1 for s in sm.states if s.name)
            if named < sm.state_count * 0.5:
                score -= 10
        return _clamp(score)

    @staticmethod
    def _blockers(dimensions: DimensionScores, machines: List[StateMachine],
                  interlocks: List[SafetyInterlock]) -> List[MigrationBlocker]:
        blockers = []
        for interlock in interlocks:
            if interlock.type == SafetyType.BYPASS or interlock.is_bypassed:
                condition = f" ({interlock.bypass_condition})" if interlock.bypass_condition else ""
                blockers.append(MigrationBlocker(
                    category=BlockerCategory.SAFETY_BYPASS,
                    severity=Severity.CRITICAL,
                    rationale=f"Contains unresolved safety bypass: {interlock.name}{condition}",
                    remediation="Review with a safety engineer and document when the bypass may be active",
                ))
        for sm in machines:
            if sm.undocumented_ratio > UNDOCUMENTED_STATE_LIMIT:
                blockers.append(MigrationBlocker(
                    category=BlockerCategory.UNDOCUMENTED_STATE_MACHINE,
                    severity=Severity.HIGH,
                    rationale=f"State machine {sm.variable} has undocumented states exceeding 50% "
                              f"({len(sm.undocumented_states)} of {sm.state_count} without comment)",
                    remediation="Comment every CASE arm with the meaning of the state",
                ))
        if dimensions.documentation < MIN_DOCUMENTATION_SCORE:
            blockers.append(MigrationBlocker(
                category=BlockerCategory.MISSING_DOCUMENTATION,
                severity=Severity.MEDIUM,
                rationale=f"Documentation score {dimensions.documentation:.0f} is below "
                          f"{MIN_DOCUMENTATION_SCORE:.0f}",
                remediation="Add a header comment and describe inputs and outputs",
            ))
        if dimensions.complexity < MIN_COMPLEXITY_SCORE:
            blockers.append(MigrationBlocker(
                category=BlockerCategory.COMPLEX_LOGIC,
                severity=Severity.MEDIUM,
                rationale=f"Complexity score {dimensions.complexity:.0f} is below {MIN_COMPLEXITY_SCORE:.0f}",
                remediation="Split the POU into smaller function blocks before migrating",
            ))
        return blockers

    @staticmethod
    def _warnings(dimensions: DimensionScores) -> List[str]:
        warnings = []
        if dimensions.documentation < 50:
            warnings.append("Documentation is below the recommended level")
        if dimensions.complexity < 50:
            warnings.append("High complexity may make migration error-prone")
        if dimensions.determinism < 50:
            warnings.append("Timing-dependent logic needs scan-cycle aware translation")
        if dimensions.testability < 50:
            warnings.append("Low testability; verification may be difficult")
        return warnings

    @staticmethod
    def _suggestions(pou: POU, doc: Optional[Docstring], dimensions: DimensionScores,
                     machines: List[StateMachine]) -> List[str]:
        suggestions = []
        if dimensions.documentation < 70:
            undocumented = [v for v in pou.variables if not v.comment]
            if undocumented:
                suggestions.append(f"Document {len(undocumented)} variables without comments")
            if doc is None:
                suggestions.append("Add header documentation describing purpose and behavior")
        for sm in machines:
            if sm.undocumented_states:
                suggestions.append(f"Comment {len(sm.undocumented_states)} states of {sm.variable}")
            if sm.deadlock_states:
                suggestions.append(f"Review states without exit in {sm.variable}: "
                                   f"{', '.join(map(str, sm.deadlock_states))}")
        if dimensions.complexity < 50:
            suggestions.append("Consider breaking the POU into smaller function blocks")
        return suggestions

    def calculate_readiness(self, pous: Sequence[POU], bundle: ExtractionBundle,
                            dependencies: Optional[Mapping[str, Sequence[str]]] = None
                            ) -> MigrationReadinessReport:
        """
        Score every POU and summarize project readiness.

        Args:
            pous: POUs of the project
            bundle: Extraction results of the project
            dependencies: Optional POU name -> names it depends on (calls or instances);
                ``extends`` relations are always taken into account

        Returns:
            MigrationReadinessReport
        """
        pous = list(pous)
        scores = [self.score(pou, bundle) for pou in pous]
        overall = round(sum(s.overall_score for s in scores) / len(scores), 2) if scores else 0.0

        by_grade = Counter({grade: 0 for grade in GRADES})
        by_grade.update(s.grade for s in scores)

        hours = {s.pou_id: self._effort_hours(pou, s) for pou, s in zip(pous, scores)}

        report = MigrationReadinessReport(
            overall_score=overall,
            overall_grade=score_to_grade(overall) if scores else "F",
            scores=scores,
            migration_order=migration_order(pous, scores, dependencies),
            by_grade=dict(by_grade),
            risks=self._risks(scores, bundle),
            estimated_effort_hours=round(sum(hours.values()), 1),
        )
        logger.info(f"Migration readiness: {report.overall_score} ({report.overall_grade}) "
                    f"over {len(scores)} POUs")
        return report

    @staticmethod
    def _effort_hours(pou: POU, score: MigrationScore) -> float:
        base = BASE_EFFORT_HOURS.get(pou.kind, 4.0)
        lines = max(0, pou.body_end_line - pou.body_start_line)
        size_factor = 1.0 + lines / 200.0
        score_factor = 2.0 - score.overall_score / 100.0
        blocker_factor = 1.0 + 0.5 * len(score.blockers)
        return base * size_factor * score_factor * blocker_factor

    @staticmethod
    def _risks(scores: List[MigrationScore], bundle: ExtractionBundle) -> List[MigrationRisk]:
        risks = []
        for score in scores:
            bypasses = [b for b in score.blockers if b.category == BlockerCategory.SAFETY_BYPASS]
            if bypasses:
                risks.append(MigrationRisk(
                    pou_name=score.pou_name,
                    description=f"{len(bypasses)} safety bypass(es) in the POU",
                    severity=Severity.CRITICAL,
                    mitigation="Review all bypasses with a safety engineer before migration",
                ))
            if score.dimensions.documentation < 40:
                risks.append(MigrationRisk(
                    pou_name=score.pou_name,
                    description="Insufficient documentation",
                    severity=Severity.HIGH,
                    mitigation="Document the POU before translating it",
                ))
            if score.dimensions.complexity < 40:
                risks.append(MigrationRisk(
                    pou_name=score.pou_name,
                    description="High complexity",
                    severity=Severity.MEDIUM,
                    mitigation="Refactor or add extra tests around the POU",
                ))
        if bundle.safety.critical_warnings:
            risks.append(MigrationRisk(
                pou_name="",
                description=f"{len(bundle.safety.critical_warnings)} critical safety warning(s) in source",
                severity=Severity.CRITICAL,
                mitigation="Resolve disabled safety logic before migration",
            ))
        risks.sort(key=lambda r: (SEVERITY_RANK[r.severity], r.pou_name, r.description))
        return risks[:MAX_RISKS]


def migration_order(pous: Sequence[POU], scores: Sequence[MigrationScore],
                    dependencies: Optional[Mapping[str, Sequence[str]]] = None) -> List[str]:
    """
    Order POU names so that every POU comes after the POUs it depends on.

    Among POUs whose dependencies are already placed, ready ones (no blockers)
    come first, then higher scores, then names. Cycles are broken the same way.
    """
    by_id = {p.id: p for p in pous}
    id_of_name: Dict[str, str] = {}
    for pou in pous:
        id_of_name.setdefault(pou.name.lower(), pou.id)
    score_of = {s.pou_id: s for s in scores}

    depends: Dict[str, set] = defaultdict(set)
    for pou in pous:
        names = list((dependencies or {}).get(pou.name, []))
        if pou.extends:
            names.append(pou.extends)
        for name in names:
            target = id_of_name.get(name.lower())
            if target is not None and target != pou.id:
                depends[pou.id].add(target)

    def rank(pou_id):
        pou, score = by_id[pou_id], score_of.get(pou_id)
        if score is None:
            return (1, 0.0, pou.name.lower(), pou.location.file)
        return (len(score.blockers), -score.overall_score, pou.name.lower(), pou.location.file)

    order, placed = [], set()
    remaining = set(by_id)
    while remaining:
        ready = [k for k in remaining if depends[k] <= placed] or remaining
        chosen = min(ready, key=rank)
        order.append(by_id[chosen].name)
        placed.add(chosen)
        remaining.discard(chosen)
    return order


def score_migration(pou: POU, bundle: ExtractionBundle,
                    weights: Optional[ScoringWeights] = None) -> MigrationScore:
    """Score one POU's migration readiness."""
    return MigrationScorer(weights).score(pou, bundle)


def calculate_readiness(pous: Sequence[POU], bundle: ExtractionBundle,
                        weights: Optional[ScoringWeights] = None,
                        dependencies: Optional[Mapping[str, Sequence[str]]] = None
                        ) -> MigrationReadinessReport:
    """Score every POU and build a project readiness report."""
    return MigrationScorer(weights).calculate_readiness(pous, bundle, dependencies)
