"""
Project-level analysis.

Runs the parser, every extractor and the migration scorer over each source
file, in parallel across files, and folds the per-file results into a
project summary. The summary merge is associative and commutative, so the
aggregate does not depend on the order in which files finish.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .ai_context import generate_ai_context
from .call_graph import CallGraph, build_call_graph
from .config import AnalysisConfig
from .fsm_extractor import StateMachineExtractor
from .migration_scorer import MigrationScorer
from .models import (
    POU, AIContextPackage, Docstring, ExtractionBundle, MigrationReadinessReport, MigrationScore,
    ParseResult, ProjectInfo, SafetyAnalysisResult, SafetySummary, Serializable, StateMachine,
    TribalKnowledgeItem, Variable,
)
from .safety_extractor import SafetyExtractor
from .st_parser import STParser
from .tribal_knowledge import TribalKnowledgeExtractor
from .utils import coerce_source

logger = logging.getLogger(__name__)


@dataclass
class FileAnalysis:
    """Everything extracted from one source file."""
    file_path: str
    parse_result: ParseResult
    state_machines: List[StateMachine] = field(default_factory=list)
    safety: SafetyAnalysisResult = field(default_factory=SafetyAnalysisResult)
    tribal_knowledge: List[TribalKnowledgeItem] = field(default_factory=list)
    scores: List[MigrationScore] = field(default_factory=list)

    @property
    def pous(self) -> List[POU]:
        return self.parse_result.pous

    @property
    def docstrings(self) -> List[Docstring]:
        return self.parse_result.docstrings

    @property
    def variables(self) -> List[Variable]:
        return [v for pou in self.pous for v in pou.variables]

    @property
    def bundle(self) -> ExtractionBundle:
        return ExtractionBundle(
            docstrings=list(self.docstrings),
            state_machines=list(self.state_machines),
            safety=self.safety,
            tribal_knowledge=list(self.tribal_knowledge),
        )


@dataclass
class ProjectSummary(Serializable):
    """
    Project-wide counts.

    ``merge`` is associative and commutative and ``empty()`` is its identity,
    so summaries can be combined in any order.
    """
    files: int = 0
    pous: int = 0
    documented_pous: int = 0
    variables: int = 0
    safety_critical_variables: int = 0
    docstrings: int = 0
    state_machines: int = 0
    total_states: int = 0
    undocumented_states: int = 0
    parse_errors: int = 0
    parse_warnings: int = 0
    pous_by_kind: Counter = field(default_factory=Counter)
    tribal_knowledge: Counter = field(default_factory=Counter)
    grades: Counter = field(default_factory=Counter)
    vendors: Counter = field(default_factory=Counter)
    safety: SafetySummary = field(default_factory=SafetySummary)

    _COUNTS = (
        "files", "pous", "documented_pous", "variables", "safety_critical_variables",
        "docstrings", "state_machines", "total_states", "undocumented_states",
        "parse_errors", "parse_warnings",
    )
    _COUNTERS = ("pous_by_kind", "tribal_knowledge", "grades", "vendors")

    @classmethod
    def empty(cls) -> "ProjectSummary":
        return cls()

    @classmethod
    def from_file(cls, analysis: FileAnalysis) -> "ProjectSummary":
        result = analysis.parse_result
        vendor = result.metadata.vendor if result.metadata else None
        return cls(
            files=1,
            pous=len(analysis.pous),
            documented_pous=sum(1 for p in analysis.pous if p.documentation is not None),
            variables=len(analysis.variables),
            safety_critical_variables=sum(1 for v in analysis.variables if v.is_safety_critical),
            docstrings=len(analysis.docstrings),
            state_machines=len(analysis.state_machines),
            total_states=sum(sm.state_count for sm in analysis.state_machines),
            undocumented_states=sum(len(sm.undocumented_states) for sm in analysis.state_machines),
            parse_errors=len(result.errors),
            parse_warnings=len(result.warnings),
            pous_by_kind=Counter(p.kind.value for p in analysis.pous),
            tribal_knowledge=Counter(item.type.value for item in analysis.tribal_knowledge),
            grades=Counter(s.grade for s in analysis.scores),
            vendors=Counter([vendor]) if vendor else Counter(),
            safety=analysis.safety.summary,
        )

    def merge(self, other: "ProjectSummary") -> "ProjectSummary":
        merged = ProjectSummary(safety=self.safety.merge(other.safety))
        for name in self._COUNTS:
            setattr(merged, name, getattr(self, name) + getattr(other, name))
        for name in self._COUNTERS:
            setattr(merged, name, getattr(self, name) + getattr(other, name))
        return merged

    @property
    def documentation_coverage(self) -> float:
        return self.documented_pous / self.pous if self.pous else 1.0

    @property
    def state_documentation(self) -> float:
        return 1.0 - self.undocumented_states / self.total_states if self.total_states else 1.0

    @property
    def health_score(self) -> float:
        """
        Documentation health 0-100.

        60% POU header coverage, 40% commented states, minus 5 points per
        bypassed safety function.
        """
        score = 100.0 * (0.6 * self.documentation_coverage + 0.4 * self.state_documentation)
        score -= 5.0 * self.safety.bypassed
        return round(max(0.0, min(100.0, score)), 1)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["documentation_coverage"] = round(self.documentation_coverage, 4)
        data["health_score"] = self.health_score
        return data


@dataclass
class ExtendsResolution(Serializable):
    """Result of resolving ``EXTENDS`` names against a project's POUs."""
    resolved: Dict[str, str] = field(default_factory=dict)
    unresolved: List[Dict[str, str]] = field(default_factory=list)

    def base_of(self, pou: POU) -> Optional[str]:
        return self.resolved.get(pou.id)

    def ancestors(self, pou_id: str) -> List[str]:
        """Ids of the base chain of a POU, nearest first; stops at cycles."""
        chain, seen = [], {pou_id}
        current = self.resolved.get(pou_id)
        while current is not None and current not in seen:
            chain.append(current)
            seen.add(current)
            current = self.resolved.get(current)
        return chain


def resolve_extends(pous: Sequence[POU]) -> ExtendsResolution:
    """
    Resolve every POU's ``extends`` name to the POU that defines it.

    Names match case-insensitively. When several POUs share a name, the one
    sorted first by (file, line) wins.
    """
    ordered = sorted(pous, key=lambda p: (p.location.file, p.location.line))
    by_name: Dict[str, POU] = {}
    for pou in ordered:
        by_name.setdefault(pou.name.lower(), pou)

    resolution = ExtendsResolution()
    for pou in ordered:
        if not pou.extends:
            continue
        base = by_name.get(pou.extends.lower())
        if base is None or base.id == pou.id:
            resolution.unresolved.append({
                "pou": pou.name, "extends": pou.extends, "file": pou.location.file,
            })
            logger.debug(f"Unresolved base {pou.extends} of {pou.name}")
        else:
            resolution.resolved[pou.id] = base.id
    return resolution


def analyze_source(source, file_path: str = "<source>",
                   config: Optional[AnalysisConfig] = None) -> FileAnalysis:
    """
    Run the parser, every extractor and the scorer over one file.

    Args:
        source: ST source text (``bytes`` are decoded as UTF-8)
        file_path: File name recorded in every location
        config: Optional analysis configuration

    Returns:
        FileAnalysis
    """
    config = config or AnalysisConfig()
    text = coerce_source(source)
    parse_result = STParser(file_path, config).parse(text)
    pous = parse_result.pous

    analysis = FileAnalysis(
        file_path=file_path,
        parse_result=parse_result,
        state_machines=StateMachineExtractor(file_path, pous).extract(text),
        safety=SafetyExtractor(file_path, pous).analyze(text),
        tribal_knowledge=TribalKnowledgeExtractor(file_path, pous).extract(text),
    )
    scorer = MigrationScorer(config.weights)
    analysis.scores = [scorer.score(pou, analysis.bundle) for pou in pous]
    logger.info(f"Analyzed {file_path}: {len(pous)} POUs, {len(analysis.state_machines)} state machines, "
                f"{len(analysis.safety.interlocks)} safety findings")
    return analysis


@dataclass
class ProjectAnalysis:
    """Analysis of a whole project: per-file results plus project-wide views."""
    files: List[FileAnalysis]
    summary: ProjectSummary
    readiness: MigrationReadinessReport
    call_graph: CallGraph
    extends: ExtendsResolution
    config: AnalysisConfig = field(default_factory=AnalysisConfig)

    @property
    def pous(self) -> List[POU]:
        return [p for f in self.files for p in f.pous]

    @property
    def bundle(self) -> ExtractionBundle:
        return merge_bundles(f.bundle for f in self.files)

    def ai_context(self, target_language: Optional[str] = None,
                   project_info: Optional[ProjectInfo] = None) -> AIContextPackage:
        bundle = self.bundle
        return generate_ai_context(
            self.pous, bundle.docstrings, bundle.state_machines, bundle.safety,
            bundle.tribal_knowledge, target_language or self.config.target_language, project_info,
        )


def merge_bundles(bundles) -> ExtractionBundle:
    merged = ExtractionBundle()
    for bundle in bundles:
        merged.docstrings.extend(bundle.docstrings)
        merged.state_machines.extend(bundle.state_machines)
        merged.tribal_knowledge.extend(bundle.tribal_knowledge)
        merged.safety = merged.safety.merge(bundle.safety)
    return merged


def analyze_project(sources: Mapping[str, Any], config: Optional[AnalysisConfig] = None,
                    max_workers: Optional[int] = None) -> ProjectAnalysis:
    """
    Analyze every file of a project in parallel.

    Args:
        sources: Source text keyed by file path
        config: Optional analysis configuration
        max_workers: Thread count; defaults to ``config.max_workers``

    Returns:
        ProjectAnalysis with files ordered by path
    """
    config = config or AnalysisConfig()
    workers = max_workers or config.max_workers
    paths = sorted(sources)
    logger.info(f"Analyzing {len(paths)} files")

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(analyze_source, sources[path], path, config) for path in paths]
        files = [future.result() for future in futures]

    summary = ProjectSummary.empty()
    for analysis in files:
        summary = summary.merge(ProjectSummary.from_file(analysis))

    pous = [p for f in files for p in f.pous]
    call_graph = build_call_graph(pous, {path: coerce_source(sources[path]) for path in paths})
    bundle = merge_bundles(f.bundle for f in files)
    readiness = MigrationScorer(config.weights).calculate_readiness(
        pous, bundle, call_graph.dependencies()
    )

    project = ProjectAnalysis(
        files=files,
        summary=summary,
        readiness=readiness,
        call_graph=call_graph,
        extends=resolve_extends(pous),
        config=config,
    )
    logger.info(f"Project analysis complete: {summary.pous} POUs, health {summary.health_score}")
    return project
