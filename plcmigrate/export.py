"""
Export project analysis results to structured JSON.

Selected components are written with sorted keys and without timestamps, so
exporting the same project twice gives byte-identical files.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .project_analysis import ProjectAnalysis

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


class ExportComponent(Enum):
    """Components that can be exported."""
    POUS = "pous"
    VARIABLES = "variables"
    DOCSTRINGS = "docstrings"
    STATE_MACHINES = "state_machines"
    SAFETY = "safety"
    TRIBAL_KNOWLEDGE = "tribal_knowledge"
    MIGRATION = "migration"
    SUMMARY = "summary"
    CALL_GRAPH = "call_graph"
    AI_CONTEXT = "ai_context"


DEFAULT_COMPONENTS = [
    ExportComponent.POUS,
    ExportComponent.SAFETY,
    ExportComponent.MIGRATION,
    ExportComponent.SUMMARY,
]


def export_analysis_to_json(
    analysis: ProjectAnalysis,
    output_path: Optional[Union[str, Path]] = None,
    include: Optional[List[str]] = None,
    pretty_print: bool = True,
    target_language: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Export selected components of a project analysis to JSON.

    Args:
        analysis: Result of ``analyze_project``
        output_path: JSON file to write; nothing is written when omitted
        include: Component names (see ExportComponent); defaults to pous,
            safety, migration and summary
        pretty_print: Whether to indent the JSON
        target_language: Target for the ai_context component

    Returns:
        Dictionary containing the exported data
    """
    components = _resolve_components(include)

    export_data: Dict[str, Any] = {
        "metadata": {
            "format_version": EXPORT_FORMAT_VERSION,
            "files": [f.file_path for f in analysis.files],
            "exported_components": [c.value for c in components],
            "total_pous": len(analysis.pous),
        }
    }

    for component in components:
        export_data[component.value] = _EXPORTERS[component](analysis, target_language)

    if output_path is not None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(to_json(export_data, pretty_print))
        logger.info(f"Exported analysis to {path}")

    return export_data


def to_json(data: Any, pretty_print: bool = True) -> str:
    """Serialize with sorted keys so equal data always gives equal text."""
    if pretty_print:
        return json.dumps(data, indent=2, sort_keys=True, default=str) + "\n"
    return json.dumps(data, sort_keys=True, default=str)


def _resolve_components(include: Optional[List[str]]) -> List[ExportComponent]:
    if include is None:
        return list(DEFAULT_COMPONENTS)
    components = []
    for name in include:
        try:
            component = ExportComponent(name)
        except ValueError:
            logger.warning(f"Unknown export component: {name}")
            continue
        if component not in components:
            components.append(component)
    return components


def _export_pous(analysis: ProjectAnalysis, _target) -> Dict[str, Any]:
    pous = []
    for pou in analysis.pous:
        data = pou.to_dict()
        data["base_id"] = analysis.extends.base_of(pou)
        pous.append(data)
    return {
        "pous": pous,
        "unresolved_extends": analysis.extends.unresolved,
        "user_types": sorted({t for f in analysis.files for t in f.parse_result.user_types}),
        "parse_issues": {
            f.file_path: {
                "errors": [e.to_dict() for e in f.parse_result.errors],
                "warnings": [w.to_dict() for w in f.parse_result.warnings],
            }
            for f in analysis.files
            if f.parse_result.errors or f.parse_result.warnings
        },
    }


def _export_variables(analysis: ProjectAnalysis, _target) -> Dict[str, Any]:
    variables = [v.to_dict() for f in analysis.files for v in f.variables]
    global_variables = [v.to_dict() for f in analysis.files for v in f.parse_result.global_variables]
    return {
        "variables": variables,
        "global_variables": global_variables,
        "io_variables": [v["name"] for v in variables if v["io_mapping"]],
        "safety_critical": [v["name"] for v in variables if v["is_safety_critical"]],
    }


def _export_docstrings(analysis: ProjectAnalysis, _target) -> List[Dict[str, Any]]:
    return [d.to_dict() for f in analysis.files for d in f.docstrings]


def _export_state_machines(analysis: ProjectAnalysis, _target) -> List[Dict[str, Any]]:
    return [sm.to_dict() for f in analysis.files for sm in f.state_machines]


def _export_safety(analysis: ProjectAnalysis, _target) -> Dict[str, Any]:
    safety = analysis.bundle.safety
    data = safety.to_dict()
    data["bypasses"] = [b.to_dict() for b in safety.bypasses]
    return data


def _export_tribal_knowledge(analysis: ProjectAnalysis, _target) -> List[Dict[str, Any]]:
    return [item.to_dict() for f in analysis.files for item in f.tribal_knowledge]


def _export_migration(analysis: ProjectAnalysis, _target) -> Dict[str, Any]:
    data = analysis.readiness.to_dict()
    data["weights"] = analysis.config.weights.as_dict()
    return data


def _export_summary(analysis: ProjectAnalysis, _target) -> Dict[str, Any]:
    return analysis.summary.to_dict()


def _export_call_graph(analysis: ProjectAnalysis, _target) -> Dict[str, Any]:
    data = analysis.call_graph.to_dict()
    data["dependencies"] = analysis.call_graph.dependencies()
    return data


def _export_ai_context(analysis: ProjectAnalysis, target) -> Dict[str, Any]:
    return analysis.ai_context(target).to_dict()


_EXPORTERS = {
    ExportComponent.POUS: _export_pous,
    ExportComponent.VARIABLES: _export_variables,
    ExportComponent.DOCSTRINGS: _export_docstrings,
    ExportComponent.STATE_MACHINES: _export_state_machines,
    ExportComponent.SAFETY: _export_safety,
    ExportComponent.TRIBAL_KNOWLEDGE: _export_tribal_knowledge,
    ExportComponent.MIGRATION: _export_migration,
    ExportComponent.SUMMARY: _export_summary,
    ExportComponent.CALL_GRAPH: _export_call_graph,
    ExportComponent.AI_CONTEXT: _export_ai_context,
}
