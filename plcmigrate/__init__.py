"""
plcmigrate - IEC 61131-3 Structured Text analysis for migration.

Parses Structured Text, extracts documentation, variables, state machines,
safety interlocks and tribal knowledge, scores migration readiness and builds
AI translation context packages.
"""

__version__ = "0.1.0"

from .ai_context import AIContextGenerator, TargetLanguage, generate_ai_context
from .call_graph import CallGraph, build_call_graph
from .config import AnalysisConfig, ScoringWeights, load_config
from .docstring_extractor import extract_docstrings
from .exceptions import (
    ConfigurationError, InvalidWeightsError, PLCMigrateError, UnknownTargetLanguageError
)
from .export import ExportComponent, export_analysis_to_json
from .fsm_extractor import extract_state_machines
from .migration_scorer import MigrationScorer, calculate_readiness, score_migration
from .models import ExtractionBundle, ProjectInfo
from .project_analysis import (
    ProjectSummary, analyze_project, analyze_source, resolve_extends
)
from .safety_extractor import analyze_safety, extract_safety_interlocks
from .st_parser import parse
from .tokenizer import tokenize
from .tribal_knowledge import extract_tribal_knowledge
from .variable_extractor import extract_variables

__all__ = [
    "AIContextGenerator",
    "AnalysisConfig",
    "CallGraph",
    "ConfigurationError",
    "ExportComponent",
    "ExtractionBundle",
    "InvalidWeightsError",
    "MigrationScorer",
    "PLCMigrateError",
    "ProjectInfo",
    "ProjectSummary",
    "ScoringWeights",
    "TargetLanguage",
    "UnknownTargetLanguageError",
    "analyze_project",
    "analyze_safety",
    "analyze_source",
    "build_call_graph",
    "calculate_readiness",
    "export_analysis_to_json",
    "extract_docstrings",
    "extract_safety_interlocks",
    "extract_state_machines",
    "extract_tribal_knowledge",
    "extract_variables",
    "generate_ai_context",
    "load_config",
    "parse",
    "score_migration",
    "tokenize",
]
