#!/usr/bin/env python3
"""
Example script analyzing a folder of Structured Text files and printing a
migration overview, then exporting the analysis and a Rust context package.
"""

import sys
import os
from pathlib import Path

# Add the parent directory to the path so we can import plcmigrate
sys.path.insert(0, str(Path(__file__).parent.parent))

from plcmigrate import analyze_project, export_analysis_to_json
from plcmigrate.cli import collect_sources
from plcmigrate.export import to_json


def main():
    """Analyze a project and show what the migration would involve."""

    if len(sys.argv) < 2:
        print("Usage: python analyze_project_example.py <st_file_or_directory>")
        print("Example: python analyze_project_example.py plc/src")
        return

    path = sys.argv[1]

    if not os.path.exists(path):
        print(f"Error: {path} not found.")
        return

    print(f"📖 Reading Structured Text from: {path}")
    sources = collect_sources(path)
    if not sources:
        print("Error: no .st files found.")
        return

    analysis = analyze_project(sources)
    summary = analysis.summary

    print(f"✅ Analyzed {summary.files} file(s), {summary.pous} POU(s)")
    print(f"   Documented POUs: {summary.documented_pous}")
    print(f"   State machines:  {summary.state_machines}")
    print(f"   Safety findings: {summary.safety.total} ({summary.safety.bypassed} bypassed)")
    print(f"   Health score:    {summary.health_score}")

    print("\n🔍 Migration order:")
    scores = {s.pou_name: s for s in analysis.readiness.scores}
    for i, name in enumerate(analysis.readiness.migration_order, 1):
        score = scores[name]
        print(f"  {i:3}. {name:<30} {score.grade} ({score.overall_score:.1f})")
        for blocker in score.blockers:
            print(f"         ⚠️ {blocker.severity.value}: {blocker.rationale}")

    print("\n🔗 Dependencies:")
    for name, deps in analysis.call_graph.dependencies().items():
        if deps:
            print(f"  {name} -> {', '.join(deps)}")

    output_dir = Path("plcmigrate_output")
    output_dir.mkdir(exist_ok=True)
    export_analysis_to_json(
        analysis,
        output_dir / "analysis.json",
        include=["pous", "state_machines", "safety", "migration", "summary", "call_graph"],
    )
    with open(output_dir / "context_rust.json", "w", encoding="utf-8") as f:
        f.write(to_json(analysis.ai_context("rust").to_dict()))
    print(f"\n📦 Results written to {output_dir}/")


if __name__ == "__main__":
    main()
