"""Command-line interface for plcmigrate."""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import click

from .ai_context import TargetLanguage
from .config import AnalysisConfig, load_config
from .exceptions import PLCMigrateError
from .export import ExportComponent, export_analysis_to_json, to_json
from .fsm_diagrams import RENDERERS, render
from .models import ProjectInfo
from .project_analysis import analyze_project

logger = logging.getLogger(__name__)

ST_EXTENSIONS = (".st", ".iecst", ".scl", ".exp")


def collect_sources(path: str) -> Dict[str, str]:
    """
    Read ST sources from a file or, recursively, from a directory.

    Returns:
        Source text keyed by the path as given relative to ``path``
    """
    root = Path(path)
    if root.is_file():
        files = [root]
    else:
        files = sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in ST_EXTENSIONS)
    sources = {}
    for file in files:
        with open(file, "r", encoding="utf-8", errors="ignore") as f:
            sources[file.as_posix()] = f.read()
    logger.debug(f"Collected {len(sources)} source files under {path}")
    return sources


def _load(config_path: Optional[str]) -> AnalysisConfig:
    return load_config(config_path) if config_path else AnalysisConfig()


def _fail(message: str):
    click.echo(f"❌ Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.version_option(package_name='plcmigrate')
def main(verbose: bool):
    """Analyze IEC 61131-3 Structured Text for migration."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)


@main.command()
@click.argument('path', type=click.Path(exists=True))
@click.option('--config', '-c', 'config_path', type=click.Path(), help='YAML configuration file')
@click.option('--output', '-o', 'output_file', help='Output JSON file (default: stdout)')
@click.option('--include', multiple=True, type=click.Choice([c.value for c in ExportComponent]),
              help='Component to export (repeatable)')
@click.option('--compact', is_flag=True, help='Write JSON without indentation')
def analyze(path: str, config_path: Optional[str], output_file: Optional[str], include, compact: bool):
    """Analyze ST sources and export the results as JSON."""
    try:
        config = _load(config_path)
        sources = collect_sources(path)
        if not sources:
            _fail(f"No Structured Text files found in {path}")
        analysis = analyze_project(sources, config)
        data = export_analysis_to_json(
            analysis, output_file, include=list(include) or None, pretty_print=not compact
        )
    except (PLCMigrateError, OSError) as e:
        _fail(str(e))

    if output_file:
        click.echo(f"✅ Analysis of {len(sources)} file(s) written to {output_file}")
    else:
        click.echo(to_json(data, not compact), nl=False)


@main.command()
@click.argument('path', type=click.Path(exists=True))
@click.option('--target', '-t', required=True, type=click.Choice([t.value for t in TargetLanguage]),
              help='Target language')
@click.option('--config', '-c', 'config_path', type=click.Path(), help='YAML configuration file')
@click.option('--output', '-o', 'output_file', help='Output JSON file (default: stdout)')
@click.option('--name', 'project_name', help='Project name recorded in the context')
def context(path: str, target: str, config_path: Optional[str], output_file: Optional[str],
            project_name: Optional[str]):
    """Generate an AI translation context package."""
    try:
        config = _load(config_path)
        sources = collect_sources(path)
        analysis = analyze_project(sources, config)
        vendors = analysis.summary.vendors
        project = ProjectInfo(
            name=project_name or Path(path).stem,
            vendor=vendors.most_common(1)[0][0] if vendors else None,
        )
        package = analysis.ai_context(target, project)
        text = to_json(package.to_dict())
        if output_file:
            Path(output_file).parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, "w", encoding="utf-8") as f:
                f.write(text)
            click.echo(f"✅ {target} context for {len(package.pous)} POU(s) written to {output_file}")
        else:
            click.echo(text, nl=False)
    except (PLCMigrateError, OSError) as e:
        _fail(str(e))


@main.command()
@click.argument('path', type=click.Path(exists=True))
@click.option('--format', '-f', 'fmt', default='ascii', type=click.Choice(list(RENDERERS)),
              help='Diagram format')
def fsm(path: str, fmt: str):
    """Print diagrams of the state machines found in ST sources."""
    try:
        analysis = analyze_project(collect_sources(path))
    except (PLCMigrateError, OSError) as e:
        _fail(str(e))

    machines = [sm for f in analysis.files for sm in f.state_machines]
    if not machines:
        click.echo("No state machines found.")
        return
    click.echo("\n\n".join(render(sm, fmt) for sm in machines))


@main.command()
@click.argument('path', type=click.Path(exists=True))
@click.option('--config', '-c', 'config_path', type=click.Path(), help='YAML configuration file')
def status(path: str, config_path: Optional[str]):
    """Print a migration readiness overview."""
    try:
        analysis = analyze_project(collect_sources(path), _load(config_path))
    except (PLCMigrateError, OSError) as e:
        _fail(str(e))

    summary, readiness = analysis.summary, analysis.readiness
    click.echo(f"Files:            {summary.files}")
    click.echo(f"POUs:             {summary.pous} ({summary.documented_pous} documented)")
    click.echo(f"State machines:   {summary.state_machines} "
               f"({summary.undocumented_states}/{summary.total_states} states undocumented)")
    click.echo(f"Safety findings:  {summary.safety.total} ({summary.safety.bypassed} bypassed)")
    click.echo(f"Health score:     {summary.health_score}")
    click.echo(f"Readiness:        {readiness.overall_score} ({readiness.overall_grade})")
    click.echo(f"Estimated effort: {readiness.estimated_effort_hours} h")
    if summary.parse_errors:
        click.echo(f"⚠️ {summary.parse_errors} parse error(s)")
    for score in readiness.scores:
        marker = "✅" if score.is_ready else "❌"
        click.echo(f"  {marker} {score.pou_name:<30} {score.overall_score:6.1f} {score.grade}  "
                   f"{len(score.blockers)} blocker(s)")


if __name__ == '__main__':
    main()
