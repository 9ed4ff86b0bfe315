"""Human-readable rendering of analyses and search results with ``rich``.

Each ``format_*`` function returns plain text (rendered through a
recording console), suitable for logs or a transport layer.  Pass a
``console`` to ``print_search_results`` to draw to a terminal instead.
"""

from __future__ import annotations

import io
from typing import Any, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .models import QueryAnalysis, SearchStrategy
from .retriever import SearchResponse

DEFAULT_WIDTH = 100


def _score_color(score: float) -> str:
    if score >= 0.8:
        return "green"
    if score >= 0.5:
        return "yellow"
    return "red"


def _render(*renderables: Any, width: int = DEFAULT_WIDTH) -> str:
    console = Console(file=io.StringIO(), width=width, record=True, color_system=None)
    for renderable in renderables:
        console.print(renderable)
    return console.export_text()


def _analysis_panel(analysis: QueryAnalysis) -> Panel:
    color = _score_color(analysis.confidence)
    lines = [
        f"[bold]Type:[/bold] {escape(analysis.query_type)}",
        f"[bold]Confidence:[/bold] [{color}]{analysis.confidence:.0%}[/{color}]",
        f"[bold]Depth:[/bold] {analysis.depth}   [bold]Top-k:[/bold] {analysis.top_k}",
        f"[bold]Targets:[/bold] {escape(', '.join(analysis.targets)) or '-'}",
        f"[bold]Patterns:[/bold] {escape(', '.join(analysis.keywords)) or '-'}",
        f"[dim]{escape(analysis.reason)}[/dim]",
    ]
    return Panel("\n".join(lines), title="[bold]Query Analysis[/bold]", border_style="cyan")


def _strategy_table(strategy: SearchStrategy) -> Table:
    table = Table(title="Search Strategy", show_header=True, show_lines=False)
    table.add_column("Setting", style="cyan", width=20)
    table.add_column("Value")
    table.add_row("Graph depth", str(strategy.graph_depth))
    table.add_row("Top-k", str(strategy.top_k))
    table.add_row("Min score", f"{strategy.min_score:.2f}")
    table.add_row("Keyword boost", f"{strategy.keyword_boost:.2f}")
    table.add_row("Include callers", "yes" if strategy.include_callers else "no")
    table.add_row("Include callees", "yes" if strategy.include_callees else "no")
    table.add_row("Boost entry points", "yes" if strategy.boost_entry_points else "no")
    table.add_row("Boost types", "yes" if strategy.boost_types else "no")
    return table


def format_analysis(analysis: QueryAnalysis, width: int = DEFAULT_WIDTH) -> str:
    return _render(_analysis_panel(analysis), width=width)


def format_strategy(strategy: SearchStrategy, width: int = DEFAULT_WIDTH) -> str:
    return _render(_strategy_table(strategy), width=width)


def _results_renderables(response: SearchResponse) -> List[Any]:
    header = (
        f"[bold]{escape(response.query)}[/bold]  "
        f"[dim]({response.mode} search, {response.analysis.query_type} query)[/dim]"
    )
    if response.status != "success":
        return [Panel(
            f"{header}\n\n[yellow]{escape(response.message or 'No results.')}[/yellow]",
            title="[bold yellow]No Results[/bold yellow]",
            border_style="yellow",
        )]

    table = Table(title=f"Results for: {escape(response.query)}", show_header=True, show_lines=False)
    table.add_column("#", style="dim", width=3)
    table.add_column("Entity", style="cyan")
    table.add_column("Location")
    table.add_column("Score", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Reason", min_width=30)
    for rank, result in enumerate(response.results, start=1):
        entity = result.entity
        table.add_row(
            str(rank),
            f"{escape(entity.name)} [dim]({entity.kind})[/dim]",
            f"{entity.file}:{entity.start_line}-{entity.end_line}",
            f"{result.score:.2f}",
            str(result.tokens),
            escape(result.reason),
        )

    summary = [header, f"{len(response.results)} results, {response.total_tokens} tokens"]
    if response.dropped_count:
        summary.append(f"{response.dropped_count} candidates did not fit the budget")
    if response.stats is not None and response.stats.baseline_tokens:
        summary.append(
            f"{response.stats.reduction_percent}% smaller than the whole index "
            f"({response.stats.baseline_tokens} tokens)"
        )
    if response.compression is not None:
        summary.append(f"Slicing saved {response.compression.reduction_percent}%")
    return [table, Panel("\n".join(summary), border_style="green")]


def format_search_results(response: SearchResponse, width: int = DEFAULT_WIDTH) -> str:
    """Render a search response as a results table plus summary panel."""
    return _render(*_results_renderables(response), width=width)


def print_search_results(response: SearchResponse, console: Optional[Console] = None) -> None:
    console = console or Console()
    for renderable in _results_renderables(response):
        console.print(renderable)
