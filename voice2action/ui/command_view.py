"""Rich console rendering for transcripts, commands and pipeline results."""

from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..context.temporal import ResolvedDate
from ..models.command import ParsedCommand
from ..models.metrics import ProcessingResult
from ..models.transcription import TranscriptResult


def _confidence_style(confidence: float) -> str:
    if confidence >= 0.8:
        return "green"
    if confidence >= 0.5:
        return "yellow"
    return "red"


class CommandView:
    """Prints pipeline output to a terminal."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_transcript(self, result: TranscriptResult) -> None:
        if result.error:
            self.show_error(result.error)
            return

        text = Text(result.transcript or "(empty)")
        subtitle = (f"confidence {result.confidence:.2f} | {result.language} | "
                    f"{result.processing_time:.2f}s{' | cached' if result.from_cache else ''}")
        self.console.print(Panel(text, title="Transcript", subtitle=subtitle,
                                 border_style=_confidence_style(result.confidence)))

    def show_command(self, command: ParsedCommand) -> None:
        header = Text()
        header.append(f"{command.intent}\n", style="bold")
        header.append(f"confidence {command.confidence:.2f}", style=_confidence_style(command.confidence))
        header.append(f"  parsed in {command.processing_time:.2f}s", style="dim")
        self.console.print(Panel(header, title=f"Command {command.id}", border_style="blue"))

        if command.error:
            self.show_error(command.error)

        if command.actions:
            table = Table(title="Actions")
            table.add_column("#", justify="right")
            table.add_column("Type", style="cyan")
            table.add_column("Parameters")
            table.add_column("Priority", justify="right")
            table.add_column("Depends on")
            table.add_column("Critical")
            for action in command.actions:
                params = ", ".join(f"{k}={v}" for k, v in action.parameters.items())
                table.add_row(
                    str(action.order + 1),
                    action.type.value,
                    params,
                    str(action.priority),
                    ", ".join(action.dependencies) or "-",
                    "yes" if action.critical else "",
                )
            self.console.print(table)

        entities = command.entities
        rows: List[tuple] = []
        for kind, items in (("user", entities.users), ("channel", entities.channels),
                            ("task", entities.tasks), ("file", entities.files)):
            rows.extend((kind, e.source_text, e.resolved_id or "-", e.confidence) for e in items)
        for date_entity in entities.dates:
            resolved = date_entity.resolved_date.isoformat() if date_entity.resolved_date else "-"
            rows.append(("date", date_entity.text, resolved, date_entity.confidence))

        if rows:
            table = Table(title="Entities")
            table.add_column("Kind", style="magenta")
            table.add_column("Mention")
            table.add_column("Resolved")
            table.add_column("Confidence", justify="right")
            for kind, text, resolved, confidence in rows:
                table.add_row(kind, text, resolved,
                              Text(f"{confidence:.2f}", style=_confidence_style(confidence)))
            self.console.print(table)

    def show_result(self, result: ProcessingResult) -> None:
        if result.transcript is not None:
            self.show_transcript(result.transcript)
        if result.command is not None:
            self.show_command(result.command)
        if result.error:
            self.show_error(result.error)

        metrics = result.metrics
        table = Table(title=f"Pipeline {metrics.command_id}", show_header=False)
        table.add_column("Stage")
        table.add_column("Value", justify="right")
        table.add_row("preprocessing", f"{metrics.preprocessing_time:.3f}s")
        table.add_row("transcription", f"{metrics.transcription_time:.3f}s")
        table.add_row("parsing", f"{metrics.parsing_time:.3f}s")
        table.add_row("execution", f"{metrics.execution_time:.3f}s")
        table.add_row("total", f"{metrics.total_time:.3f}s")
        table.add_row("accuracy", f"{metrics.accuracy:.2f}")
        table.add_row("status", Text("ok" if result.success else "failed",
                                     style="green" if result.success else "red"))
        self.console.print(table)

    def show_dates(self, text: str, dates: List[ResolvedDate]) -> None:
        if not dates:
            self.console.print(f"No dates found in: {text}", style="yellow")
            return
        table = Table(title="Resolved dates")
        table.add_column("Expression")
        table.add_column("Date")
        table.add_column("Interpretation")
        table.add_column("Confidence", justify="right")
        for resolved in dates:
            table.add_row(resolved.original_text, resolved.date.isoformat(), resolved.interpretation,
                          Text(f"{resolved.confidence:.2f}", style=_confidence_style(resolved.confidence)))
        self.console.print(table)

    def show_error(self, message: str) -> None:
        self.console.print(Panel(Text(message, style="red"), title="Error", border_style="red"))
