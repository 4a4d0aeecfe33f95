# /reachforge/app.py
"""
Interactive developer console for the retrieval/caching engine.
Lets you ask questions, render lesson slides and inspect what the adaptive
retriever returns for a query, all against the same cached engine the API uses.
"""
import time

from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table, box

from .config import MIN_DOCS_THRESHOLD, RETRIEVER_K, console
from .generation import GenerationError, GenerationTask, InvalidInputError
from .lessons import LESSONS
from .observability import get_logger
from .rag_pipeline import build_engine

logger = get_logger(__name__)


def display_welcome_banner():
    """Displays the application's welcome banner."""
    console.print(Panel(
        "[bold magenta]reachforge - Caregiver Knowledge Console[/bold magenta]",
        subtitle="[cyan]Adaptive retrieval with cached generation[/cyan]",
        expand=False
    ))
    console.print(f"[green]Retriever k={RETRIEVER_K}, expansion below {MIN_DOCS_THRESHOLD} passages[/green]")


def render_passages(passages):
    table = Table(title="Retrieved passages", box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Source")
    table.add_column("Preview")
    for idx, passage in enumerate(passages, start=1):
        source = str(passage.metadata.get("source", "-"))
        preview = passage.text[:120] + ("..." if len(passage.text) > 120 else "")
        table.add_row(str(idx), source, preview)
    console.print(table)


def render_cache_stats(engine):
    table = Table(title="Cache statistics", box=box.SIMPLE)
    for column in ("cache", "size", "hits", "misses", "sets", "expirations"):
        table.add_column(column)
    for name, stats in engine.cache_stats().items():
        table.add_row(
            name,
            str(stats["size"]),
            str(stats["hits"]),
            str(stats["misses"]),
            str(stats["sets"]),
            str(stats["expirations"]),
        )
    console.print(table)


def run_generation(engine, task: GenerationTask, user_input: str) -> str | None:
    if not engine.generation_ready:
        console.print("[bold red]No LLM available; only retrieval inspection works.[/bold red]")
        return None
    start = time.perf_counter()
    try:
        with console.status("[bold cyan]Generating...[/bold cyan]"):
            text = engine.orchestrator.generate(task, user_input)
    except InvalidInputError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        return None
    except GenerationError as exc:
        console.print(f"[bold red]Generation failed: {exc}[/bold red]")
        return None
    console.print(f"[dim]{task.namespace} completed in {time.perf_counter() - start:.2f}s[/dim]")
    return text


def handle_question(engine):
    question = Prompt.ask("[bold]Your question[/bold]")
    answer = run_generation(engine, GenerationTask.QA, question)
    if answer is not None:
        console.print(Panel(answer, title="Answer", border_style="green"))


def handle_slide(engine):
    choices = [str(lesson.id) for lesson in LESSONS]
    for lesson in LESSONS:
        console.print(f"[cyan]{lesson.id}. {lesson.header}[/cyan]")
    picked = Prompt.ask("Lesson (number) or custom topic", default=choices[0])
    header = next((lesson.header for lesson in LESSONS if str(lesson.id) == picked), picked)
    content = run_generation(engine, GenerationTask.TOPIC_SLIDE, header)
    if content is not None:
        console.print(Panel(Markdown(content), title=header, border_style="magenta"))


def handle_retrieval(engine):
    query = Prompt.ask("[bold]Query[/bold]")
    if not query.strip():
        console.print("[yellow]query is required[/yellow]")
        return
    passages = engine.retriever.retrieve(query)
    if not passages:
        console.print("[yellow]No passages retrieved.[/yellow]")
        return
    render_passages(passages)


def main():
    """Main application loop."""
    display_welcome_banner()
    engine = build_engine()
    if not engine.generation_ready:
        console.print("[yellow]LLM unavailable. Generation is disabled; retrieval still works.[/yellow]")

    try:
        while True:
            console.print("\n[bold]Main Menu:[/bold]")
            console.print("[green]1. Ask a Question[/green]")
            console.print("[magenta]2. Generate Lesson Slide[/magenta]")
            console.print("[cyan]3. Inspect Retrieval[/cyan]")
            console.print("[blue]4. Cache Statistics[/blue]")
            console.print("[red]5. Exit[/red]")

            choice = Prompt.ask("Choose an option", choices=["1", "2", "3", "4", "5"])
            if choice == "1":
                handle_question(engine)
            elif choice == "2":
                handle_slide(engine)
            elif choice == "3":
                handle_retrieval(engine)
            elif choice == "4":
                render_cache_stats(engine)
            else:
                console.print("[bold]Goodbye![/bold]")
                break
    except KeyboardInterrupt:
        console.print("\n[bold]Interrupted. Goodbye![/bold]")
    finally:
        engine.close()


if __name__ == "__main__":
    main()
