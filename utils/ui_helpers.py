import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def print_list_result(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author (available/total)' lines, or 'No books in library.'
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="white")
        table.add_column("Copies", justify="right")
        for b in books:
            table.add_row(b.id, b.title, b.author or "", b.category or "",
                          f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author or 'Unknown Author'} "
                  f"({b.available_copies}/{b.total_copies} available)")

def print_records_result(records: List[Any], empty_message: str = "No borrow records.") -> None:
    """Print borrow records in the current output mode."""
    mode = get_output_mode()

    if not records:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([r.to_dict() for r in records], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📖 Borrow Records", show_lines=True, header_style="bold cyan")
        table.add_column("Book", style="white")
        table.add_column("Borrower", style="white")
        table.add_column("Borrowed")
        table.add_column("Due")
        table.add_column("Returned")
        table.add_column("Fine", justify="right", style="red")
        for r in records:
            table.add_row(r.book.title, r.borrower.name, r.borrow_date.isoformat(), r.due_date.isoformat(),
                          r.return_date.isoformat() if r.return_date else "-", f"{r.fine_amount:.2f}")
        _console.print(table)
    else:
        for r in records:
            returned = f"returned {r.return_date.isoformat()}" if r.return_date else "open"
            print(f"{r.book.title} - {r.borrower.name} - due {r.due_date.isoformat()} - {returned} "
                  f"- fine {r.fine_amount:.2f}")

def print_policies_result(policies: List[Any]) -> None:
    mode = get_output_mode()

    if not policies:
        print("No fine policies.")
        return

    if mode == "json":
        print(json.dumps([p.to_dict() for p in policies], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="💰 Fine Policies", header_style="bold cyan")
        table.add_column("Category", style="white")
        table.add_column("Fine / day", justify="right")
        for p in policies:
            table.add_row(p.category, f"{p.fine_per_day:.2f}")
        _console.print(table)
    else:
        for p in policies:
            print(f"{p.category}: {p.fine_per_day:.2f} per day")

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the key metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_titles": "Total Titles",
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "open_loans": "Open Loans",
        "overdue_loans": "Overdue Loans",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
