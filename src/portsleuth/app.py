"""portsleuth - interactive kill prompt built with Textual."""

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static

from portsleuth.errors import NotFound, PermissionDenied
from portsleuth.inspector import Inspector
from portsleuth.models import ProcessSnapshot

# Seconds to wait after SIGTERM before checking whether the process is gone.
EXIT_CHECK_DELAY = 0.1


class TargetTable(Container):
    """Container for the table of processes that may be killed."""

    DEFAULT_CSS = """
    TargetTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, targets: list[ProcessSnapshot], *args, **kwargs) -> None:
        """Initialize TargetTable."""
        super().__init__(*args, **kwargs)
        self._targets = {proc.pid: proc for proc in targets}

    def compose(self) -> ComposeResult:
        """Compose the target table."""
        yield DataTable(id="target-table")

    def on_mount(self) -> None:
        """Fill the data table when mounted."""
        table = self.query_one("#target-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("USER", key="user", width=10)
        table.add_column("S", key="state", width=3)
        table.add_column("RES", key="rss", width=10)
        table.add_column("Command", key="command")

        for proc in self._targets.values():
            table.add_row(
                str(proc.pid),
                proc.username[:10],
                proc.state,
                f"{proc.rss_kb}K",
                (proc.cmdline or proc.name)[:60],
                key=str(proc.pid),
            )

    @property
    def selected(self) -> ProcessSnapshot | None:
        """The process under the cursor."""
        table = self.query_one("#target-table", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return self._targets.get(int(row_key.value))


class KillPromptApp(App):
    """Offers to send SIGTERM to one of the given processes."""

    TITLE = "portsleuth"
    SUB_TITLE = "Press k to kill the highlighted process, q to quit"

    BINDINGS = [
        ("k", "kill", "Kill"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, inspector: Inspector, targets: list[ProcessSnapshot]) -> None:
        """Initialize the KillPromptApp."""
        super().__init__()
        self._inspector = inspector
        self._targets = targets

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Static(f"{len(self._targets)} process(es)", id="summary")
        yield TargetTable(self._targets)
        yield Footer()

    def action_kill(self) -> None:
        """Send SIGTERM to the highlighted process and report the outcome."""
        proc = self.query_one(TargetTable).selected
        if proc is None:
            return

        try:
            self._inspector.terminate(proc.pid)
        except PermissionDenied:
            self.notify(
                f"Permission denied. You may need elevated privileges to kill {proc.pid}.",
                severity="error",
            )
            return
        except NotFound:
            self.notify(f"Process {proc.pid} no longer exists", severity="warning")
            return

        self.notify(f"Sent SIGTERM to process {proc.pid} ({proc.name})")
        self.set_timer(EXIT_CHECK_DELAY, lambda: self._report_exit(proc))

    def _report_exit(self, proc: ProcessSnapshot) -> None:
        if self._inspector.is_running(proc.pid):
            self.notify(
                f"Process {proc.pid} is still running. It may need SIGKILL.",
                severity="warning",
            )
        else:
            self.notify(f"Process {proc.pid} has been terminated")

    def action_quit(self) -> None:
        """Handle quit action."""
        self.exit()
