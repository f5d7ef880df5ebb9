"""TUI Dashboard for sshmap."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from pathlib import Path

from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .config import Config
from .credentials import Credential
from .executor import HostStatus, OutcomeRecord, collect


STATUS_ICONS = {
    HostStatus.PENDING: ("○", "dim"),
    HostStatus.CONNECTING: ("◌", "yellow"),
    HostStatus.RUNNING: ("●", "yellow"),
    HostStatus.SUCCESS: ("✔", "green"),
    HostStatus.FAILED: ("✘", "red"),
}


class HostPanel(Static):
    """A panel displaying the outcome for a single host slot."""

    status: reactive[HostStatus] = reactive(HostStatus.PENDING)

    def __init__(self, slot: int, hostname: str, user: str, port: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.slot = slot
        self.hostname = hostname
        self.user = user
        self.port = port

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.slot}")
        yield RichLog(
            id=f"log-{self.slot}",
            highlight=True,
            markup=True,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        target = f"{self.user}@{self.hostname}" if self.user else self.hostname
        if self.port:
            target = f"{target}:{self.port}"
        return f"[{color}]{icon}[/] [{color}][bold]{target}[/bold][/] [dim]{self.status.value}[/]"

    def watch_status(self, status: HostStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.slot}", Label)
        header.update(self._get_header())

    def show_outcome(self, record: OutcomeRecord) -> None:
        """Write the host's outcome into this panel."""
        log = self.query_one(f"#log-{self.slot}", RichLog)
        if not record.ok:
            log.write(f"[bold red]ERROR: {record.error}[/bold red]")
            return
        for line in record.result.splitlines():
            log.write(line)
        if record.exit_status:
            log.write(f"[red]Command exited with status {record.exit_status}[/red]")


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts complete | {status} | Press 'q' to quit"


@dataclass
class HostOutcome(Message):
    """Message for a published outcome."""
    slot: int
    record: OutcomeRecord


@dataclass
class HostStatusChange(Message):
    """Message for host status change."""
    slot: int
    status: HostStatus


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: Config,
        hosts: list[str],
        credential: Credential,
        args: argparse.Namespace,
        log_dir: Path | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.hosts = hosts
        self.credential = credential
        self.args = args
        self.log_dir = log_dir
        self.panels: dict[int, HostPanel] = {}
        self.records: list[OutcomeRecord] = []
        self._worker: Worker | None = None
        # Records carry only the hostname; completed slots are matched in order
        self._pending_slots: dict[str, list[int]] = {}

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        # Create panels for each host slot
        for slot, hostname in enumerate(self.hosts):
            panel = HostPanel(
                slot,
                hostname,
                self.credential.username,
                self.config.defaults.port,
                id=f"panel-{slot}",
            )
            self.panels[slot] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the fan-out when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.hosts)

        # Start execution using Textual's worker system
        self._worker = self.run_worker(self._run_fan_out(), exclusive=True, thread=True)

    async def _run_fan_out(self) -> list[OutcomeRecord]:
        """Run the fan-out and return every outcome. Runs in the worker thread."""
        from .runner import start_fan_out, write_host_log

        results: asyncio.Queue[OutcomeRecord] = asyncio.Queue()
        tasks = start_fan_out(
            self.config, self.hosts, self.credential, self.args, results, self._on_status
        )

        def on_record(record: OutcomeRecord) -> None:
            if self.log_dir:
                write_host_log(self.log_dir, record)
            slots = self._pending_slots.get(record.hostname)
            if slots:
                self.post_message(HostOutcome(slots.pop(0), record))

        try:
            return await collect(results, len(tasks), on_record=on_record)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            # Only published once the worker thread is done with the list
            self.records = list(event.worker.result or [])
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_status(self, slot: int, hostname: str, status: HostStatus) -> None:
        """Handle status change for a host - posts message to main thread."""
        if status in (HostStatus.SUCCESS, HostStatus.FAILED):
            self._pending_slots.setdefault(hostname, []).append(slot)
        self.post_message(HostStatusChange(slot, status))

    def on_host_outcome(self, message: HostOutcome) -> None:
        """Handle HostOutcome message in main thread."""
        if message.slot in self.panels:
            self.panels[message.slot].show_outcome(message.record)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        if message.slot in self.panels:
            self.panels[message.slot].status = message.status

        # Update completed count
        if message.status in (HostStatus.SUCCESS, HostStatus.FAILED):
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
