# sniper/dashboard.py
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table

from .admission import AdmissionGate
from .models import ConnectionStatus, RejectReason, SequenceStatus
from .stats import StatsRecorder
from .websocket_engine import WebSocketEngine

STATUS_STYLE = {
    SequenceStatus.COMPLETED: "green",
    SequenceStatus.DEGRADED: "yellow",
    SequenceStatus.ABORTED_AT_ACQUIRE: "red",
}

FEED_STYLE = {
    ConnectionStatus.CONNECTED: "green",
    ConnectionStatus.CONNECTING: "yellow",
    ConnectionStatus.DISCONNECTED: "yellow",
    ConnectionStatus.FAILED: "bold red",
}


def generate_dashboard(ws_engine: WebSocketEngine, gate: AdmissionGate, stats: StatsRecorder, dry_run: bool):
    """
    Live console view: feed health, gate counters, recent sequences.
    """
    # 1. Feed Table
    feed = ws_engine.snapshot()
    feed_table = Table(title="📡 Feed")
    feed_table.add_column("Metric", style="cyan")
    feed_table.add_column("Value", justify="right")
    style = FEED_STYLE[ws_engine.status]
    feed_table.add_row("Status", f"[{style}]{feed['status']}[/{style}]")
    feed_table.add_row("Reconnect attempts", str(feed['attempts']))
    feed_table.add_row("Silence", f"{feed['silence']:.1f}s")
    feed_table.add_row("Events decoded", str(feed['events']))
    feed_table.add_row("Malformed", str(feed['decode_errors']))

    # 2. Gate Table
    gate_table = Table(title="🚦 Admission")
    gate_table.add_column("Metric", style="magenta")
    gate_table.add_column("Count", justify="right")
    gate_table.add_row("In flight", "[bold green]YES[/bold green]" if gate.state.in_flight else "no")
    gate_table.add_row("Accepted", str(gate.accepted))
    for reason in RejectReason:
        gate_table.add_row(f"Rejected: {reason.value.lower()}", str(gate.rejected[reason]))

    # 3. Sequence Table
    seq_table = Table(title="🎯 Recent Sequences")
    seq_table.add_column("Asset", style="cyan", overflow="ellipsis", max_width=16)
    seq_table.add_column("Status")
    seq_table.add_column("Acquire", justify="right")
    seq_table.add_column("Partial", justify="right")
    seq_table.add_column("Full", justify="right")
    seq_table.add_column("Total", justify="right")
    for seq in reversed(stats.recent):
        s = STATUS_STYLE.get(seq.status, "white")
        label = seq.status.value if seq.status else "-"
        cells = [f"{seq.durations[p]:.0f}ms" if p in seq.durations else "-"
                 for p in ("acquire", "partial_dispose", "full_dispose", "total")]
        seq_table.add_row(seq.asset_id, f"[{s}]{label}[/{s}]", *cells)

    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="middle"),
        Layout(name="bottom"),
    )
    layout["top"].split_row(
        Layout(Panel(feed_table)),
        Layout(Panel(gate_table)),
    )
    layout["middle"].update(Panel(seq_table))

    summary = stats.summary()
    mode = "[bold cyan]DRY RUN[/bold cyan]" if dry_run else "[bold red]LIVE[/bold red]"
    footer_text = (f"{mode} | Sequences: {summary['total']} | ✅ {summary['completed']} "
                   f"| ⚠️ {summary['degraded']} | ❌ {summary['aborted']}")
    if feed['failure']:
        footer_text += f" | [bold red]{feed['failure']}[/bold red]"
    layout["bottom"].update(Panel(footer_text, style="white on blue"))
    layout["bottom"].size = 3

    return layout
