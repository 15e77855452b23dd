"""Rendering of inspection results to a rich Console."""

from datetime import datetime
from enum import Enum

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from portsleuth.models import AncestryChain, ConnectionRecord, EnvironmentSet, ProcessSnapshot

# Ports below this are reserved for system services.
FIRST_UNPRIVILEGED_PORT = 1024


class OutputFormat(Enum):
    """Output styles selectable on the command line."""

    NORMAL = "normal"
    SHORT = "short"
    JSON = "json"


def format_start_time(start_time: int) -> str:
    """Format an epoch timestamp as local time, or 'unknown'."""
    if start_time <= 0:
        return "unknown"
    return datetime.fromtimestamp(start_time).strftime("%Y-%m-%d %H:%M:%S")


def process_to_dict(proc: ProcessSnapshot) -> dict:
    """JSON-ready mapping of a process snapshot."""
    return {
        "pid": proc.pid,
        "name": proc.name,
        "ppid": proc.ppid,
        "user": proc.username,
        "uid": proc.uid,
        "state": proc.state,
        "cmdline": proc.cmdline,
        "start_time": proc.start_time,
        "memory": {"vsz_kb": proc.vsz_kb, "rss_kb": proc.rss_kb},
    }


def render_process(console: Console, proc: ProcessSnapshot, fmt: OutputFormat = OutputFormat.NORMAL) -> None:
    """Print one process snapshot."""
    if fmt is OutputFormat.JSON:
        console.print_json(data=process_to_dict(proc))
        return
    if fmt is OutputFormat.SHORT:
        console.print(
            f"PID {proc.pid}: {proc.name}[{proc.ppid}] by {proc.username} - {proc.cmdline or '(no cmdline)'}",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return

    console.print("[bold]Process Information[/bold]")
    console.print(f"  [cyan]PID:[/cyan] {proc.pid}")
    console.print(f"  [cyan]Name:[/cyan] {escape(proc.name)}")
    console.print(f"  [cyan]User:[/cyan] {escape(proc.username)} (UID: {proc.uid})")
    console.print(f"  [cyan]Parent PID:[/cyan] {proc.ppid}")
    console.print(f"  [cyan]State:[/cyan] {escape(proc.state)}")
    console.print(f"  [cyan]Started:[/cyan] {format_start_time(proc.start_time)}")
    if proc.cmdline:
        console.print(f"  [cyan]Command:[/cyan] {escape(proc.cmdline)}", soft_wrap=True)
    console.print(f"  [cyan]Memory:[/cyan] VSZ={proc.vsz_kb} KB, RSS={proc.rss_kb} KB")


def ancestry_to_dict(chain: AncestryChain) -> dict:
    """Nest the chain so that each process holds its parent."""
    node: dict | None = None
    for proc in reversed(chain.processes):
        entry = {"pid": proc.pid, "name": proc.name, "user": proc.username}
        if node is not None:
            entry["parent"] = node
        node = entry
    return node or {}


def render_ancestry(console: Console, chain: AncestryChain, json_output: bool = False) -> None:
    """
    Print the chain as a tree from the queried process up to its root.

    ``json_output`` is for library callers; the command line never combines
    ``--tree`` with ``--json``.
    """
    if json_output:
        console.print_json(data=ancestry_to_dict(chain))
        return

    console.print("[bold]Process Ancestry Tree[/bold]")
    tree: Tree | None = None
    branch: Tree | None = None
    for proc in chain:
        label = f"[green]{escape(proc.name)}[/green][{proc.pid}]"
        if proc.username:
            label += f" ({escape(proc.username)})"
        if branch is None:
            tree = branch = Tree(label)
        else:
            branch = branch.add(label)
    if tree is not None:
        console.print(tree)


def render_environment(console: Console, env: EnvironmentSet, json_output: bool = False) -> None:
    """
    Print every ``KEY=value`` entry on its own unwrapped line.

    ``json_output`` is for library callers; the command line never combines
    ``--env`` with ``--json``.
    """
    if json_output:
        console.print_json(data={"environment": list(env), "count": len(env)})
        return

    console.print(f"[bold]Environment Variables ({len(env)} total)[/bold]")
    for key, value in env.pairs():
        console.print(f"  [cyan]{escape(key)}[/cyan]={escape(value)}", soft_wrap=True)


def connection_warnings(record: ConnectionRecord, owner: ProcessSnapshot | None) -> list[str]:
    """Privilege and health problems of one connection's owner."""
    if owner is None:
        return []
    warnings = []
    if owner.uid == 0 and record.local_port >= FIRST_UNPRIVILEGED_PORT:
        warnings.append(f"Process '{owner.name}' (PID {owner.pid}) running as root on non-system port")
    if owner.state == "Z":
        warnings.append(f"Zombie process '{owner.name}' (PID {owner.pid}) holding port")
    return warnings


def port_warnings(
    port: int,
    records: list[ConnectionRecord],
    owners: dict[int, ProcessSnapshot],
) -> list[str]:
    """Warnings for every connection on ``port``, plus one for shared ports."""
    warnings = []
    for record in records:
        warnings.extend(connection_warnings(record, owners.get(record.pid)))
    if len(records) > 1:
        warnings.append(f"Multiple processes ({len(records)}) listening on port {port}")
    return warnings


def _endpoint(address: str, port: int) -> str:
    if ":" in address:
        return f"[{address}]:{port}"
    return f"{address or '*'}:{port}"


def connections_to_dict(
    port: int,
    records: list[ConnectionRecord],
    owners: dict[int, ProcessSnapshot],
) -> dict:
    """JSON-ready mapping of a port's connections and their owners."""
    connections = []
    for record in records:
        entry = {
            "protocol": record.protocol,
            "state": record.state,
            "local_address": record.local_address,
            "local_port": record.local_port,
            "remote_address": record.remote_address,
            "remote_port": record.remote_port,
        }
        owner = owners.get(record.pid)
        if owner is not None:
            entry["process"] = {
                "pid": owner.pid,
                "name": owner.name,
                "user": owner.username,
                "cmdline": owner.cmdline,
            }
        connections.append(entry)
    return {"port": port, "connection_count": len(records), "connections": connections}


def render_port(
    console: Console,
    port: int,
    records: list[ConnectionRecord],
    owners: dict[int, ProcessSnapshot],
    fmt: OutputFormat = OutputFormat.NORMAL,
) -> None:
    """
    Render the connections on ``port``.

    Args:
        owners: Snapshots of the owning processes keyed by pid. Owners that
            could not be resolved are simply absent.
    """
    if fmt is OutputFormat.JSON:
        console.print_json(data=connections_to_dict(port, records, owners))
        return

    if fmt is OutputFormat.SHORT:
        for record in records:
            owner = owners.get(record.pid)
            if owner is not None:
                line = f"Port {port}: {owner.name}[{owner.pid}] by {owner.username} ({record.state})"
            else:
                line = f"Port {port}: Unknown process ({record.state})"
            console.print(line, markup=False, highlight=False, soft_wrap=True)
        return

    console.print(f"[bold]Port {port} Connections ({len(records)} found)[/bold]")
    for number, record in enumerate(records, start=1):
        console.print()
        console.print(f"[cyan]Connection #{number}:[/cyan]")
        console.print(f"  Protocol: {record.protocol}")
        console.print(f"  State: {record.state}")
        console.print(
            f"  Local: {_endpoint(record.local_address, record.local_port)}", markup=False, soft_wrap=True
        )
        if record.remote_port > 0:
            console.print(
                f"  Remote: {_endpoint(record.remote_address, record.remote_port)}", markup=False, soft_wrap=True
            )

        owner = owners.get(record.pid)
        if owner is None:
            console.print("  Process: Unknown")
            continue
        console.print(f"  [green]Process:[/green] {escape(owner.name)} (PID: {owner.pid})", soft_wrap=True)
        console.print(f"  User: {escape(owner.username)}")
        if owner.cmdline:
            console.print(f"  Command: {escape(owner.cmdline)}", soft_wrap=True)
        if owner.uid == 0 and record.local_port >= FIRST_UNPRIVILEGED_PORT:
            console.print("  [yellow]Warning: Process running with elevated privileges (root)[/yellow]")


def render_warnings(
    console: Console,
    port: int,
    records: list[ConnectionRecord],
    owners: dict[int, ProcessSnapshot],
) -> None:
    """Print only the warnings for ``port``, or a line saying there are none."""
    console.print(f"[bold]Port {port} - Security Warnings[/bold]")
    warnings = port_warnings(port, records, owners)
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}", soft_wrap=True)
    if not warnings:
        console.print(f"[green]No warnings found for port {port}[/green]")


def render_process_list(
    console: Console,
    processes: list[ProcessSnapshot],
    fmt: OutputFormat = OutputFormat.NORMAL,
) -> None:
    """Print every process as a table, one line each, or JSON."""
    if fmt is OutputFormat.JSON:
        console.print_json(data={"processes": [process_to_dict(p) for p in processes], "count": len(processes)})
        return

    if fmt is OutputFormat.SHORT:
        for proc in processes:
            console.print(
                f"{proc.pid}: {proc.name} by {proc.username}", markup=False, highlight=False, soft_wrap=True
            )
        return

    table = Table(title=f"Running Processes ({len(processes)} total)", title_justify="left")
    table.add_column("PID", justify="right")
    table.add_column("PPID", justify="right")
    table.add_column("NAME", style="green", max_width=20, no_wrap=True)
    table.add_column("USER", max_width=12, no_wrap=True)
    table.add_column("COMMAND", overflow="ellipsis")
    for proc in processes:
        table.add_row(
            str(proc.pid),
            str(proc.ppid),
            escape(proc.name),
            escape(proc.username),
            escape(proc.cmdline or "(no cmdline)"),
        )
    console.print(table)
