"""MilesConnect CLI: fleet route simulator and status maintenance.

Commands:
  init-db       : create tables (optionally seed a demo fleet)
  tick          : run one simulation tick
  run           : run the simulator on a fixed cadence until Ctrl+C
  sync-status   : repair vehicles/drivers marked busy with no active shipment
  status        : show in-use vehicles, their progress and ETA
  tracking-mode : switch a vehicle between simulated and live tracking
  serve         : launch the API server
"""
from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table


app = typer.Typer(
    name="milesconnect",
    help="Fleet route simulation and status maintenance.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _setup_logging() -> None:
    from milesconnect.config import settings
    logging.basicConfig(level=settings.LOG_LEVEL)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_cmd(
    demo: bool = typer.Option(False, "--demo", help="Seed sample drivers, vehicles and one dispatched shipment"),
):
    """Create the database tables."""
    try:
        from milesconnect.database import init_db, SessionLocal

        with console.status("[bold]Creating database..."):
            init_db()

        if demo:
            from scripts.seed_demo_fleet import seed_demo_fleet

            db = SessionLocal()
            try:
                with console.status("[bold]Seeding demo fleet..."):
                    counts = seed_demo_fleet(db, dispatch=True)
                db.commit()
            finally:
                db.close()
            console.print(
                f"  Drivers: {counts['drivers']}  |  Vehicles: {counts['vehicles']}  |  "
                f"Shipments: {counts['shipments']}"
            )
        console.print("[green]Database ready.[/green]")
    except Exception as e:
        console.print(f"[red]Setup failed: {e}[/red]")
        raise typer.Exit(1)


@app.command("tick")
def tick():
    """Advance every simulated in-transit vehicle once."""
    from milesconnect.modules.simulation_scheduler import TickFailedError, get_scheduler

    _setup_logging()
    try:
        result = get_scheduler().run_tick()
    except TickFailedError as e:
        console.print(f"[red]Tick failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"Updated: {result.updated}  |  Arrived: {len(result.arrived)}  |  "
        f"Skipped: {len(result.skipped)}  |  Failed: {len(result.failed)}"
    )
    for vehicle_id in result.failed:
        console.print(f"  [yellow]write failed:[/yellow] {vehicle_id}")


@app.command("run")
def run(
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between ticks (default: SIMULATION_TICK_SECONDS)"),
    ticks: Optional[int] = typer.Option(None, "--ticks", help="Stop after this many ticks"),
):
    """Run the simulator on a fixed cadence (Ctrl+C to stop)."""
    from milesconnect.modules.simulation_runner import SimulationRunner
    from milesconnect.modules.simulation_scheduler import get_scheduler

    _setup_logging()
    runner = SimulationRunner(get_scheduler(), interval=interval)
    console.print(f"Simulating every [cyan]{runner.interval:g}s[/cyan], press Ctrl+C to stop")
    try:
        runner.run(max_ticks=ticks)
    except KeyboardInterrupt:
        console.print("[dim]Stopping after the current tick.[/dim]")
    console.print(f"Ticks run: {runner.ticks_run}")


@app.command("sync-status")
def sync_status(
    dry_run: bool = typer.Option(False, "--dry-run", help="Report inconsistencies without fixing them"),
):
    """Reset vehicles/drivers marked busy that have no in-transit shipment."""
    from milesconnect.modules.fleet_store import FleetStore, StoreError
    from milesconnect.modules import status_reconciler

    _setup_logging()
    store = FleetStore()
    try:
        if dry_run:
            report = status_reconciler.inspect(store)
        else:
            report = status_reconciler.reconcile(store)
    except StoreError as e:
        console.print(f"[red]Status sync failed: {e}[/red]")
        raise typer.Exit(1)

    if dry_run:
        console.print(
            f"Active shipments: {report['active_shipments']}  |  In-use vehicles: {report['in_use_vehicles']}  |  "
            f"Working drivers: {report['working_drivers']}"
        )
        if not report["needs_sync"]:
            console.print("[green]Fleet status is consistent.[/green]")
            return
        _print_refs_table(console, "Inconsistent vehicles", report["inconsistent_vehicles"])
        _print_refs_table(console, "Inconsistent drivers", report["inconsistent_drivers"])
        console.print("Run [cyan]milesconnect sync-status[/cyan] to fix.")
        return

    console.print(
        f"Vehicles fixed: {report['vehicles_fixed']}  |  Drivers fixed: {report['drivers_fixed']}"
    )
    if report["vehicles_fixed_details"]:
        _print_refs_table(console, "Vehicles reset", report["vehicles_fixed_details"])
    if report["drivers_fixed_details"]:
        _print_refs_table(console, "Drivers reset", report["drivers_fixed_details"])
    if report["failed"]:
        console.print(f"[yellow]{len(report['failed'])} updates failed, run again to retry.[/yellow]")
        raise typer.Exit(1)


@app.command("status")
def status():
    """Show in-use vehicles with route progress and ETA."""
    from milesconnect.modules.fleet_store import FleetStore, StoreError
    from milesconnect.modules.simulation_scheduler import active_vehicle_summary

    try:
        summary = active_vehicle_summary(FleetStore())
    except StoreError as e:
        console.print(f"[red]Could not read fleet: {e}[/red]")
        raise typer.Exit(1)

    if not summary["vehicles"]:
        console.print("[dim]No vehicles in use.[/dim]")
        return

    table = Table(title=f"Vehicles in use ({summary['active_vehicles']})")
    table.add_column("Plate", style="cyan")
    table.add_column("Mode")
    table.add_column("Position")
    table.add_column("Progress")
    table.add_column("ETA")
    for v in summary["vehicles"]:
        position = (
            f"{v['latitude']:.5f}, {v['longitude']:.5f}"
            if v["latitude"] is not None and v["longitude"] is not None else "-"
        )
        progress = f"{v['progress_pct']:.0f}%" if v["progress_pct"] is not None else "-"
        eta = v["eta"].strftime("%H:%M:%S") if v["eta"] else "-"
        table.add_row(v["license_plate"] or v["id"], str(v["tracking_mode"].value), position, progress, eta)
    console.print(table)


@app.command("tracking-mode")
def tracking_mode(
    vehicle_id: str = typer.Argument(..., help="Vehicle id"),
    mode: str = typer.Argument(..., help="simulated or live"),
):
    """Switch a vehicle between simulated and live tracking."""
    from milesconnect.modules.fleet_store import FleetStore, StoreError
    from milesconnect.modules.tracking_mode import VehicleNotFoundError, set_tracking_mode

    try:
        new_mode = set_tracking_mode(FleetStore(), vehicle_id, mode)
    except ValueError:
        console.print(f"[red]Unknown tracking mode '{mode}' (use simulated or live).[/red]")
        raise typer.Exit(2)
    except VehicleNotFoundError:
        console.print(f"[red]Vehicle {vehicle_id} not found.[/red]")
        raise typer.Exit(1)
    except StoreError as e:
        console.print(f"[red]Could not update vehicle: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"Vehicle {vehicle_id} is now [cyan]{new_mode.value}[/cyan].")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Launch the API server."""
    import uvicorn

    console.print(f"API running at [cyan]http://{host}:{port}[/cyan], press Ctrl+C to stop")
    uvicorn.run("milesconnect.main:app", host=host, port=port)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_refs_table(con: Console, title: str, refs: list[dict]) -> None:
    if not refs:
        return
    table = Table(title=f"{title} ({len(refs)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    for ref in refs:
        table.add_row(ref["id"], ref.get("label") or "-")
    con.print(table)


if __name__ == "__main__":
    app()
