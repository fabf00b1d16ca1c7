"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

import typer
from serial.tools import list_ports

from rtuenroll.api import Client
from rtuenroll.core.config import load_config
from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import EnrollError
from rtuenroll.core.model import LightTarget, ProgressEvent, SensorTarget, SessionResult, Status
from rtuenroll.core.targets import YamlTargetSource

app = typer.Typer(help="Enroll Modbus RTU sensors and light fixtures on a shared serial bus")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log bus traffic and state changes"),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=_LOG_FORMAT)


def _build_client(config_path: Path | None) -> Client:
    return Client(config=load_config(config_path))


def _describe(target: SensorTarget | LightTarget) -> str:
    return f"{target.kind.capitalize()} {target.row} (address {target.address})"


def _format_event(event: ProgressEvent) -> str:
    line = f"{_describe(event.target)}: {event.status.value}"
    if event.serial is not None:
        line += f" SN={event.serial}"
    if event.note:
        line += f" - {event.note}"
    return line


def _echo_event(event: ProgressEvent) -> None:
    typer.echo(_format_event(event), err=event.status is Status.FAIL)


def _listen_for_skip(control: RunControl) -> None:
    def _reader() -> None:
        for _line in sys.stdin:
            if control.cancelled:
                return
            control.request_skip()

    threading.Thread(target=_reader, name="rtuenroll-skip", daemon=True).start()


def _run_interruptible(client: Client, source: YamlTargetSource, control: RunControl) -> SessionResult:
    outcome: dict[str, object] = {}

    def _worker() -> None:
        try:
            outcome["result"] = client.enroll(source, control=control, sink=_echo_event)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=_worker, name="rtuenroll-run")
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            typer.echo("Stopping ...", err=True)
            control.cancel()

    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return outcome["result"]  # type: ignore[return-value]


@app.command("ports")
def list_serial_ports() -> None:
    """List serial ports available on this machine."""
    ports = sorted(list_ports.comports(), key=lambda p: p.device)
    if not ports:
        typer.echo("No serial ports found")
        return
    for port in ports:
        typer.echo(f"{port.device}: {port.description}")


@app.command("targets")
def show_targets(
    targets: Path = typer.Argument(..., help="YAML target list"),
    config: Path | None = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Show the sensors and lights listed in a target file."""
    try:
        source = YamlTargetSource(targets, default_address=load_config(config).default_address)
        sensors = source.load_sensor_targets()
        lights = source.load_light_targets()
    except EnrollError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Sensors ({len(sensors)}):")
    for sensor in sensors:
        mark = "x" if sensor.selected else " "
        buzzer = sensor.buzzer.value if sensor.buzzer else "-"
        serial = sensor.serial if sensor.serial is not None else "-"
        typer.echo(f"  [{mark}] {sensor.row}: address {sensor.address} buzzer={buzzer} SN={serial} {sensor.model}".rstrip())
    typer.echo(f"Lights ({len(lights)}):")
    for light in lights:
        mark = "x" if light.selected else " "
        typer.echo(f"  [{mark}] {light.row}: address {light.address} timeout={light.timeout}")


@app.command("probe")
def probe(
    address: int = typer.Argument(..., min=1, max=247, help="Bus address to probe"),
    port: str | None = typer.Option(None, "--port", help="Serial port, e.g. /dev/ttyUSB0 or COM3"),
    timeout_ms: int | None = typer.Option(None, "--timeout-ms", help="Probe timeout"),
    config: Path | None = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Check whether a device answers at ADDRESS.

    Exit code 2 means nothing answered.
    """
    try:
        with _build_client(config) as client:
            client.connect(port)
            alive = client.probe(address, timeout_ms=timeout_ms)
    except EnrollError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Address {address}: {'alive' if alive else 'no answer'}")
    if not alive:
        raise typer.Exit(code=2)


@app.command("run")
def run_enrollment(
    targets: Path = typer.Argument(..., help="YAML target list"),
    port: str | None = typer.Option(None, "--port", help="Serial port, e.g. /dev/ttyUSB0 or COM3"),
    config: Path | None = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Enroll every selected sensor, then every selected light.

    Press Enter to skip the device currently awaited; Ctrl-C stops the run
    without saving serial numbers.
    """
    try:
        client = _build_client(config)
        source = YamlTargetSource(targets, default_address=client.config.default_address)
        control = RunControl()
        with client:
            client.connect(port)
            typer.echo("Connected. Power up devices one at a time. Enter = skip, Ctrl-C = stop.")
            _listen_for_skip(control)
            result = _run_interruptible(client, source, control)
    except EnrollError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(
        f"Done: {result.count(Status.OK)} OK, {result.count(Status.FAIL)} failed, "
        f"{result.count(Status.SKIPPED)} skipped"
    )
    if result.cancelled:
        typer.echo(
            f"Canceled: {len(result.identifiers)} serial numbers were not saved",
            err=True,
        )
        raise typer.Exit(code=1)
    if result.persisted:
        typer.echo(f"Saved {len(result.identifiers)} serial numbers to {targets}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
