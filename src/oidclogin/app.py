"""Typer application and CLI entry point for oidclogin.

Commands:

* ``oidclogin serve`` -- run the login backend under uvicorn.
* ``oidclogin discover`` -- fetch and print the provider metadata.
* ``oidclogin pkce`` -- print a fresh state/verifier/challenge triple.
* ``oidclogin config show`` -- print the effective settings, secrets masked.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. :class:`~oidclogin.exceptions.OIDCLoginError` exits with
the error's ``exit_code``; anything else writes a crash log under the data
directory and exits with :data:`~oidclogin.exit_codes.EXIT_GENERIC_FAILURE`.
"""

from __future__ import annotations

import asyncio
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import httpx
import typer

from oidclogin import __version__
from oidclogin.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="oidclogin",
    help="OAuth 2.0 Authorization Code + PKCE login backend for OpenID Connect providers.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)
config_app = typer.Typer(no_args_is_help=True)
app.add_typer(config_app, name="config", help="Configuration inspection.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"oidclogin {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output and debug logging."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~oidclogin.output.OutputManager` and the
    Rich log handler, and stores ``verbose`` in ``ctx.obj``.
    """
    from oidclogin.output import OutputFormat, OutputManager, set_output, setup_logging

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    setup_logging(verbose=verbose, console=output.stderr_console)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@app.command("serve")
def serve_command(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind (HOST)."),
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on (PORT)."),
    issuer: Optional[str] = typer.Option(None, "--issuer", help="Provider issuer URL (ISSUER)."),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth client id (CLIENT_ID)."),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes (development)."),
) -> None:
    """Run the login backend.

    Example::

        oidclogin serve --port 3000
    """
    import os

    import uvicorn

    from oidclogin.config import load_settings
    from oidclogin.exceptions import OIDCLoginError
    from oidclogin.output import error, info
    from oidclogin.server import create_app

    overrides = {"host": host, "port": port, "issuer": issuer, "client_id": client_id}
    try:
        settings = load_settings(overrides)
    except OIDCLoginError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    info(f"Server on http://{settings.host}:{settings.port}")

    if reload:
        # The reloader imports the app in a fresh process; hand overrides over via env.
        for var, value in (("ISSUER", issuer), ("CLIENT_ID", client_id)):
            if value is not None:
                os.environ[var] = value
        uvicorn.run(
            "oidclogin.server:create_app_from_env",
            factory=True,
            reload=True,
            host=settings.host,
            port=settings.port,
            log_config=None,
        )
        return

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


@app.command("discover")
def discover_command(
    issuer: Optional[str] = typer.Option(None, "--issuer", help="Provider issuer URL (ISSUER)."),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth client id (CLIENT_ID)."),
) -> None:
    """Fetch and print the provider's OpenID configuration."""
    from oidclogin.config import load_settings
    from oidclogin.discovery import DiscoveryCache
    from oidclogin.exceptions import OIDCLoginError
    from oidclogin.output import debug, error, format_data, success

    try:
        settings = load_settings({"issuer": issuer, "client_id": client_id})
    except OIDCLoginError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    debug(f"Fetching {settings.discovery_url}")

    async def _discover() -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout)) as http:
            metadata = await DiscoveryCache(
                settings.discovery_url, http, issuer=settings.issuer
            ).get_provider_metadata()
        return metadata.model_dump(mode="json")

    try:
        data = asyncio.run(_discover())
    except OIDCLoginError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    format_data(data)
    success(f"Provider metadata loaded for {data['issuer']}")


@app.command("pkce")
def pkce_command() -> None:
    """Print a freshly generated state, verifier and S256 challenge."""
    from oidclogin.output import format_data
    from oidclogin.pkce import CHALLENGE_METHOD, derive_challenge, generate_attempt

    attempt = generate_attempt()
    format_data(
        {
            "state": attempt.state,
            "code_verifier": attempt.verifier,
            "code_challenge": derive_challenge(attempt.verifier),
            "code_challenge_method": CHALLENGE_METHOD,
        }
    )


@config_app.command("show")
def config_show() -> None:
    """Print the effective settings with secrets masked."""
    from oidclogin.config import load_settings, masked_settings
    from oidclogin.exceptions import OIDCLoginError
    from oidclogin.output import error, print_table

    try:
        data = masked_settings(load_settings())
    except OIDCLoginError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    rows = [[key, "" if value is None else _cell(value)] for key, value in data.items()]
    print_table(["Setting", "Value"], rows, title="oidclogin settings")


def _cell(value: Any) -> str:
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    return str(value)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from oidclogin.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``oidclogin`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from oidclogin.exceptions import OIDCLoginError
        from oidclogin.output import error

        if isinstance(exc, OIDCLoginError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
