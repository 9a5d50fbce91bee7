"""
Shared CLI helpers for docka-backup

Tool-bench accessors: commands ask the Typer context for configuration,
run context and transport instead of building them themselves.
"""

import typer

from ..cores.run_context import RunContext, build_context, build_transport
from ..cores.safe_exit_manager import SafeExitManager
from ..cores.remote_transport import RemoteTransport
from ..helpers.config import AppConfig
from ..helpers.errors import ConfigError, RuntimeUnreachable
from ..helpers.logging import get_logger, log_manager
from ..helpers.ui_utils import print_error, print_run_summary
from ..types import RunSummary

logger = get_logger(__name__)


def ensure_config(ctx: typer.Context) -> AppConfig:
    """Load and cache the configuration or exit with code 1."""
    if ctx.obj.get("config") is not None:
        return ctx.obj["config"]

    try:
        cfg = AppConfig.from_env(env_file=ctx.obj.get("env_file"))
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    # CLI options beat the configured logging settings
    log_manager.configure(
        level=ctx.obj.get("log_level") or cfg.logging.level,
        log_file=ctx.obj.get("log_file") or cfg.logging.file,
        fmt=cfg.logging.format,
    )
    logger.debug("Effective configuration", extra={"config": cfg.masked()})
    ctx.obj["config"] = cfg
    return cfg


def ensure_transport(ctx: typer.Context) -> RemoteTransport:
    if "transport" not in ctx.obj:
        ctx.obj["transport"] = build_transport(ensure_config(ctx))
    return ctx.obj["transport"]


def ensure_run_context(ctx: typer.Context) -> RunContext:
    """Connect to Docker and the server or exit with code 1."""
    if "run_context" in ctx.obj:
        return ctx.obj["run_context"]

    cfg = ensure_config(ctx)
    for problem in cfg.validate_paths():
        print_error(problem)
        raise typer.Exit(code=1)

    try:
        run_ctx = build_context(cfg, cancel_event=SafeExitManager.get_instance().cancel_event)
    except RuntimeUnreachable as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    ctx.obj["run_context"] = run_ctx
    return run_ctx


def exit_with_summary(summary: RunSummary) -> None:
    """Print the summary table and exit 0 only if the run succeeded."""
    print_run_summary(summary)
    raise typer.Exit(code=0 if summary.success else 1)
