"""Command line interface for gallery_sync package."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

from . import __version__
from .cli_progress import (
    GalleryProgressDisplay,
    render_configuration_summary,
    render_gallery,
)
from .engine import GalleryEngine
from .errors import GalleryError
from .models import GalleryConfig, UploadStatus
from .services import (
    APIError,
    CloudinaryObjectStore,
    FirestoreDocumentStore,
    HTTPAPIClient,
    StaticAuthGate,
    firestore_base_url,
)
from .services.document_store import DEFAULT_DOCUMENT, DEFAULT_FIELD
from .services.object_store import DEFAULT_PRESETS

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
_TRUTHY = {"1", "true", "yes", "on"}


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=True,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise CLIError(f"{name} environment variable is not set")
    return value


def _collect_files(sources: Sequence[Path]) -> List[Path]:
    """Expand directories to their image files. Explicit files are kept as given."""
    files: List[Path] = []
    for source in sources:
        source = Path(source).expanduser()
        if source.is_dir():
            files.extend(
                p for p in sorted(source.iterdir())
                if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
            )
        elif source.is_file():
            files.append(source)
        else:
            raise CLIError(f"source does not exist: {source}")
    return files


def _is_admin() -> bool:
    if os.getenv("FIRESTORE_TOKEN"):
        return True
    return (os.getenv("GALLERY_ADMIN") or "").strip().lower() in _TRUTHY


def _build_config() -> GalleryConfig:
    try:
        config = GalleryConfig.from_env()
    except ValueError as exc:
        raise CLIError(f"invalid GALLERY_* setting: {exc}") from exc
    # Keep finished tasks so the summary can report them
    return dataclasses.replace(config, auto_dismiss_delay=None)


async def _with_engine(action, config: GalleryConfig, need_objects: bool = False) -> int:
    project_id = _require_env("FIRESTORE_PROJECT_ID")
    token = os.getenv("FIRESTORE_TOKEN")
    headers = {"Authorization": f"Bearer {token}"} if token else None

    presets_env = os.getenv("CLOUDINARY_UPLOAD_PRESETS")
    presets = tuple(p.strip() for p in presets_env.split(",") if p.strip()) if presets_env else DEFAULT_PRESETS
    cloud_name = _require_env("CLOUDINARY_CLOUD_NAME") if need_objects else os.getenv("CLOUDINARY_CLOUD_NAME", "")

    async with HTTPAPIClient(firestore_base_url(project_id), headers=headers) as api_client:
        documents = FirestoreDocumentStore(
            api_client,
            document=os.getenv("GALLERY_DOCUMENT") or DEFAULT_DOCUMENT,
            field=os.getenv("GALLERY_FIELD") or DEFAULT_FIELD,
            api_key=os.getenv("FIRESTORE_API_KEY"),
        )
        async with CloudinaryObjectStore(cloud_name, upload_presets=presets) as objects:
            async with GalleryEngine(objects, documents, StaticAuthGate(_is_admin()), config) as engine:
                return await action(engine)


async def _cmd_list(engine: GalleryEngine) -> int:
    render_gallery(engine.items)
    return 0


def _upload_action(files: List[Path], retries: int):
    async def action(engine: GalleryEngine) -> int:
        display = GalleryProgressDisplay()
        engine.subscribe(display.on_snapshot)
        engine.on_batch_complete(display.on_batch_complete)

        admission = await engine.admit_batch(files)
        for rejection in admission.rejected:
            print(f"SKIPPED: {rejection}", file=sys.stderr)

        await admission.wait()
        for _ in range(retries):
            failed = [t.id for t in engine.snapshot().tasks if t.status == UploadStatus.ERROR]
            if not failed:
                break
            for task_id in failed:
                retry = await engine.retry(task_id)
                await retry.wait()

        snapshot = engine.snapshot()
        display.on_finish(snapshot)
        return 0 if not snapshot.failed and not admission.rejected else 1

    return action


def _move_action(source: int, dest: int):
    async def action(engine: GalleryEngine) -> int:
        await engine.reorder(source, dest)
        render_gallery(engine.items)
        return 0

    return action


def _remove_action(index: int):
    async def action(engine: GalleryEngine) -> int:
        await engine.remove(index)
        render_gallery(engine.items)
        return 0

    return action


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gallery-sync",
        description="Upload photos and manage the ordered gallery of a gym profile.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"gallery-sync {__version__}",
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("list", help="Show the gallery in display order")

    upload = commands.add_parser("upload", help="Upload images and append them to the gallery")
    upload.add_argument("files", nargs="+", type=Path, help="Image files or folders")
    upload.add_argument(
        "-r",
        "--retries",
        type=int,
        default=0,
        help="Retry failed uploads this many times",
    )

    move = commands.add_parser("move", help="Move the photo at SOURCE to position DEST")
    move.add_argument("source", type=int)
    move.add_argument("dest", type=int)

    remove = commands.add_parser("remove", help="Remove the photo at INDEX")
    remove.add_argument("index", type=int)
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = _build_config()
        need_objects = False
        if args.command == "list":
            action = _cmd_list
        elif args.command == "upload":
            files = _collect_files(args.files)
            if not files:
                raise CLIError("no image files found")
            action = _upload_action(files, max(args.retries, 0))
            need_objects = True
        elif args.command == "move":
            action = _move_action(args.source, args.dest)
        else:
            action = _remove_action(args.index)

        if args.command == "upload":
            render_configuration_summary(
                {
                    "Files": len(files),
                    "Cloud": os.getenv("CLOUDINARY_CLOUD_NAME") or "(missing)",
                    "Project": os.getenv("FIRESTORE_PROJECT_ID") or "(missing)",
                    "Document": os.getenv("GALLERY_DOCUMENT") or DEFAULT_DOCUMENT,
                    "Prefix": config.upload_prefix,
                    "Max Photos": config.policy.max_items,
                    "Max Size": f"{config.policy.max_size_mb:g} MB",
                    "Types": ", ".join(sorted(config.policy.allowed_types)),
                    "Parallel": config.max_parallel or "whole batch",
                    "Admin": "yes" if _is_admin() else "no",
                    "Env File": str(used_env_file) if used_env_file else "-",
                    "Logging": effective_log_mode,
                }
            )

        return asyncio.run(_with_engine(action, config, need_objects=need_objects))
    except (CLIError, GalleryError, APIError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except (IndexError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
