from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .config import InjectorConfig
from .guards import InjectionError, validate_patch_applies
from .pod_patch import get_pod_patch_operations

app = typer.Typer(help="Render the daprd sidecar injection patch for a pod manifest.")


@app.command()
def render(
    pod: Path = typer.Option(
        ...,
        "--pod",
        "-p",
        help="Pod manifest (YAML or JSON).",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Injector configuration YAML (defaults to environment variables).",
    ),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Write the result here instead of stdout.",
    ),
    apply: bool = typer.Option(
        False,
        "--apply/--no-apply",
        help="Emit the patched pod instead of the JSON Patch.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s: %(message)s")

    pod_obj = _load_pod(pod)
    injector_config = _load_config(config)
    try:
        patch_ops = get_pod_patch_operations(pod_obj, injector_config)
        patched = validate_patch_applies(pod_obj, patch_ops)
    except InjectionError as exc:
        typer.echo(f"Injection failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    result: Any = patched if apply else patch_ops
    rendered = json.dumps(result, indent=2)
    if out is None:
        typer.echo(rendered)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(rendered, encoding="utf-8")
    typer.echo(f"Wrote {len(patch_ops)} patch operation(s) to {out.resolve()}")


def _load_config(path: Optional[Path]) -> InjectorConfig:
    if path is None:
        return InjectorConfig.from_env()
    try:
        return InjectorConfig.from_yaml(path)
    except FileNotFoundError as exc:
        raise typer.BadParameter(f"Config file not found: {path}") from exc
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _load_pod(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise typer.BadParameter(f"Pod manifest not found: {path}")
    documents: List[Any] = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
    if not documents or not isinstance(documents[0], dict):
        raise typer.BadParameter("Pod manifest must be a mapping")
    pod = documents[0]
    if pod.get("kind") not in (None, "Pod"):
        raise typer.BadParameter(f"Expected a Pod manifest, got {pod.get('kind')}")
    return pod


if __name__ == "__main__":  # pragma: no cover
    app()
