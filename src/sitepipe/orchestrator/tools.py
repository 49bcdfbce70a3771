from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Sequence

from .config import ToolSpec
from .errors import TransformError


def render_argv(
    spec: ToolSpec,
    *,
    inputs: Sequence[Path] = (),
    output: Path | None = None,
    dev_mode: bool = True,
) -> List[str]:
    """Fill a tool's argv template."""
    subs = {
        "input": str(inputs[0]) if inputs else "",
        "output": str(output) if output is not None else "",
        "output_dir": str(output.parent) if output is not None else "",
    }
    argv: List[str] = []
    for arg in spec.argv:
        if arg == "{inputs}":
            argv.extend(str(p) for p in inputs)
        elif arg == "{sourcemap}":
            argv.extend(spec.sourcemap if dev_mode else spec.no_sourcemap)
        else:
            argv.append(arg.format(**subs))
    return argv


def _writes_output(spec: ToolSpec) -> bool:
    return any("{output}" in a or "{output_dir}" in a for a in spec.argv)


def run_tool(
    task: str,
    spec: ToolSpec,
    *,
    inputs: Sequence[Path] = (),
    output: Path | None = None,
    dev_mode: bool = True,
    check: bool = True,
    cwd: Path | None = None,
) -> subprocess.CompletedProcess:
    """Run an external tool.

    When the template has no output placeholder, stdout is written to
    ``output``. A missing executable or (with ``check``) a non-zero exit raises
    ``TransformError`` carrying the tool's stderr.
    """
    argv = render_argv(spec, inputs=inputs, output=output, dev_mode=dev_mode)
    stdin = None
    if spec.stdin and inputs:
        stdin = Path(inputs[0]).read_bytes()
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
    try:
        proc = subprocess.run(argv, input=stdin, capture_output=True, cwd=cwd)
    except FileNotFoundError as e:
        raise TransformError(task, f"{spec.name} not found: {argv[0]}") from e
    if check and proc.returncode != 0:
        detail = proc.stderr.decode("utf-8", "replace").strip() or proc.stdout.decode(
            "utf-8", "replace"
        ).strip()
        raise TransformError(
            task, f"{spec.name} exited with {proc.returncode}: {detail}"
        )
    if output is not None and not _writes_output(spec) and proc.returncode == 0:
        output.write_bytes(proc.stdout)
    return proc
