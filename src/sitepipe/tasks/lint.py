"""JavaScript lint task.

Lints the root of the bundle folder and every subfolder independently with the
configured linter (ESLint JSON output). Each sub-result is reported on its
own; the completion callback writes the report once all of them are in.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..orchestrator import task
from ..orchestrator.composite import CompositeTask, SubUnit
from ..orchestrator.errors import LintViolation, TransformError


JS_REPORT = "js-lint-report.txt"


@dataclass
class LintMessage:
    file: str
    line: int
    column: int
    rule: str
    severity: int
    message: str

    def format(self) -> str:
        level = "error" if self.severity >= 2 else "warning"
        return f"{self.file}:{self.line}:{self.column} {level} {self.message} ({self.rule})"


def parse_eslint_json(text: str) -> List[LintMessage]:
    out: List[LintMessage] = []
    for entry in json.loads(text or "[]"):
        for m in entry.get("messages", []):
            out.append(
                LintMessage(
                    file=entry.get("filePath", ""),
                    line=int(m.get("line") or 0),
                    column=int(m.get("column") or 0),
                    rule=m.get("ruleId") or "-",
                    severity=int(m.get("severity") or 0),
                    message=m.get("message", ""),
                )
            )
    return out


@task(name="jslint", output=lambda c: c.paths.lint_reports)
def jslint(ctx):
    """Lint the script bundle folder and each of its subfolders."""
    bundle_dir = ctx.config.resolve(ctx.config.paths.js_bundle_dir)
    composite = CompositeTask(bundle_dir, root_pattern="*.js", sub_pattern="**/*.js")

    def lint(unit: SubUnit) -> List[LintMessage]:
        if not unit.inputs:
            messages: List[LintMessage] = []
        else:
            proc = ctx.run_tool("eslint", inputs=list(unit.inputs), check=False)
            stdout = proc.stdout.decode("utf-8", "replace")
            # eslint exits 1 when it found problems, 2 on crashes
            try:
                messages = parse_eslint_json(stdout)
            except ValueError as e:
                detail = proc.stderr.decode("utf-8", "replace").strip() or str(e)
                raise TransformError(ctx.task.name, detail) from e
            if proc.returncode not in (0, 1):
                raise TransformError(ctx.task.name, f"eslint exited with {proc.returncode}")
        for m in messages:
            ctx.log.warning("%s", m.format())
        if not messages:
            ctx.log.info("%s: js validated correctly", unit.label)
        return messages

    def done(results) -> None:
        lines = []
        total = 0
        for unit, messages in results:
            total += len(messages)
            lines.append(f"[{unit.label}] {len(messages)} message(s)")
            lines.extend(m.format() for m in messages)
        if results:
            report = Path(ctx.output) / JS_REPORT
            report.parent.mkdir(parents=True, exist_ok=True)
            report.write_text("\n".join(lines) + "\n", encoding="utf-8")
            ctx.wrote()
        if total and ctx.config.lint_fails_build:
            raise LintViolation(total)

    composite.run(ctx, lint, done)
