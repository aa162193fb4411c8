"""Starter content for scaffolded files, keyed by file extension."""

from __future__ import annotations

import json
import posixpath
from typing import Callable

TemplateFn = Callable[[str, str, str | None], str]


def _ts(file_name: str, stem: str, template: str | None) -> str:
    return f"// {file_name}\n\nexport default function {stem}() {{\n  // Implementation here\n}}\n"


def _js(file_name: str, stem: str, template: str | None) -> str:
    return (
        f"// {file_name}\n\nfunction {stem}() {{\n  // Implementation here\n}}\n\n"
        f"module.exports = {stem};\n"
    )


def _py(file_name: str, stem: str, template: str | None) -> str:
    return f'"""{file_name}"""\n\n\ndef {stem.replace("-", "_")}():\n    pass\n'


def _md(file_name: str, stem: str, template: str | None) -> str:
    return (
        f"# {stem}\n\nDescription of this {template or 'project'}.\n\n"
        "## Getting Started\n\nInstructions here.\n"
    )


def _json(file_name: str, stem: str, template: str | None) -> str:
    if file_name.lower() == "package.json":
        package = {
            "name": template or "project",
            "version": "1.0.0",
            "description": "",
            "main": "index.js",
            "scripts": {"start": "node index.js"},
        }
        return json.dumps(package, indent=2) + "\n"
    return "{\n  \n}\n"


def _css(file_name: str, stem: str, template: str | None) -> str:
    return (
        f"/* {file_name} */\n\nbody {{\n  margin: 0;\n  padding: 0;\n"
        "  font-family: Arial, sans-serif;\n}\n"
    )


def _html(file_name: str, stem: str, template: str | None) -> str:
    return (
        '<!DOCTYPE html>\n<html lang="en">\n<head>\n  <meta charset="UTF-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"  <title>{stem}</title>\n</head>\n<body>\n  <h1>Hello, World!</h1>\n</body>\n</html>\n"
    )


def _default(file_name: str, stem: str, template: str | None) -> str:
    return f"# {file_name}\n\n"


TEMPLATES: dict[str, TemplateFn] = {
    "ts": _ts,
    "tsx": _ts,
    "js": _js,
    "jsx": _js,
    "py": _py,
    "md": _md,
    "json": _json,
    "css": _css,
    "html": _html,
}


def render_template(file_path: str, template: str | None = None) -> str:
    """Starter content for ``file_path``; unknown extensions get a heading."""
    file_name = posixpath.basename(file_path)
    stem, ext = posixpath.splitext(file_name)
    generator = TEMPLATES.get(ext[1:].lower(), _default)
    return generator(file_name, stem or file_name, template)
