"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from wsldockctl.config import GuestConfig
from wsldockctl.guest.verification import VERIFY_TEMPLATE, script_context
from wsldockctl.templates import TemplateEngine


def test_render_to_string_uses_builtin_templates() -> None:
    """The verification script renders from the packaged template."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(VERIFY_TEMPLATE, script_context(GuestConfig()))

    assert output.startswith("#!/bin/bash\n")
    assert "sudo systemctl enable docker.service" in output
    assert "docker run --rm hello-world" in output
    assert "alias dc='docker compose'" in output
    assert output.endswith("\n")


def test_render_to_string_is_strict() -> None:
    """Missing variables raise instead of rendering empty strings."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string(VERIFY_TEMPLATE, {"service": "docker.service"})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "verify-docker.sh"
    context = script_context(GuestConfig())

    changed = engine.render_to_path(VERIFY_TEMPLATE, destination, context, mode=0o755)

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o755"
    assert not (tmp_path / ".verify-docker.sh.tmp").exists()

    # Second render with same content should be a no-op.
    changed_again = engine.render_to_path(VERIFY_TEMPLATE, destination, context, mode=0o755)
    assert changed_again is False


def test_render_to_path_repairs_mode_without_rewriting(tmp_path: Path) -> None:
    """Identical content with the wrong mode is fixed but reported unchanged."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "verify-docker.sh"
    context = script_context(GuestConfig())
    engine.render_to_path(VERIFY_TEMPLATE, destination, context, mode=0o755)
    destination.chmod(0o644)

    assert engine.render_to_path(VERIFY_TEMPLATE, destination, context, mode=0o755) is False
    assert oct(destination.stat().st_mode & 0o777) == "0o755"


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "scripts" / "verify-docker.sh.j2"
    override_template.parent.mkdir(parents=True, exist_ok=True)
    override_template.write_text("override {{ smoke_image }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    rendered = engine.render_to_string(VERIFY_TEMPLATE, script_context(GuestConfig()))

    assert rendered == "override hello-world"
