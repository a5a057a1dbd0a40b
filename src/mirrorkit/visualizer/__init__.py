"""Terminal rendering of provisioning plans and reports."""

from .report import render_configuration, render_plan, render_report

__all__ = ["render_configuration", "render_plan", "render_report"]
