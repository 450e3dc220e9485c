"""Plan file parsers."""

from ravel.parsers.plan import parse_plan, parse_plan_text

__all__ = ["parse_plan", "parse_plan_text"]
