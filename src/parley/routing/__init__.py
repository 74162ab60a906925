"""Question routing."""

from parley.routing.router import QuestionRouter, should_inject

__all__ = ["QuestionRouter", "should_inject"]
