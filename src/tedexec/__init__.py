"""Run Topaz for Enterprise Data specifications from CI build steps."""

__version__ = "1.0.0"

from tedexec.arguments import ArgumentList, build_arguments, build_command
from tedexec.models import ExecutionConfig, SpecificationType
from tedexec.runner import AgentEnvironment, ExecutionRunner

__all__ = [
    "AgentEnvironment",
    "ArgumentList",
    "ExecutionConfig",
    "ExecutionRunner",
    "SpecificationType",
    "build_arguments",
    "build_command",
]
