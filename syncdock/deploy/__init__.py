"""Deployment workflows: preflight, provision, teardown, and the artifacts they generate."""

from syncdock.deploy.bootstrap import BootstrapScript, render_bootstrap_script
from syncdock.deploy.compose import (
    ComposeFile,
    Credentials,
    ServiceDefinition,
    build_syncthing_service,
    generate_compose,
    render_env_file,
)
from syncdock.deploy.preflight import run_preflight
from syncdock.deploy.provision import ensure_resource, run_provision
from syncdock.deploy.teardown import run_teardown
from syncdock.deploy.workflow import (
    ExecutionPolicy,
    PreflightError,
    RunState,
    Step,
    StepFailed,
    WorkflowResult,
    run_steps,
)

__all__ = [
    "BootstrapScript",
    "render_bootstrap_script",
    "ComposeFile",
    "Credentials",
    "ServiceDefinition",
    "build_syncthing_service",
    "generate_compose",
    "render_env_file",
    "run_preflight",
    "ensure_resource",
    "run_provision",
    "run_teardown",
    "ExecutionPolicy",
    "PreflightError",
    "RunState",
    "Step",
    "StepFailed",
    "WorkflowResult",
    "run_steps",
]
