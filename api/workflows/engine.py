"""Construction of the process-wide workflow executor."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

# Registers the built-in app adapters.
import api.apps.http_request  # noqa: F401
from api.apps.base import AppAdapterRegistry, app_registry
from shared.credentials import CredentialResolver, credential_resolver
from workflow_core.code_executor import CodeExecutor
from workflow_core.executor import WorkflowExecutor
from workflow_core.nodes import NodeExecutor


def build_workflow_executor(
    *,
    apps: Optional[AppAdapterRegistry] = None,
    resolver: Optional[CredentialResolver] = None,
    code_executor: Optional[CodeExecutor] = None,
    node_timeout_seconds: Optional[float] = None,
) -> WorkflowExecutor:
    node_executor = NodeExecutor(
        app_registry=apps or app_registry,
        credential_resolver=resolver or credential_resolver,
        code_executor=code_executor,
        node_timeout_seconds=node_timeout_seconds,
    )
    return WorkflowExecutor(node_executor)


@lru_cache(maxsize=1)
def get_workflow_executor() -> WorkflowExecutor:
    return build_workflow_executor()


__all__ = ["build_workflow_executor", "get_workflow_executor"]
