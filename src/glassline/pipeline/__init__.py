"""Cascade engine, control surface, diagnostics and live orchestration."""

from glassline.pipeline.cascade import AppendResult, CascadeEngine, UpdatePolicy
from glassline.pipeline.control import (
    AlterUpdatePolicy,
    CreateOrReplaceFunction,
    CreateTable,
    RecreateTable,
    RenameTable,
    Statement,
    build_functions,
    default_setup_script,
    run_setup_script,
    target_bindings,
)
from glassline.pipeline.diagnostics import VerificationReport, verify_setup
from glassline.pipeline.processor import BatchProcessor, batch_extent_id
from glassline.pipeline.orchestrator import PipelineOrchestrator, build_engine, open_store

__all__ = [
    'AppendResult',
    'CascadeEngine',
    'UpdatePolicy',
    'AlterUpdatePolicy',
    'CreateOrReplaceFunction',
    'CreateTable',
    'RecreateTable',
    'RenameTable',
    'Statement',
    'build_functions',
    'default_setup_script',
    'run_setup_script',
    'target_bindings',
    'VerificationReport',
    'verify_setup',
    'BatchProcessor',
    'batch_extent_id',
    'PipelineOrchestrator',
    'build_engine',
    'open_store',
]
