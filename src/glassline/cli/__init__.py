"""Command-line interface modules for glassline.

This package contains core execution logic, making scripts/ optional and deletable.
"""

from glassline.cli.run_pipeline import main, run_backfill, run_ingest, run_setup, run_verify

__all__ = ['main', 'run_backfill', 'run_ingest', 'run_setup', 'run_verify']
