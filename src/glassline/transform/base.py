"""Common shape of a transformation function.

A transformation function maps a batch (DataFrame) read from its source
table to a frame that matches its declared output schema. The cascade engine
only ever talks to this interface.
"""

import logging
from dataclasses import dataclass

import pandas as pd

from glassline.decode import DecodeStats
from glassline.store.schema import conform_frame, validate_schema

__all__ = ['TransformFunction', 'TransformResult']

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    """Output frame of one function over one batch, plus its diagnostics."""
    frame: pd.DataFrame
    stats: DecodeStats


class TransformFunction:
    """Named, pure, deterministic batch transformation.

    Subclasses set the class attributes (or pass them to ``__init__``) and
    implement :meth:`transform`, returning a list of row dicts keyed by the
    output schema columns. ``__call__`` wraps that with diagnostics and
    conforms the rows to the schema.

    Attributes
    ----------
    name : str
        Function name used by update policies.
    output_schema : dict
        Ordered ``{column: kind}`` of the produced frame.
    docstring : str
        Human description shown by the control surface.
    folder : str
        Organizational tag.
    """

    name = None
    output_schema = None
    docstring = ""
    folder = ""

    def __init__(self, name=None, output_schema=None, docstring=None, folder=None):
        self.name = name or self.name
        self.output_schema = validate_schema(output_schema or self.output_schema)
        self.docstring = docstring if docstring is not None else self.docstring
        self.folder = folder if folder is not None else self.folder

    def transform(self, batch: pd.DataFrame, stats: DecodeStats) -> list:
        raise NotImplementedError

    def __call__(self, batch: pd.DataFrame) -> TransformResult:
        stats = DecodeStats(function=self.name, envelopes_seen=len(batch))
        rows = self.transform(batch, stats)
        columns = list(self.output_schema)
        frame = conform_frame(pd.DataFrame(rows, columns=columns), self.output_schema)
        stats.rows_emitted = len(frame)

        if stats.envelopes_dropped:
            logger.warning(
                "%s dropped %d of %d matched envelopes: %s",
                self.name, stats.envelopes_dropped, stats.envelopes_matched,
                dict(stats.drop_reasons),
            )
        logger.debug("%s: %s", self.name, stats.as_dict())
        return TransformResult(frame=frame, stats=stats)

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"
