"""Options ingestion cycle orchestration.

Provides the OptionsIngestionCycle state machine that gates on market
hours, fetches the chain, derives rows and upserts them.

Usage::

    from options_pipeline.pipeline import OptionsIngestionCycle
    result = await OptionsIngestionCycle().run("MSTR", force=True)
"""

from options_pipeline.pipeline.options_cycle import (
    CycleResult,
    OptionsIngestionCycle,
    filter_contracts,
)

__all__ = [
    "CycleResult",
    "OptionsIngestionCycle",
    "filter_contracts",
]
