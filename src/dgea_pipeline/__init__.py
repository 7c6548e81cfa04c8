"""DGEA pipeline - differential gene expression analysis of RNA-seq counts with DESeq2."""

__version__ = "0.1.0"

from .config import get_config, set_config, Config
from .models import Contrast, FittedModel
from .contrasts import (
    extract_results,
    filter_significant,
    plan_contrasts,
    reverse_contrast_table,
)
from .pipeline import run_pipeline, PipelineStatus

__all__ = [
    'get_config',
    'set_config',
    'Config',
    'Contrast',
    'FittedModel',
    'extract_results',
    'filter_significant',
    'plan_contrasts',
    'reverse_contrast_table',
    'run_pipeline',
    'PipelineStatus'
]
