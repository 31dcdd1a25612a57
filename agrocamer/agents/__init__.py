# AgroCamer Agents
"""
Analysis flows for the capture screens.

Exports:
- DiagnosisOrchestrator: plant-disease photo -> tagged diagnosis
- HarvestOrchestrator: harvest photo -> graded quality report
- tag_plant_result / tag_harvest_result: payload validation and tagging
"""
from .orchestrator import (
    AnalysisOrchestrator,
    AnalysisStep,
    DiagnosisOrchestrator,
    HarvestOrchestrator,
)
from .validator import TaggedResult, quality_score, tag_harvest_result, tag_plant_result

__all__ = [
    'AnalysisOrchestrator',
    'AnalysisStep',
    'DiagnosisOrchestrator',
    'HarvestOrchestrator',
    'TaggedResult',
    'quality_score',
    'tag_harvest_result',
    'tag_plant_result',
]
