"""Filters which update the estimate of the transient state of a cell one sample at a time"""
from .state import FilterState, FilterDivergenceError, EKFTuningParameters
from .extended import ekf_step, StepReport

__all__ = ['FilterState', 'FilterDivergenceError', 'EKFTuningParameters', 'ekf_step', 'StepReport']
