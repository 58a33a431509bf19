"""
Estimators which incrementally adjust estimates for the state of a cell.
"""
from typing import Optional, Tuple

import numpy as np

from klotho.estimators.online.filters import (FilterState, FilterDivergenceError, EKFTuningParameters,
                                              ekf_step, StepReport)
from klotho.models.base import CellModel, InputQuantities, OutputQuantities
from klotho.models.esc.transient import ESCTransientState

__all__ = ['ExtendedKalmanFilter', 'FilterState', 'FilterDivergenceError', 'EKFTuningParameters', 'StepReport']


class ExtendedKalmanFilter:
    """
    Track the state of charge of a single cell with an extended Kálmán filter

    Holds the model of the cell and the state of the filter, and replaces the state only
    when a step completes. Create one per cell being monitored.

    Args:
        cell_model: Model used to describe the underlying physics of the cell
        initial_state: State of the filter before the first step
        initial_inputs: Inputs at the time the initial state describes
        tuning: Tuning parameters to use in place of the defaults,
            see :class:`~klotho.estimators.online.filters.state.EKFTuningParameters`
    """

    def __init__(self,
                 cell_model: CellModel,
                 initial_state: FilterState,
                 initial_inputs: Optional[InputQuantities] = None,
                 tuning: Optional[EKFTuningParameters] = None):
        if cell_model.num_rc != initial_state.transients.num_rc:
            raise ValueError(f'Model has {cell_model.num_rc} RC branches,'
                             f' but the state has {initial_state.transients.num_rc}')
        self.cell_model = cell_model
        self.state = initial_state.model_copy(deep=True)
        self.previous_inputs = InputQuantities() if initial_inputs is None else initial_inputs.model_copy()
        self.tuning = EKFTuningParameters.defaults()
        self.tuning.update(tuning or {})
        self.last_report: Optional[StepReport] = None

    @classmethod
    def initialize(cls,
                   cell_model: CellModel,
                   initial_inputs: InputQuantities,
                   initial_measurement: OutputQuantities,
                   covariance: Optional[np.ndarray] = None,
                   sensor_noise: float = 2e-4,
                   process_noise: float = 0.25,
                   q_bump: float = 5.,
                   tuning: Optional[EKFTuningParameters] = None) -> 'ExtendedKalmanFilter':
        """
        Create a filter for a cell which starts at rest

        Args:
            cell_model: Model of the cell
            initial_inputs: Time and temperature of the first sample
            initial_measurement: Voltage of the rested cell at the first sample
            covariance: Initial covariance of the estimate
            sensor_noise: Variance of the voltage sensor noise (units: V^2)
            process_noise: Variance of the current sensor noise (units: A^2)
            q_bump: Factor by which to inflate the SOC variance after a surprising measurement
            tuning: Tuning parameters to use in place of the defaults
        Returns:
            A filter ready to be stepped from the next sample
        """
        state = FilterState.initialize(cell_model,
                                       voltage=initial_measurement.terminal_voltage,
                                       temperature=initial_inputs.temperature,
                                       covariance=covariance,
                                       sensor_noise=sensor_noise,
                                       process_noise=process_noise,
                                       q_bump=q_bump)
        return cls(cell_model, state, initial_inputs=initial_inputs, tuning=tuning)

    @property
    def num_state_dimensions(self) -> int:
        """ Dimensionality of the state """
        return self.state.num_states

    @property
    def state_names(self) -> Tuple[str, ...]:
        """ Names of each state variable """
        return self.state.transients.all_names

    @property
    def soc(self) -> float:
        """Estimated state of charge"""
        return self.state.soc

    @property
    def soc_bound(self) -> float:
        """Three-sigma bound on the estimated state of charge"""
        return self.state.soc_bound

    def get_estimated_state(self) -> ESCTransientState:
        """
        Current estimate for the transient state
        """
        return self.state.transients.model_copy(deep=True)

    def step(self, inputs: InputQuantities, measurements: OutputQuantities) -> StepReport:
        """Function to step the estimator, provided new control variables and output measurements.

        The sampling interval is the time elapsed since the previous inputs.

        Args:
            inputs: current, temperature, and time of the new sample
            measurements: voltage measured at the new sample

        Returns:
            Summary of the step
        """
        dt = inputs.time - self.previous_inputs.time
        self.state, self.last_report = ekf_step(self.state,
                                                voltage=measurements.terminal_voltage,
                                                current=inputs.current,
                                                temperature=inputs.temperature,
                                                dt=dt,
                                                cell_model=self.cell_model,
                                                tuning=self.tuning)
        self.previous_inputs = inputs.model_copy()
        return self.last_report
