"""Utility for running cell models for large numbers of steps"""
from typing import Tuple, List, Optional

import numpy as np
import pandas as pd

from klotho.models.base import CellModel, InputQuantities, OutputQuantities
from klotho.models.esc.transient import ESCTransientState
from klotho.estimators.online.filters.extended import (apply_coulombic_efficiency,
                                                       update_current_sign,
                                                       build_time_update_matrices,
                                                       predict_voltage)


class Simulator:
    """
    Run a :class:`~klotho.models.base.CellModel` and track results

    The transient state advances with the current of the interval which just elapsed and
    the voltage is evaluated with the present current, the same convention assumed by the filters.

    Args:
        cell_model: Model used to simulate the cell
        transient_state: Initial transient state of the cell
        initial_input: Initial input of the cell
        sign_current: Initial retained sign of the current
        keep_history: Whether to keep history of the system.
    """

    transient_history: Optional[List[ESCTransientState]]
    """History of the transient states"""
    input_history: Optional[List[InputQuantities]]
    """History of inputs into the system"""
    measurement_history: Optional[List[OutputQuantities]]
    """History of the outputs from the system"""
    sign_history: Optional[List[float]]
    """History of the retained sign of the current"""

    measurement: OutputQuantities
    """Last measurement from the system"""
    previous_input: InputQuantities
    """Last inputs to the system"""

    def __init__(self,
                 cell_model: CellModel,
                 transient_state: ESCTransientState,
                 initial_input: InputQuantities,
                 sign_current: float = 0.,
                 keep_history: bool = False):
        if cell_model.num_rc != transient_state.num_rc:
            raise ValueError(f'Model has {cell_model.num_rc} RC branches,'
                             f' but the state has {transient_state.num_rc}')
        self.model = cell_model
        self.transient = transient_state.model_copy(deep=True)
        self.previous_input = initial_input.model_copy()
        self.sign_current = sign_current

        # Get the initial measurement
        params = self.model.resolve_params(self.previous_input.temperature, 1.)
        current = apply_coulombic_efficiency(self.previous_input.current, params.eta)
        self.measurement = OutputQuantities(terminal_voltage=predict_voltage(
            self.transient, params, self.model, self.previous_input.temperature, current, self.sign_current
        ))

        # Initialize the storage arrays
        self.keep_history = keep_history
        if self.keep_history:
            self.input_history = [self.previous_input.model_copy()]
            self.transient_history = [self.transient.model_copy(deep=True)]
            self.measurement_history = [self.measurement.model_copy()]
            self.sign_history = [self.sign_current]
        else:
            self.input_history = self.transient_history = self.measurement_history = self.sign_history = None

    def step(self, new_inputs: InputQuantities) -> Tuple[ESCTransientState, OutputQuantities]:
        """
        Function to step the transient state of the system.

        Args:
            new_inputs: New input to the system

        Returns:
            Tuple of the new transient state and corresponding measurement
        """
        dt = new_inputs.time - self.previous_input.time
        if dt <= 0:
            raise ValueError(f'Time must increase between steps. Received an interval of {dt} s')
        params = self.model.resolve_params(new_inputs.temperature, dt)

        # Advance the state using the current from the previous step
        prior_current = apply_coulombic_efficiency(self.previous_input.current, params.eta)
        matrices = build_time_update_matrices(self.transient, params, prior_current, dt)
        x = matrices.a @ self.transient.to_numpy() + matrices.b @ np.array([prior_current, np.sign(prior_current)])
        new_transient = self.transient.from_numpy(x)

        # Compute the voltage with the present current
        current = apply_coulombic_efficiency(new_inputs.current, params.eta)
        self.sign_current = update_current_sign(self.sign_current, current, params.capacity)
        new_measurement = OutputQuantities(terminal_voltage=predict_voltage(
            new_transient, params, self.model, new_inputs.temperature, current, self.sign_current
        ))

        # Update internal
        self.transient = new_transient
        self.previous_input = new_inputs.model_copy()
        self.measurement = new_measurement

        if self.keep_history:
            self.input_history.append(self.previous_input)
            self.transient_history.append(new_transient)
            self.measurement_history.append(new_measurement)
            self.sign_history.append(self.sign_current)

        return new_transient, new_measurement

    def evolve(self, inputs: List[InputQuantities]) -> List[OutputQuantities]:
        """
        Evolves the simulator given a list of inputs.

        Args
            inputs: List of inputs

        Returns
            measurements: List of corresponding measurements
        """

        measurements = []

        for new_input in inputs:
            _, measure = self.step(new_inputs=new_input)
            measurements.append(measure)

        return measurements

    def to_dataframe(self) -> pd.DataFrame:
        """
        Compile the history of the simulator as a Pandas dataframe

        Returns:
            Dataframe with the columns ordered by inputs, states, and outputs
        """

        if not self.keep_history:
            raise ValueError('History was not stored. Set keep_history=True')

        inputs = pd.DataFrame([x.model_dump() for x in self.input_history])
        states = pd.DataFrame(np.array([x.to_numpy() for x in self.transient_history]),
                              columns=list(self.transient.all_names))
        return pd.concat([
            inputs,
            states,
            pd.DataFrame({'sign_current': self.sign_history,
                          'voltage': [x.terminal_voltage for x in self.measurement_history]})
        ], axis=1)
