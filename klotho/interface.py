"""Interfaces for running common workflows with Klotho over time series stored in
`pandas <https://pandas.pydata.org/>`_ dataframes, using the column names of the
`battery-data-toolkit <https://github.com/ROVI-org/battery-data-toolkit>`_"""
from typing import Tuple
from math import isfinite

import numpy as np
import pandas as pd
from tqdm import tqdm

from klotho.estimators.online import ExtendedKalmanFilter
from klotho.models.base import InputQuantities, OutputQuantities

__all__ = ['row_to_inputs', 'run_online_estimate']


def row_to_inputs(row: pd.Series, default_temperature: float = 25) -> Tuple[InputQuantities, OutputQuantities]:
    """Convert a row from the time series data to inputs and measurements

    Args:
        row: Row from a dataframe with at least ``test_time``, ``current``, and ``voltage`` columns
        default_temperature: Default temperature for the cells (units: C)
    Returns:
        - Inputs to the cell
        - Measurements from the cell
    """

    use_temp = 'temperature' in row and isfinite(row['temperature'])
    inputs = InputQuantities(
        time=row['test_time'],
        current=row['current'],
        temperature=row['temperature'] if use_temp else default_temperature
    )
    outputs = OutputQuantities(
        terminal_voltage=row['voltage']
    )
    return inputs, outputs


def run_online_estimate(
        data: pd.DataFrame,
        estimator: ExtendedKalmanFilter,
        pbar: bool = False,
        default_temperature: float = 25,
) -> Tuple[pd.DataFrame, ExtendedKalmanFilter]:
    """Estimate the state of charge of a cell over a time series

    The first row only sets the time from which the first sampling interval is measured.
    The estimator is stepped once for every following row.

    Args:
        data: Time series with ``test_time``, ``current``, ``voltage``, and optionally ``temperature`` columns
        estimator: Filter which will be updated with each row of the data
        pbar: Whether to display a progress bar
        default_temperature: Temperature to use if the data does not include it (units: C)
    Returns:
        - Estimates of the state at all timesteps after the first
        - Estimator after updating with the data
    """

    for col in ['test_time', 'current', 'voltage']:
        if col not in data:
            raise ValueError(f'Data are missing the {col} column')
    if len(data) < 2:
        raise ValueError('At least two rows of data are required')

    num_steps = len(data) - 1
    num_states = estimator.num_state_dimensions
    state_mean = np.zeros((num_steps, num_states))
    state_std = np.zeros((num_steps, num_states))
    summary = {k: np.zeros(num_steps) for k in ['soc_bound', 'voltage_prediction', 'residual']}
    flags = {k: np.zeros(num_steps, dtype=bool) for k in ['gated', 'bumped']}

    rows = data.reset_index(drop=True).iterrows()
    _, first_row = next(rows)
    estimator.previous_inputs, _ = row_to_inputs(first_row, default_temperature)

    times = np.zeros(num_steps)
    for i, (_, row) in tqdm(enumerate(rows), total=num_steps, disable=not pbar):
        controls, measurements = row_to_inputs(row, default_temperature)
        report = estimator.step(controls, measurements)

        times[i] = controls.time
        state_mean[i, :] = estimator.state.transients.to_numpy()
        state_std[i, :] = np.sqrt(np.diag(estimator.state.covariance))
        for key in summary:
            summary[key][i] = getattr(report, key)
        for key in flags:
            flags[key][i] = getattr(report, key)

    names = list(estimator.state_names)
    return pd.concat([
        pd.DataFrame({'test_time': times}),
        pd.DataFrame(state_mean, columns=names),
        pd.DataFrame(state_std, columns=[f'{s}_std' for s in names]),
        pd.DataFrame(summary),
        pd.DataFrame(flags)
    ], axis=1), estimator
