from typing import Union
from warnings import warn

import numpy as np
from scipy.interpolate import interp1d


def realistic_fake_ocv(
        soc_vals: Union[float, np.ndarray]) -> np.ndarray:
    """
    Returns somewhat realistic OCV relationship to SOC
    """
    x_scale = 0.9
    x_off = 0.05
    y_scale = 0.1
    y_off = 3.5
    mod_soc = x_scale * np.asarray(soc_vals, dtype=float)
    mod_soc += x_off
    volts = np.log(mod_soc / (1 - mod_soc))
    volts *= y_scale
    volts += y_off
    return volts


def interpolate_in_temperature(temperatures: np.ndarray,
                               values: np.ndarray,
                               temperature: float) -> np.ndarray:
    """
    Linearly interpolate a parameter table to a certain temperature

    Temperatures outside the range of the table use the value at the nearest tabulated temperature.

    Args:
        temperatures: Temperatures at which the table is defined, in increasing order
        values: Values of the parameter, where the first dimension corresponds to temperature
        temperature: Temperature at which to evaluate the parameter

    Returns:
        Value(s) of the parameter, with the temperature dimension removed
    """
    if len(temperatures) == 1 or values.size == 0:
        return values[0].copy()

    if temperature < temperatures[0] or temperature > temperatures[-1]:
        warn(f'Temperature of {temperature:.1f} C is outside the range of the model tables '
             f'({temperatures[0]:.1f} to {temperatures[-1]:.1f} C). Using the nearest tabulated value.')
    func = interp1d(temperatures, values, axis=0, kind='linear',
                    bounds_error=False, fill_value=(values[0], values[-1]))
    return np.asarray(func(temperature))
