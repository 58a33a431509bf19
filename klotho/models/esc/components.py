"""Models for the open-circuit voltage of an ESC cell"""
from typing import Callable, Dict, Union

from pydantic import BaseModel, Field, PrivateAttr, model_validator
from scipy.interpolate import interp1d
import numpy as np

from klotho.models.base import ListParameter


class OCVTable(BaseModel, arbitrary_types_allowed=True):
    """
    Open-circuit voltage tabulated as a function of state of charge

    The open-circuit voltage at temperature ``T`` is ``ocv0(soc) + T * ocvrel(soc)``.
    Both curves are linearly interpolated between the tabulated SOCs and linearly extrapolated beyond them.
    """
    soc: ListParameter = Field(description='States of charge at which the curves are tabulated')
    ocv0: ListParameter = Field(description='Open-circuit voltage at 0 °C. Units: V')
    ocvrel: ListParameter = Field(default=0., validate_default=True,
                                  description='Temperature coefficient of the OCV. Units: V/°C')

    # Internal caches
    _functions: Dict[str, Callable] = PrivateAttr(default_factory=dict)
    """Interpolation functions for each curve and its slope"""

    @model_validator(mode='after')
    def check_table(self) -> 'OCVTable':
        if self.ocvrel.shape == (1,) and self.soc.shape != (1,):
            self.ocvrel = np.full(self.soc.shape, self.ocvrel[0])
        if len(self.soc) < 2:
            raise ValueError('OCV tables require at least two states of charge')
        if self.ocv0.shape != self.soc.shape or self.ocvrel.shape != self.soc.shape:
            raise ValueError(f'OCV curves have shapes {self.ocv0.shape} and {self.ocvrel.shape},'
                             f' but the SOC grid has shape {self.soc.shape}')
        if np.any(np.diff(self.soc) <= 0):
            raise ValueError('SOC grid must be strictly increasing')
        return self

    def _get_function(self, name: str) -> Callable:
        """Retrieve an interpolation function, making it on first use"""
        if (func := self._functions.get(name)) is not None:
            return func

        if name == 'ocv0':
            values = self.ocv0
        elif name == 'ocvrel':
            values = self.ocvrel
        elif name == 'docv0':
            values = np.gradient(self.ocv0, self.soc)
        elif name == 'docvrel':
            values = np.gradient(self.ocvrel, self.soc)
        else:
            raise ValueError(f'No such curve: {name}')
        func = interp1d(self.soc, values, kind='linear', bounds_error=False, fill_value='extrapolate')
        self._functions[name] = func
        return func

    def get_value(self,
                  soc: Union[float, np.ndarray],
                  temperature: float = 0.) -> Union[float, np.ndarray]:
        """
        Returns value(s) of OCV at given SOC(s) and temperature.
        """
        ocv = self._get_function('ocv0')(soc) + temperature * self._get_function('ocvrel')(soc)
        return ocv if np.ndim(ocv) > 0 else float(ocv)

    def get_slope(self,
                  soc: Union[float, np.ndarray],
                  temperature: float = 0.) -> Union[float, np.ndarray]:
        """
        Returns derivative(s) of the OCV with respect to SOC at given SOC(s) and temperature.
        """
        slope = self._get_function('docv0')(soc) + temperature * self._get_function('docvrel')(soc)
        return slope if np.ndim(slope) > 0 else float(slope)

    def __call__(self,
                 soc: Union[float, np.ndarray],
                 temperature: float = 0.) -> Union[float, np.ndarray]:
        """
        Allows this to be called and used as a function
        """
        return self.get_value(soc=soc, temperature=temperature)
