"""Base classes which define the parameters of a cell model,
the signals applied to a cell, the outputs observable from it,
and the interface a state estimator uses to evaluate the model."""
from abc import abstractmethod
from typing import Union
from typing_extensions import Annotated

import numpy as np
from pydantic import BaseModel, Field, BeforeValidator, model_validator


def enforce_dimensions(x, dim: int = 1) -> np.ndarray:
    """
    Make sure a value is stored as a floating point array of the desired dimensionality

    Args:
        x: Value to be altered
        dim: Dimensionality of numbers being represented (0 for a scalar, 1 for a vector, 2 for a table)
    Returns:
        Array ready to be stored in a parameter container
    """

    x = np.array(x, dtype=float)
    if dim == 0:
        x = np.squeeze(x)
        if x.ndim > 0:
            raise ValueError(f'Inconsistent dimensionality. Trying to store an array of shape {x.shape} as a scalar')
        return x
    elif dim == 1:
        if x.ndim > 1:
            raise ValueError(f'Inconsistent dimensionality. Trying to store an array of shape {x.shape} as a vector')
        return np.atleast_1d(x)
    elif dim == 2:
        if x.ndim > 2:
            raise ValueError(f'Inconsistent dimensionality. Trying to store an array of shape {x.shape} as a table')
        elif x.ndim == 1:
            return x[:, None]
        return np.atleast_2d(x)
    else:
        raise ValueError(f'We do not yet support arrays with dimensionality of {dim}')


NumpyType = Annotated[np.ndarray, BeforeValidator(lambda x: np.array(x, dtype=float))]
"""Any array of floating point numbers"""
ListParameter = Annotated[np.ndarray, BeforeValidator(lambda x: enforce_dimensions(x, 1))]
"""A 1D array of values, such as a value per RC branch"""
TableParameter = Annotated[np.ndarray, BeforeValidator(lambda x: enforce_dimensions(x, 2))]
"""A 2D array of values, where the first dimension is the temperature and the second the RC branch"""


class ModelParameters(BaseModel, arbitrary_types_allowed=True):
    """
    Physical parameters of an enhanced self-correcting cell model resolved at a single temperature
    and sampling interval

    Args:
        capacity: Total capacity of the cell. Units: Amp-hour
        gamma: Rate at which the dynamic hysteresis approaches its limit. Units: unitless
        m: Maximum magnitude of the dynamic hysteresis voltage. Units: V
        m0: Magnitude of the instantaneous hysteresis voltage. Units: V
        rc_decay: Decay factor of each RC branch over the sampling interval, ``exp(-dt / |tau|)``
        r: Resistance of each RC branch. Units: Ohm
        r0: Series resistance. Units: Ohm
        eta: Coulombic efficiency applied to charging currents
    """
    capacity: float = Field(gt=0, description='Total capacity of the cell. Units: Amp-hour')
    gamma: float = Field(ge=0, description='Hysteresis rate constant')
    m: float = Field(description='Maximum dynamic hysteresis. Units: V')
    m0: float = Field(description='Instantaneous hysteresis. Units: V')
    rc_decay: ListParameter = Field(description='Decay factor of each RC branch over one sampling interval')
    r: ListParameter = Field(description='Resistance of each RC branch. Units: Ohm')
    r0: float = Field(description='Series resistance. Units: Ohm')
    eta: float = Field(gt=0, description='Coulombic efficiency applied to charging currents')

    @model_validator(mode='after')
    def check_rc_lengths(self) -> 'ModelParameters':
        if self.rc_decay.shape != self.r.shape:
            raise ValueError(f'Number of RC decay factors ({len(self.rc_decay)}) does not match'
                             f' number of RC resistances ({len(self.r)})')
        return self

    @property
    def num_rc(self) -> int:
        """Number of RC branches"""
        return len(self.r)


class InputQuantities(BaseModel):
    """
    The signals applied to a cell during one sampling interval
    """
    time: float = Field(0., description='Timestamp of the sample. Units: s')
    current: float = Field(0., description='Current through the cell, negative while charging. Units: A')
    temperature: float = Field(25., description='Temperature of the cell. Units: °C')


class OutputQuantities(BaseModel):
    """
    Observables measured from a cell
    """
    terminal_voltage: float = Field(description='Voltage across the cell terminals. Units: V')


class CellModel:
    """
    Base cell model. At a minimum, it must be able to:
        1. resolve the physical parameters of the model at a given temperature and sampling interval
        2. compute the open-circuit voltage as a function of state of charge and temperature
        3. compute the derivative of the open-circuit voltage with respect to state of charge
    """

    @property
    @abstractmethod
    def num_rc(self) -> int:
        """Number of RC branches in the circuit"""
        raise NotImplementedError('Please implement in child class!')

    @abstractmethod
    def resolve_params(self, temperature: float, dt: float) -> ModelParameters:
        """
        Gather the parameters of the model at a certain temperature

        Args:
            temperature: Cell temperature. Units: °C
            dt: Sampling interval used to compute the RC decay factors. Units: s
        Returns:
            Parameters of the model
        """
        raise NotImplementedError('Please implement in child class!')

    @abstractmethod
    def ocv(self, soc: Union[float, np.ndarray], temperature: float) -> Union[float, np.ndarray]:
        """
        Compute the open-circuit voltage

        Args:
            soc: State(s) of charge
            temperature: Cell temperature. Units: °C
        Returns:
            Open-circuit voltage(s). Units: V
        """
        raise NotImplementedError('Please implement in child class!')

    @abstractmethod
    def d_ocv_d_soc(self, soc: Union[float, np.ndarray], temperature: float) -> Union[float, np.ndarray]:
        """
        Compute the slope of the open-circuit voltage with respect to the state of charge

        Args:
            soc: State(s) of charge
            temperature: Cell temperature. Units: °C
        Returns:
            Slope(s) of the open-circuit voltage. Units: V
        """
        raise NotImplementedError('Please implement in child class!')

    def soc_from_ocv(self, voltage: float, temperature: float, num_points: int = 2001) -> float:
        """
        Find the state of charge of a rested cell from its voltage

        Inverts :meth:`ocv` on a grid of states of charge between 0 and 1.
        Voltages outside of that range map to the nearest end of the grid.

        Args:
            voltage: Open-circuit voltage. Units: V
            temperature: Cell temperature. Units: °C
            num_points: Number of points used to invert the OCV curve
        Returns:
            State of charge
        """
        soc_grid = np.linspace(0, 1, num_points)
        ocv_grid = np.asarray(self.ocv(soc_grid, temperature))
        if np.any(np.diff(ocv_grid) <= 0):
            raise ValueError(f'OCV curve is not strictly increasing at {temperature:.1f} C and cannot be inverted')
        return float(np.interp(voltage, ocv_grid, soc_grid))
