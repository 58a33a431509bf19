"""Persistent state carried by the extended Kalman filter between steps"""
from typing import Optional, Tuple, TypedDict
from typing_extensions import NotRequired, Self

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator

from klotho.models.base import CellModel, NumpyType
from klotho.models.esc.transient import ESCTransientState


class FilterDivergenceError(FloatingPointError):
    """The filter produced a singular innovation variance or non-finite estimates

    The state provided to the step which raised this error is left untouched.
    Whether to reset or re-initialize the filter is left to the caller.
    """


class EKFTuningParameters(TypedDict):
    """
    Auxiliary class to help provide tuning parameters to the extended Kalman filter

    Args:
        gate_threshold: multiple of the innovation variance above which a squared residual
            marks the measurement as a sensor fault and the correction is skipped
        bump_threshold: multiple of the innovation variance above which a squared residual
            inflates the SOC variance by the bump factor of the filter state
        sign_threshold: fraction of the capacity (in A) the current must exceed to update the
            retained sign of the current
        soc_limits: lowest and highest allowed state of charge
        hyst_limits: lowest and highest allowed hysteresis state
    """
    gate_threshold: NotRequired[float]
    bump_threshold: NotRequired[float]
    sign_threshold: NotRequired[float]
    soc_limits: NotRequired[Tuple[float, float]]
    hyst_limits: NotRequired[Tuple[float, float]]

    @classmethod
    def defaults(cls) -> Self:
        return {'gate_threshold': 100., 'bump_threshold': 4., 'sign_threshold': 0.01,
                'soc_limits': (-0.05, 1.05), 'hyst_limits': (-1., 1.)}


class FilterState(BaseModel, arbitrary_types_allowed=True):
    """
    Everything the extended Kalman filter remembers from one step to the next

    Owned by the caller. Each cell being filtered requires its own state.

    Args:
        transients: mean of the estimate for the state of charge, RC currents, and hysteresis
        covariance: covariance of the estimate, ordered as :meth:`ESCTransientState.to_numpy`
        sensor_noise: variance of the voltage sensor noise (units: V^2)
        process_noise: variance of the current sensor noise (units: A^2), as a scalar or as a 2x2 covariance
            over the current and current sign channels. Only the current channel is used.
        prior_current: raw current measured at the previous step (units: A)
        prior_effective_current: current of the previous step after the coulombic efficiency correction (units: A)
        sign_current: retained sign of the current, which drives the instantaneous hysteresis
        q_bump: factor by which the SOC variance is inflated after a moderately surprising measurement
    """

    transients: ESCTransientState = Field(description='Mean of the state estimate')
    covariance: NumpyType = Field(description='Covariance of the state estimate')
    sensor_noise: float = Field(ge=0, description='Variance of the voltage sensor noise. Units: V^2')
    process_noise: NumpyType = Field(description='Covariance of the current sensor noise. Units: A^2')
    prior_current: float = Field(0., description='Raw current of the previous step. Units: A')
    prior_effective_current: float = Field(
        0., description='Current of the previous step after the coulombic efficiency correction. Units: A'
    )
    sign_current: float = Field(0., description='Retained sign of the current')
    q_bump: float = Field(5., gt=0, description='Factor by which to inflate the SOC variance')

    @field_validator('process_noise', mode='after')
    @classmethod
    def process_noise_2d(cls, sigma: np.ndarray) -> np.ndarray:
        """ Making sure the process noise is a 1x1 or 2x2 matrix """
        sigma = np.atleast_2d(sigma)
        if sigma.shape not in [(1, 1), (2, 2)]:
            raise ValueError(f'Process noise must be a scalar or a 2x2 matrix, but has shape {sigma.shape}')
        return sigma

    @field_validator('sign_current', mode='after')
    @classmethod
    def sign_is_sign(cls, sign: float) -> float:
        if sign not in (-1., 0., 1.):
            raise ValueError(f'Sign of the current must be -1, 0, or 1. Received {sign}')
        return sign

    @model_validator(mode='after')
    def fields_dim(self) -> Self:
        """ Making sure dimensions match between mean and covariance """
        dim = len(self.transients)
        if self.covariance.shape != (dim, dim):
            raise ValueError(f'Wrong dimensions! State has {dim} values,'
                             f' but covariance has shape {self.covariance.shape}')
        if not np.all(np.isfinite(self.covariance)):
            raise ValueError('Covariance contains non-finite values')
        return self

    @classmethod
    def initialize(cls,
                   cell_model: CellModel,
                   voltage: float,
                   temperature: float,
                   covariance: Optional[np.ndarray] = None,
                   sensor_noise: float = 2e-4,
                   process_noise: float = 0.25,
                   q_bump: float = 5.) -> 'FilterState':
        """
        Create the state of a filter for a cell which starts at rest

        The state of charge is found by inverting the open-circuit voltage at the initial voltage,
        and the RC currents and hysteresis start at zero.

        Args:
            cell_model: model of the cell
            voltage: voltage of the rested cell (units: V)
            temperature: temperature of the cell (units: °C)
            covariance: initial covariance of the estimate. Default assumes a variance of 1e-2 for
                the SOC, 1e-6 for each RC current, and 2e-4 for the hysteresis
            sensor_noise: variance of the voltage sensor noise (units: V^2)
            process_noise: variance of the current sensor noise (units: A^2)
            q_bump: factor by which to inflate the SOC variance after a surprising measurement
        Returns:
            Initial filter state
        """
        soc = cell_model.soc_from_ocv(voltage, temperature)
        transients = ESCTransientState.provide_template(num_rc=cell_model.num_rc, soc=soc)
        if covariance is None:
            covariance = np.diag([1e-2] + [1e-6] * cell_model.num_rc + [2e-4])
        return FilterState(transients=transients,
                           covariance=covariance,
                           sensor_noise=sensor_noise,
                           process_noise=process_noise,
                           q_bump=q_bump)

    @property
    def num_states(self) -> int:
        """Number of values in the state vector"""
        return len(self.transients)

    @property
    def soc(self) -> float:
        """Estimated state of charge"""
        return self.transients.soc

    @property
    def soc_bound(self) -> float:
        """Three-sigma bound of the estimated state of charge"""
        return 3 * float(np.sqrt(self.covariance[self.transients.soc_index, self.transients.soc_index]))
