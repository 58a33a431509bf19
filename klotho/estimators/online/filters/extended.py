""" Definition of the Extended Kálmán Filter (EKF) for enhanced self-correcting cell models

One call to :func:`ekf_step` consumes a voltage, current, and temperature sample and
returns a new :class:`~klotho.estimators.online.filters.state.FilterState` along with a
:class:`StepReport`. The step is made of stages which are exposed individually so they may be
tested and reused:

1. :func:`build_time_update_matrices` and :func:`time_update` propagate the previous estimate
2. :func:`predict_voltage` computes the expected terminal voltage
3. :func:`build_measurement_matrix` and :func:`measurement_update` correct the estimate with the voltage residual
4. :func:`bump_soc_variance` and :func:`~klotho.estimators.online.filters.utils.enforce_positive_semi_definiteness`
   condition the covariance
"""
from typing import NamedTuple, Optional, Tuple
import logging

import numpy as np
from pydantic import BaseModel

from klotho.models.base import CellModel, ModelParameters
from klotho.models.esc.transient import ESCTransientState
from .state import FilterState, FilterDivergenceError, EKFTuningParameters
from .utils import enforce_positive_semi_definiteness

logger = logging.getLogger(__name__)


class StepReport(BaseModel):
    """
    Summary of a single step of the filter

    Args:
        soc: estimated state of charge after the measurement update
        soc_bound: three-sigma bound of the estimated state of charge
        voltage_prediction: terminal voltage expected from the predicted state (units: V)
        voltage_variance: variance of the voltage prediction, including the sensor noise (units: V^2)
        residual: difference between the measured and the predicted voltage (units: V)
        gated: whether the measurement was treated as a sensor fault and not used
        bumped: whether the SOC variance was inflated after a surprising measurement
    """
    soc: float
    soc_bound: float
    voltage_prediction: float
    voltage_variance: float
    residual: float
    gated: bool = False
    bumped: bool = False


class TimeUpdateMatrices(NamedTuple):
    """Linearized process model for one sampling interval"""

    a: np.ndarray
    """State transition matrix"""
    b: np.ndarray
    """Input matrix acting on the previous current and its sign"""
    b_noise: np.ndarray
    """Sensitivity of the state to noise on the previous current, as a column vector"""


class MeasurementUpdate(NamedTuple):
    """Outcome of correcting the predicted state with a voltage measurement"""

    transients: ESCTransientState
    """Corrected mean of the state"""
    covariance: np.ndarray
    """Corrected covariance of the state, before conditioning"""
    gain: np.ndarray
    """Kálmán gain, zero if the measurement was gated"""
    voltage_variance: float
    """Variance of the predicted voltage"""
    residual: float
    """Measured minus predicted voltage"""
    gated: bool
    """Whether the correction was skipped"""


def apply_coulombic_efficiency(current: float, eta: float) -> float:
    """
    Scale charging currents by the coulombic efficiency

    Args:
        current: measured current, negative while charging (units: A)
        eta: coulombic efficiency
    Returns:
        Current which changes the stored charge
    """
    return current * eta if current < 0 else current


def update_current_sign(sign_current: float, current: float, capacity: float, threshold: float = 0.01) -> float:
    """
    Update the retained sign of the current

    The sign only changes when the magnitude of the current exceeds a fraction of the capacity,
    which prevents the instantaneous hysteresis from chattering around zero current.

    Args:
        sign_current: sign retained from previous steps
        current: current of the present step (units: A)
        capacity: capacity of the cell (units: A-hr)
        threshold: fraction of the capacity the current must exceed
    Returns:
        New retained sign
    """
    if abs(current) > capacity * threshold:
        return float(np.sign(current))
    return sign_current


def build_time_update_matrices(transients: ESCTransientState,
                               params: ModelParameters,
                               prior_current: float,
                               dt: float) -> TimeUpdateMatrices:
    """
    Assemble the linearized process model

    Args:
        transients: estimate of the state at the end of the previous step
        params: parameters of the cell model
        prior_current: current during the interval which just elapsed, after the efficiency correction (units: A)
        dt: length of the interval (units: s)
    Returns:
        Transition, input, and noise-sensitivity matrices, which are not writable
    """
    if params.num_rc != transients.num_rc:
        raise ValueError(f'Model has {params.num_rc} RC branches, but the state has {transients.num_rc}')

    n = len(transients)
    soc, rc, hyst = transients.soc_index, transients.rc_slice, transients.hyst_index
    a = np.zeros((n, n))
    b = np.zeros((n, 2))

    # Coulomb counting
    charge_factor = dt / (3600 * params.capacity)
    a[soc, soc] = 1
    b[soc, 0] = -charge_factor

    # Diffusion currents
    a[rc, rc] = np.diag(params.rc_decay)
    b[rc, 0] = 1 - params.rc_decay

    # Hysteresis relaxes toward the sign of the current at a rate proportional to the charge passed
    a_h = np.exp(-abs(prior_current * params.gamma * charge_factor))
    a[hyst, hyst] = a_h
    b[hyst, 1] = a_h - 1

    # The hysteresis also depends on the magnitude of the current, which matters for how noise propagates
    b_noise = b[:, :1].copy()
    b_noise[hyst, 0] = -abs(params.gamma * charge_factor) * a_h * (1 + np.sign(prior_current) * transients.hyst)

    for mat in (a, b, b_noise):
        mat.flags.writeable = False
    return TimeUpdateMatrices(a=a, b=b, b_noise=b_noise)


def time_update(transients: ESCTransientState,
                covariance: np.ndarray,
                process_noise: np.ndarray,
                matrices: TimeUpdateMatrices,
                prior_current: float,
                soc_limits: Tuple[float, float] = (-0.05, 1.05),
                hyst_limits: Tuple[float, float] = (-1., 1.)) -> Tuple[ESCTransientState, np.ndarray]:
    """
    Propagate the estimate across one sampling interval

    Only the current channel of the process noise is used. The sign of the current is treated as known exactly.

    Args:
        transients: estimate of the state at the end of the previous step
        covariance: covariance of that estimate
        process_noise: 1x1 or 2x2 covariance of the noise on the current and its sign
        matrices: linearized process model
        prior_current: current during the interval which just elapsed, after the efficiency correction (units: A)
        soc_limits: lowest and highest allowed state of charge
        hyst_limits: lowest and highest allowed hysteresis state
    Returns:
        - Predicted state
        - Predicted covariance
    """
    x = matrices.a @ transients.to_numpy() + matrices.b @ np.array([prior_current, np.sign(prior_current)])
    x_pred = transients.from_numpy(x).clamp(soc_limits=soc_limits, hyst_limits=hyst_limits)

    current_noise = np.atleast_2d(process_noise)[:1, :1]
    cov_pred = matrices.a @ covariance @ matrices.a.T + matrices.b_noise @ current_noise @ matrices.b_noise.T
    return x_pred, cov_pred


def predict_voltage(transients: ESCTransientState,
                    params: ModelParameters,
                    cell_model: CellModel,
                    temperature: float,
                    current: float,
                    sign_current: float) -> float:
    """
    Compute the terminal voltage expected from a state

    Args:
        transients: state of the cell
        params: parameters of the cell model
        cell_model: model which provides the open-circuit voltage
        temperature: temperature of the cell (units: °C)
        current: present current, after the efficiency correction (units: A)
        sign_current: retained sign of the current
    Returns:
        Terminal voltage (units: V)
    """
    return float(cell_model.ocv(transients.soc, temperature)
                 + params.m0 * sign_current
                 + params.m * transients.hyst
                 - np.dot(params.r, transients.i_rc)
                 - params.r0 * current)


def build_measurement_matrix(transients: ESCTransientState,
                             params: ModelParameters,
                             cell_model: CellModel,
                             temperature: float) -> np.ndarray:
    """
    Linearize the voltage with respect to the state

    Args:
        transients: state about which to linearize
        params: parameters of the cell model
        cell_model: model which provides the slope of the open-circuit voltage
        temperature: temperature of the cell (units: °C)
    Returns:
        Sensitivity of the terminal voltage to each value of the state, as a 1D array
    """
    c = np.zeros(len(transients))
    c[transients.soc_index] = cell_model.d_ocv_d_soc(transients.soc, temperature)
    c[transients.rc_slice] = -params.r
    c[transients.hyst_index] = params.m
    c.flags.writeable = False
    return c


def measurement_update(transients: ESCTransientState,
                       covariance: np.ndarray,
                       c: np.ndarray,
                       sensor_noise: float,
                       voltage: float,
                       voltage_prediction: float,
                       gate_threshold: float = 100.,
                       soc_limits: Tuple[float, float] = (-0.05, 1.05),
                       hyst_limits: Tuple[float, float] = (-1., 1.)) -> MeasurementUpdate:
    """
    Correct the predicted state using the measured voltage

    Measurements whose squared residual exceeds ``gate_threshold`` times the innovation variance are
    treated as sensor faults: the gain is zeroed and the prediction is returned unchanged.

    Args:
        transients: predicted state
        covariance: predicted covariance
        c: sensitivity of the voltage to the state
        sensor_noise: variance of the voltage sensor (units: V^2)
        voltage: measured voltage (units: V)
        voltage_prediction: predicted voltage (units: V)
        gate_threshold: multiple of the innovation variance above which a measurement is rejected
        soc_limits: lowest and highest allowed state of charge
        hyst_limits: lowest and highest allowed hysteresis state
    Returns:
        Corrected estimate and the intermediate quantities of the update
    """
    # Step 2a: innovation variance and gain
    voltage_variance = float(c @ covariance @ c + sensor_noise)
    if not np.isfinite(voltage_variance) or voltage_variance <= 0:
        raise FilterDivergenceError(f'Innovation variance is {voltage_variance}. Cannot compute the gain.')
    gain = covariance @ c / voltage_variance

    # Step 2b: reject voltages far from the prediction
    residual = voltage - voltage_prediction
    gated = residual ** 2 > gate_threshold * voltage_variance
    if gated:
        gain = np.zeros_like(gain)

    # Step 2c: correct mean and covariance
    x = transients.to_numpy() + gain * residual
    x_plus = transients.from_numpy(x).clamp(soc_limits=soc_limits, hyst_limits=hyst_limits)
    cov_plus = covariance - np.outer(gain, gain) * voltage_variance
    return MeasurementUpdate(transients=x_plus, covariance=cov_plus, gain=gain,
                             voltage_variance=voltage_variance, residual=float(residual), gated=bool(gated))


def bump_soc_variance(covariance: np.ndarray, soc_index: int, q_bump: float) -> np.ndarray:
    """
    Inflate the variance of the state of charge

    Args:
        covariance: covariance of the state
        soc_index: position of the state of charge in the state vector
        q_bump: factor by which to multiply the variance
    Returns:
        A new covariance matrix
    """
    bumped = covariance.copy()
    bumped[soc_index, soc_index] *= q_bump
    return bumped


def ekf_step(state: FilterState,
             voltage: float,
             current: float,
             temperature: float,
             dt: float,
             cell_model: CellModel,
             tuning: Optional[EKFTuningParameters] = None) -> Tuple[FilterState, StepReport]:
    """
    Advance the filter by one sampling interval

    The state provided is not modified. A new state is returned only if the step completes.

    Args:
        state: state of the filter at the end of the previous interval
        voltage: measured terminal voltage (units: V)
        current: measured current, negative while charging (units: A)
        temperature: measured temperature (units: °C)
        dt: length of the interval which ends at this sample (units: s)
        cell_model: model of the cell
        tuning: tuning parameters to use in place of the defaults
    Returns:
        - New state of the filter
        - Summary of the step
    """
    options = EKFTuningParameters.defaults()
    options.update(tuning or {})
    limits = {'soc_limits': options['soc_limits'], 'hyst_limits': options['hyst_limits']}

    if not all(np.isfinite([voltage, current, temperature, dt])):
        raise ValueError(f'Inputs must be finite. Received voltage={voltage}, current={current},'
                         f' temperature={temperature}, dt={dt}')
    if dt <= 0:
        raise ValueError(f'Sampling interval must be positive. Received {dt}')

    # Resolve the parameters and correct the present current for charge efficiency
    params = cell_model.resolve_params(temperature, dt)
    effective_current = apply_coulombic_efficiency(current, params.eta)
    sign_current = update_current_sign(state.sign_current, effective_current, params.capacity,
                                       threshold=options['sign_threshold'])

    # Step 1: time update, driven by the current of the interval which just elapsed
    prior_current = state.prior_effective_current
    matrices = build_time_update_matrices(state.transients, params, prior_current, dt)
    x_pred, cov_pred = time_update(state.transients, state.covariance, state.process_noise,
                                   matrices, prior_current, **limits)

    # Step 2: expected voltage and its sensitivity to the state
    y_hat = predict_voltage(x_pred, params, cell_model, temperature, effective_current, sign_current)
    c = build_measurement_matrix(x_pred, params, cell_model, temperature)

    # Step 3: correct with the measured voltage
    update = measurement_update(x_pred, cov_pred, c, state.sensor_noise, voltage, y_hat,
                                gate_threshold=options['gate_threshold'], **limits)
    if update.gated:
        logger.info(f'Residual of {update.residual:.3e} V exceeds {options["gate_threshold"]:.0f} times the '
                    f'innovation variance ({update.voltage_variance:.3e} V^2). Skipping the correction.')

    # Step 4: condition the covariance
    cov_plus = update.covariance
    bumped = not update.gated and update.residual ** 2 > options['bump_threshold'] * update.voltage_variance
    if bumped:
        logger.debug(f'Residual of {update.residual:.3e} V is surprising. Inflating SOC variance by {state.q_bump}')
        cov_plus = bump_soc_variance(cov_plus, x_pred.soc_index, state.q_bump)
    cov_plus = enforce_positive_semi_definiteness(cov_plus)

    x_plus = update.transients
    if not (np.all(np.isfinite(cov_plus)) and np.all(np.isfinite(x_plus.to_numpy()))):
        raise FilterDivergenceError('Updated state or covariance contains non-finite values')

    new_state = state.model_copy(update={
        'transients': x_plus,
        'covariance': cov_plus,
        'prior_current': float(current),
        'prior_effective_current': float(effective_current),
        'sign_current': sign_current
    })
    report = StepReport(
        soc=new_state.soc,
        soc_bound=new_state.soc_bound,
        voltage_prediction=y_hat,
        voltage_variance=update.voltage_variance,
        residual=update.residual,
        gated=update.gated,
        bumped=bumped
    )
    return new_state, report
