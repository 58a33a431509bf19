import numpy as np
from pytest import raises

from klotho.estimators.online.filters import FilterState, EKFTuningParameters
from klotho.models.esc import ESCTransientState


def test_defaults():
    tuning = EKFTuningParameters.defaults()
    assert tuning['gate_threshold'] == 100.
    assert tuning['bump_threshold'] == 4.
    assert tuning['soc_limits'] == (-0.05, 1.05)


def test_validation(filter_state):
    assert filter_state.num_states == 3
    assert filter_state.process_noise.shape == (1, 1)
    assert np.isclose(filter_state.soc_bound, 3 * np.sqrt(1e-3))
    assert filter_state.prior_current == 0.
    assert filter_state.sign_current == 0.

    kwargs = dict(
        transients=filter_state.transients,
        covariance=filter_state.covariance,
        sensor_noise=1e-5,
        process_noise=np.diag([1e-2, 1e-3])
    )
    assert FilterState(**kwargs).process_noise.shape == (2, 2)

    with raises(ValueError, match='Wrong dimensions'):
        FilterState(**{**kwargs, 'covariance': np.eye(2)})
    with raises(ValueError, match='non-finite'):
        FilterState(**{**kwargs, 'covariance': np.diag([1., np.nan, 1.])})
    with raises(ValueError, match='scalar or a 2x2'):
        FilterState(**{**kwargs, 'process_noise': np.eye(3)})
    with raises(ValueError, match='must be -1, 0, or 1'):
        FilterState(**kwargs, sign_current=0.5)
    with raises(ValueError):
        FilterState(**{**kwargs, 'sensor_noise': -1.})
    with raises(ValueError):
        FilterState(**kwargs, q_bump=0.)


def test_initialize(esc_model, esc_model_2rc):
    voltage = esc_model.ocv(0.3, 25.)
    state = FilterState.initialize(esc_model, voltage=voltage, temperature=25.)
    assert np.isclose(state.soc, 0.3, atol=1e-3)
    assert np.allclose(state.transients.i_rc, 0.)
    assert state.transients.hyst == 0.
    assert np.allclose(np.diag(state.covariance), [1e-2, 1e-6, 2e-4])
    assert state.q_bump == 5.

    # Works with more RC elements and a user-provided covariance
    state = FilterState.initialize(esc_model_2rc, voltage=voltage, temperature=25., covariance=np.eye(4) * 1e-3)
    assert isinstance(state.transients, ESCTransientState)
    assert state.num_states == 4
    assert np.allclose(state.covariance, np.eye(4) * 1e-3)
