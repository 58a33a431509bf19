from pytest import raises
import numpy as np

from klotho.models.base import InputQuantities
from klotho.models.esc import ESCTransientState
from klotho.simulator import Simulator


def test_dataframe(esc_model):
    simulator = Simulator(
        cell_model=esc_model,
        transient_state=ESCTransientState.provide_template(num_rc=1, soc=0.5),
        initial_input=InputQuantities(time=0.),
        keep_history=True
    )
    assert np.isclose(simulator.measurement.terminal_voltage, esc_model.ocv(0.5, 25.))

    for time in np.arange(10.)[1:]:
        simulator.step(InputQuantities(time=time, current=1.))

    df = simulator.to_dataframe()
    assert len(df) == 10
    assert list(df.columns) == ['time', 'current', 'temperature', 'soc', 'i_rc[0]', 'hyst', 'sign_current', 'voltage']
    assert np.allclose(df['time'], np.arange(10.))

    # First step uses the zero current of the initial inputs, then the SOC drops
    assert df['soc'].iloc[1] == 0.5
    assert np.allclose(np.diff(df['soc'].iloc[1:]), -1. / 36000.)
    assert np.all(df['hyst'].iloc[2:] < 0)
    assert (df['sign_current'].iloc[1:] == 1.).all()


def test_dataframe_failure(esc_model):
    simulator = Simulator(
        cell_model=esc_model,
        transient_state=ESCTransientState.provide_template(num_rc=1),
        initial_input=InputQuantities(),
        keep_history=False
    )

    with raises(ValueError, match='was not stored'):
        simulator.to_dataframe()
    with raises(ValueError, match='Time must increase'):
        simulator.step(InputQuantities(time=0.))


def test_mismatch(esc_model_2rc):
    with raises(ValueError, match='RC branches'):
        Simulator(esc_model_2rc, ESCTransientState.provide_template(num_rc=1), InputQuantities())


def test_evolve(esc_model):
    simulator = Simulator(esc_model, ESCTransientState.provide_template(num_rc=1, soc=0.5), InputQuantities())

    # Voltage drops by the series resistance as soon as the current is applied
    rested = simulator.measurement.terminal_voltage
    measurements = simulator.evolve([InputQuantities(time=1., current=10.)])
    assert len(measurements) == 1
    assert np.isclose(rested - measurements[0].terminal_voltage, 10. * 0.005 - 0.002)

    # Charging is scaled by the efficiency
    simulator.evolve([InputQuantities(time=2., current=-10.), InputQuantities(time=3., current=0.)])
    assert np.isclose(simulator.transient.soc, 0.5 - 10. / 36000. + 9.9 / 36000.)
    assert simulator.sign_current == -1.
