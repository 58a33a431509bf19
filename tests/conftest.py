from typing import Tuple

from pytest import fixture
import numpy as np
import pandas as pd

from klotho.estimators.online.filters import FilterState
from klotho.models.base import InputQuantities
from klotho.models.esc import ESCModel, ESCTransientState
from klotho.simulator import Simulator


@fixture()
def esc_model() -> ESCModel:
    """A single-temperature cell with one RC branch"""
    return ESCModel.provide_template(num_rc=1)


@fixture()
def esc_model_2rc() -> ESCModel:
    """A cell with two RC branches tabulated at two temperatures"""
    template = ESCModel.provide_template(num_rc=2)
    return ESCModel(
        temperatures=[5., 25.],
        capacity=[9.5, 10.],
        eta=[0.98, 0.99],
        gamma=[120., 150.],
        m=[0.025, 0.02],
        m0=[0.003, 0.002],
        r0=[0.01, 0.005],
        rc_time_constants=[[20., 200.], [10., 100.]],
        rc_resistances=[[0.004, 0.003], [0.002, 0.002]],
        ocv_table=template.ocv_table
    )


@fixture()
def filter_state(esc_model) -> FilterState:
    """Filter state for a cell at half charge with a moderately confident estimate"""
    return FilterState(
        transients=ESCTransientState.provide_template(num_rc=1, soc=0.5),
        covariance=np.diag([1e-3, 1e-6, 1e-4]),
        sensor_noise=1e-5,
        process_noise=1e-2,
        q_bump=5.
    )


def make_cycling_data(cell_model: ESCModel,
                      initial_soc: float = 0.8,
                      timestep: float = 1.,
                      voltage_noise: float = 0.,
                      seed: int = 1) -> Tuple[pd.DataFrame, Simulator]:
    """Simulate a rest, a 1C discharge, a rest, and a C/2 charge"""

    capacity = cell_model.capacity[0]
    currents = np.concatenate([
        np.zeros(60),
        np.full(1200, capacity),
        np.zeros(300),
        np.full(900, -capacity / 2),
        np.zeros(60)
    ])

    simulator = Simulator(
        cell_model,
        ESCTransientState.provide_template(num_rc=cell_model.num_rc, soc=initial_soc),
        initial_input=InputQuantities(time=0., current=0.),
        keep_history=True
    )
    simulator.evolve([InputQuantities(time=(i + 1) * timestep, current=current)
                      for i, current in enumerate(currents)])

    data = simulator.to_dataframe().rename(columns={'time': 'test_time'})
    if voltage_noise > 0:
        rng = np.random.default_rng(seed)
        data['voltage'] += rng.normal(scale=voltage_noise, size=len(data))
    return data, simulator


@fixture()
def cycling_data(esc_model) -> pd.DataFrame:
    data, _ = make_cycling_data(esc_model)
    return data


@fixture()
def cycling_data_factory():
    """Function used to simulate cycling of other cells"""
    return make_cycling_data
