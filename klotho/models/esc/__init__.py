"""Enhanced self-correcting (ESC) equivalent circuit model of a battery cell"""
from typing import Optional, Union, Sequence

import numpy as np
from pydantic import BaseModel, Field, model_validator

from klotho.models.base import CellModel, ModelParameters, ListParameter, TableParameter
from .components import OCVTable
from .transient import ESCTransientState
from .utils import realistic_fake_ocv, interpolate_in_temperature

__all__ = ['ESCModel', 'ESCTransientState', 'OCVTable']


class ESCModel(BaseModel, CellModel, arbitrary_types_allowed=True):
    """
    Tabulated ESC model of a single cell

    Each physical parameter is tabulated at a set of temperatures and linearly interpolated between them.
    The RC branches are described by a time constant and a resistance per temperature, stored as tables
    where rows are temperatures and columns are branches.

    .. code-block:: python

        model = ESCModel.provide_template(num_rc=2)
        params = model.resolve_params(temperature=25., dt=1.)
        ocv = model.ocv(0.5, temperature=25.)
    """

    name: str = Field('esc', description='Name of the cell the model describes')
    temperatures: ListParameter = Field(description='Temperatures at which the parameters are tabulated. Units: °C')
    capacity: ListParameter = Field(description='Total capacity. Units: Amp-hour')
    eta: ListParameter = Field(description='Coulombic efficiency')
    gamma: ListParameter = Field(description='Hysteresis rate constant')
    m: ListParameter = Field(description='Maximum dynamic hysteresis. Units: V')
    m0: ListParameter = Field(description='Instantaneous hysteresis. Units: V')
    r0: ListParameter = Field(description='Series resistance. Units: Ohm')
    rc_time_constants: TableParameter = Field(description='Time constant of each RC branch. Units: s')
    rc_resistances: TableParameter = Field(description='Resistance of each RC branch. Units: Ohm')
    ocv_table: OCVTable = Field(description='Open-circuit voltage as a function of SOC and temperature')

    @model_validator(mode='after')
    def check_tables(self) -> 'ESCModel':
        num_temps = len(self.temperatures)
        if np.any(np.diff(self.temperatures) <= 0):
            raise ValueError('Temperatures must be strictly increasing')
        for name in ['capacity', 'eta', 'gamma', 'm', 'm0', 'r0']:
            values = getattr(self, name)
            if len(values) != num_temps:
                raise ValueError(f'{name} has {len(values)} values, but there are {num_temps} temperatures')
        for name in ['rc_time_constants', 'rc_resistances']:
            values = getattr(self, name)
            if values.shape[0] != num_temps:
                raise ValueError(f'{name} has {values.shape[0]} rows, but there are {num_temps} temperatures')
        if self.rc_time_constants.shape != self.rc_resistances.shape:
            raise ValueError(f'RC time constants have shape {self.rc_time_constants.shape},'
                             f' but RC resistances have shape {self.rc_resistances.shape}')
        return self

    @property
    def num_rc(self) -> int:
        return self.rc_resistances.shape[1]

    def resolve_params(self, temperature: float, dt: float) -> ModelParameters:
        def _at(values: np.ndarray) -> np.ndarray:
            return interpolate_in_temperature(self.temperatures, values, temperature)

        tau = _at(self.rc_time_constants)
        return ModelParameters(
            capacity=float(_at(self.capacity)),
            eta=float(_at(self.eta)),
            gamma=float(_at(self.gamma)),
            m=float(_at(self.m)),
            m0=float(_at(self.m0)),
            r0=float(_at(self.r0)),
            rc_decay=np.exp(-dt / np.abs(tau)),
            r=_at(self.rc_resistances)
        )

    def ocv(self, soc: Union[float, np.ndarray], temperature: float) -> Union[float, np.ndarray]:
        return self.ocv_table.get_value(soc, temperature)

    def d_ocv_d_soc(self, soc: Union[float, np.ndarray], temperature: float) -> Union[float, np.ndarray]:
        return self.ocv_table.get_slope(soc, temperature)

    @classmethod
    def provide_template(
            cls,
            num_rc: int = 1,
            capacity: float = 10.0,
            eta: float = 0.99,
            gamma: float = 150.,
            m: float = 0.02,
            m0: float = 0.002,
            r0: float = 0.005,
            rc_time_constants: Optional[Sequence[float]] = None,
            rc_resistances: Optional[Sequence[float]] = None,
            temperature: float = 25.,
    ) -> 'ESCModel':
        """Create an ESC model tabulated at a single temperature

        Args:
            num_rc: How many RC branches are within the circuit
            capacity: Total capacity (Units: Amp-hr)
            eta: Coulombic efficiency
            gamma: Hysteresis rate constant
            m: Maximum dynamic hysteresis (Units: V)
            m0: Instantaneous hysteresis (Units: V)
            r0: Series resistance (Units: Ohm)
            rc_time_constants: Time constant of each RC branch (Units: s). Default is 10 s, 100 s, ...
            rc_resistances: Resistance of each RC branch (Units: Ohm). Default is 2 mOhm each
            temperature: Temperature at which the parameters are tabulated (Units: °C)
        Returns:
            A cell model
        """

        if rc_time_constants is None:
            rc_time_constants = [10. ** (i + 1) for i in range(num_rc)]
        if rc_resistances is None:
            rc_resistances = [0.002] * num_rc
        if len(rc_time_constants) != num_rc or len(rc_resistances) != num_rc:
            raise ValueError(f'Expected {num_rc} RC time constants and resistances,'
                             f' received {len(rc_time_constants)} and {len(rc_resistances)}')

        soc_grid = np.linspace(0, 1, 101)
        return ESCModel(
            temperatures=[temperature],
            capacity=[capacity],
            eta=[eta],
            gamma=[gamma],
            m=[m],
            m0=[m0],
            r0=[r0],
            rc_time_constants=np.array(rc_time_constants, dtype=float).reshape((1, num_rc)),
            rc_resistances=np.array(rc_resistances, dtype=float).reshape((1, num_rc)),
            ocv_table=OCVTable(soc=soc_grid, ocv0=realistic_fake_ocv(soc_grid), ocvrel=0.)
        )
