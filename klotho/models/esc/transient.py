from typing import Union, Sized, Tuple
from numbers import Number

from pydantic import BaseModel, Field
import numpy as np

from klotho.models.base import ListParameter


class ESCTransientState(BaseModel, arbitrary_types_allowed=True):
    """Description of the state of charge, diffusion currents, and hysteresis of an ESC cell

    The state flattens to a single vector ordered as ``[soc, i_rc[0], ..., i_rc[n-1], hyst]``
    for use in linear algebra. Use :attr:`soc_index`, :attr:`rc_slice`, and :attr:`hyst_index`
    to address each segment of that vector rather than hard-coding offsets.
    """

    soc: float = Field(0., description='State of charge')
    i_rc: ListParameter = Field(default_factory=lambda: np.zeros(0),
                                description='Currents through the resistor of each RC branch. Units: Amp')
    hyst: float = Field(0., description='Dynamic hysteresis state, normalized to [-1, 1]')

    @classmethod
    def provide_template(cls,
                         num_rc: int,
                         soc: float = 0.0,
                         i_rc: Union[float, np.ndarray, None] = None,
                         hysteresis: float = 0.0) -> 'ESCTransientState':
        """
        Build a transient state for a circuit with a certain number of RC branches

        Args:
            num_rc: How many RC branches are within the circuit
            soc: State of charge
            i_rc: Current through each of the RC branches (units: A)
            hysteresis: Dynamic hysteresis state
        Returns:
            A transient state
        """

        if i_rc is None:
            i_rc = np.zeros(num_rc)
        elif isinstance(i_rc, Number):
            i_rc = i_rc * np.ones(num_rc)
        elif isinstance(i_rc, Sized):
            if len(i_rc) != num_rc:
                raise ValueError('Mismatch between number of RC currents '
                                 'provided and number of RC elements!')
        return ESCTransientState(soc=soc, i_rc=np.array(i_rc, dtype=float), hyst=hysteresis)

    @property
    def num_rc(self) -> int:
        """Number of RC branches"""
        return len(self.i_rc)

    @property
    def soc_index(self) -> int:
        """Position of the state of charge in the flattened vector"""
        return 0

    @property
    def rc_slice(self) -> slice:
        """Positions of the RC currents in the flattened vector"""
        return slice(1, 1 + self.num_rc)

    @property
    def hyst_index(self) -> int:
        """Position of the hysteresis state in the flattened vector"""
        return 1 + self.num_rc

    @property
    def all_names(self) -> Tuple[str, ...]:
        """Names of each value within the flattened vector"""
        return ('soc',) + tuple(f'i_rc[{i}]' for i in range(self.num_rc)) + ('hyst',)

    def __len__(self) -> int:
        return self.num_rc + 2

    def to_numpy(self) -> np.ndarray:
        """Flatten the state into a 1D vector"""
        return np.concatenate([[self.soc], self.i_rc, [self.hyst]])

    def from_numpy(self, values: np.ndarray) -> 'ESCTransientState':
        """Create a new state with the same layout from a flattened vector

        Args:
            values: 1D vector ordered as in :meth:`to_numpy`
        Returns:
            A new transient state
        """
        values = np.asarray(values, dtype=float)
        if values.shape != (len(self),):
            raise ValueError(f'Expected a vector of shape ({len(self)},), but received {values.shape}')
        return ESCTransientState(soc=values[self.soc_index],
                                 i_rc=values[self.rc_slice].copy(),
                                 hyst=values[self.hyst_index])

    def clamp(self,
              soc_limits: Tuple[float, float] = (-0.05, 1.05),
              hyst_limits: Tuple[float, float] = (-1., 1.)) -> 'ESCTransientState':
        """Restrict the state of charge and hysteresis to their allowed domains

        Args:
            soc_limits: Lowest and highest allowed state of charge
            hyst_limits: Lowest and highest allowed hysteresis state
        Returns:
            A new transient state with the limits enforced
        """
        hyst = min(hyst_limits[1], max(hyst_limits[0], self.hyst))
        soc = min(soc_limits[1], max(soc_limits[0], self.soc))
        return ESCTransientState(soc=soc, i_rc=self.i_rc.copy(), hyst=hyst)
