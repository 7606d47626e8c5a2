"""
Columnar containers for seeds and chains. Each component (``Seed``, ``Chain``) has a batched
counterpart holding one NumPy array per attribute, named by the batch's ``__slots__``.
"""
from abc import ABC, abstractmethod
from typing import Iterable

import numpy as np


# Classes --------------------------------------------------------------------------------------------------------------
class Batch(ABC):
    """
    Abstract base class for columnar (SoA) batches.

    Subclasses list their column arrays in ``__slots__``, in constructor order, and enforce the
    Sequence protocol (len, getitem, iter).
    """
    __slots__ = ()
    @abstractmethod
    def __len__(self) -> int: ...
    @classmethod
    @abstractmethod
    def empty(cls) -> 'Batch':
        """Creates an empty batch."""
        ...
    @property
    @abstractmethod
    def component(self):
        """Returns the component class stored in this batch."""
        ...
    @classmethod
    @abstractmethod
    def build(cls, components: Iterable[object]) -> 'Batch':
        """Constructs a batch from an iterable of components."""
        ...
    @classmethod
    @abstractmethod
    def concat(cls, batches: Iterable['Batch']) -> 'Batch':
        """Concatenates multiple batches into one."""
        ...
    @abstractmethod
    def __getitem__(self, item): ...
    def __iter__(self):
        for i in range(len(self)): yield self[i]
    def __bool__(self):
        return len(self) > 0

    @property
    def columns(self) -> tuple[np.ndarray, ...]:
        """The column arrays, in constructor order."""
        return tuple(getattr(self, s) for s in self.__slots__)

    @property
    def nbytes(self) -> int:
        """Returns the memory held by the column arrays in bytes."""
        return sum(c.nbytes for c in self.columns)

    def copy(self) -> 'Batch':
        """Returns a deep copy of the batch."""
        return type(self)(*(c.copy() for c in self.columns))
