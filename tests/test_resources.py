import numpy as np
from seedchain.lib.resources import Resources, RESOURCES, jit


class TestResources:
    def test_has_module(self):
        assert Resources.has_module('numpy')
        assert not Resources.has_module('definitely_not_a_module_xyz')

    def test_rng(self):
        assert isinstance(RESOURCES.rng, np.random.Generator)
        assert RESOURCES.rng is RESOURCES.rng

    def test_threads(self):
        assert RESOURCES.n_threads >= 1
        assert RESOURCES.parallel == Resources.has_module('numba')


class TestJit:
    def test_bare(self):
        @jit
        def add(a, b): return a + b
        assert add(2, 3) == 5

    def test_configured(self):
        @jit(nopython=True, cache=False, nogil=True)
        def total(x):
            s = 0
            for v in x: s += v
            return s
        assert total(np.arange(5)) == 10
