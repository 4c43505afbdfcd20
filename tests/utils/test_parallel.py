import unittest
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from zinbwave.utils import SerialExecutor, parallelMap


def power(x, exponent):
    return x**exponent


class Test(unittest.TestCase):
    def test_parallelMap(self):
        items = range(10)
        expected = [x**2 for x in items]
        fn = partial(power, exponent=2)
        self.assertEqual(parallelMap(None, fn, items), expected)
        with SerialExecutor() as executor:
            self.assertEqual(parallelMap(executor, fn, items), expected)
        with ThreadPoolExecutor(max_workers=3) as executor:
            self.assertEqual(parallelMap(executor, fn, items), expected)
        self.assertEqual(parallelMap(None, fn, iter(items)), expected)
