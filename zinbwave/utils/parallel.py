# -----------------------------------------------------------------------------
# Copyright (C) 2024-2025 The zinbwave Python authors

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# -----------------------------------------------------------------------------


class SerialExecutor:
    """
    Minimal in-process executor

    It exposes the :code:`map` method of
    :class:`concurrent.futures.Executor`, so that it can be used
    interchangeably with a thread or process pool wherever an executor is
    expected.
    """

    def map(self, fn, *iterables):
        return map(fn, *iterables)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


def parallelMap(executor, fn, items):
    """
    Apply :code:`fn` to every item through :code:`executor`

    Arguments
    ---------
    executor : object or None
        any object with a :code:`map(fn, iterable)` method, such as a
        :class:`concurrent.futures.ProcessPoolExecutor`. :code:`None` means
        sequential, in-process execution.
    fn : callable
        a function of one argument. To be dispatched to a process pool, it
        must be picklable (*e.g.* a module-level function or a
        :func:`functools.partial` of one).
    items : iterable
        the work items

    Returns
    -------
    list
        the results, in the order of :code:`items`
    """
    if executor is None:
        executor = SerialExecutor()
    return list(executor.map(fn, items))
