# gpstruct/src/gpstruct/__init__.py
#
# Copyright (c) 2026, The gpstruct Contributors
#
# This file is part of gpstruct.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Structure search over Gaussian process covariance functions with MCMC.

The covariance function is a tree of base kernels combined with sums and
products. Its posterior, together with the noise variance, is sampled with
Metropolis-Hastings moves that regenerate random subtrees.

See the functions `run` and `run_mcmc` in `gpstruct.mcmcloop`.
"""

from gpstruct import (  # noqa: F401
    choices,
    debug,
    grammar,
    grove,
    jaxext,
    kernels,
    mcmcloop,
    mcmcstep,
    model,
    predict,
    prepdata,
    recurse,
)
from gpstruct._version import __version__  # noqa: F401
from gpstruct.grammar import (  # noqa: F401
    Constant,
    Grammar,
    Linear,
    Periodic,
    Plus,
    SquaredExponential,
    Times,
)
from gpstruct.mcmcloop import inference, run, run_mcmc  # noqa: F401
