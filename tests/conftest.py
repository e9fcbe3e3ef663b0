# gpstruct/tests/conftest.py
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

"""Pytest configuration."""

from contextlib import nullcontext
from re import fullmatch

import jax
import numpy as np
import pytest

from gpstruct.jaxext import get_default_device, split

jax.config.update('jax_debug_key_reuse', True)
jax.config.update('jax_legacy_prng_key', 'error')

# the likelihood of a covariance function tree requires a Cholesky
# decomposition, which is fragile in single precision
jax.config.update('jax_enable_x64', True)

# nan and inf checks are not enabled because a failed Cholesky decomposition
# is an expected, handled event during the MCMC


@pytest.fixture
def keys(request) -> split:
    """
    Return a deterministic per-test-case list of jax random keys.

    To use a key, do `keys.pop()`. If consumed this way, this list of keys can
    be safely used by multiple fixtures involved in the test case.
    """
    nodeid = request.node.nodeid
    # exclude xdist_group suffixes because they are active only under xdist
    match = fullmatch(r'(.+?\.py::.+?(\[.+?\])?)(@.+)?', nodeid)
    nodeid = match.group(1)
    seed = np.array([nodeid], np.bytes_).view(np.uint8)
    rng = np.random.default_rng(seed)
    seed = np.array(rng.bytes(4)).view(np.uint32)
    key = jax.random.key(seed)
    return split(key, 128)


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command line options."""
    parser.addoption(
        '--platform',
        choices=['cpu', 'gpu', 'auto'],
        default='auto',
        help='JAX platform to use: cpu, gpu, or auto (default: auto)',
    )


def pytest_sessionstart(session: pytest.Session) -> None:
    """Configure and print the jax device."""
    platform = session.config.getoption('--platform')

    if platform != 'auto':
        current_platform = get_default_device().platform
        if current_platform != platform:
            jax.config.update('jax_default_device', jax.devices(platform)[0])
        assert get_default_device().platform == platform

    # print outside of the output capture
    capman = session.config.pluginmanager.get_plugin('capturemanager')
    if capman:
        ctx = capman.global_and_fixture_disabled()
    else:
        ctx = nullcontext()

    with ctx:
        device_kind = get_default_device().device_kind
        print(f'jax default device: {device_kind}')
