import jax
from jax import numpy as jnp
from jax import random

import gpstruct
from gpstruct.debug import format_tree
from gpstruct.predict import compute_mse, predictive_ll
from gpstruct.prepdata import rescale, train_test_split

jax.config.update('jax_enable_x64', True)

# DGP config
n = 60 # number of datapoints (train + test)
sigma = 0.2 # noise standard deviation
period = 12 # period of the seasonal component
def f(x): # trend plus seasonality
    return 0.02 * x + jnp.sin(2 * jnp.pi * x / period)

# generate data
key = random.key(202610171200)
key, key1 = random.split(key)
xs = jnp.arange(n, dtype=float)
ys = f(xs) + sigma * random.normal(key1, (n,))

# map to the range of the priors, and hold out the last points
xs, ys = rescale(xs, ys)
n_train = 3 * n // 4
xs_train, ys_train, xs_test, ys_test = train_test_split(xs, ys, n_train)

# print the prediction quality during the MCMC
iteration = 0
def observer(covariance_fn, noise):
    global iteration
    if iteration % 100 == 0:
        mse = compute_mse(covariance_fn, noise, xs_train, ys_train, xs_test, ys_test)
        ll = predictive_ll(covariance_fn, noise, xs_train, ys_train, xs_test, ys_test)
        print(f'it {iteration}: noise={noise:#.2g}, mse={mse:#.2g}, ll={ll:#.3g}')
    iteration += 1

# run the MCMC
covariance_fn, noise = gpstruct.run(key, xs_train, ys_train, 1000, observer)

print(format_tree(covariance_fn))
mse = compute_mse(covariance_fn, noise, xs_train, ys_train, xs_test, ys_test)
print(f'final noise: {noise:#.2g}, test MSE: {mse:#.2g}')
