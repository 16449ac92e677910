"""Posterior sampling engines.

The estimation driver only depends on the ``SamplingEngine`` protocol:

    engine.run(model, model_kwargs, config) -> SamplerOutput

Two engines are provided:
- NutsEngine: exact NUTS sampling, one independent chain per task. Chains
  run sequentially, or in spawned worker processes when cores > 1.
  numpyro's effect-handler stack is process-global, so chains never share
  a process concurrently.
- VariationalEngine: fast approximate posteriors, either mean-field
  variational inference (AutoNormal) or a Laplace approximation around
  the MAP (AutoLaplaceApproximation). Returned as a single pseudo-chain.

Both engines check a wall-clock deadline between sampling batches. Chains
still running at the deadline are dropped and the output is flagged
``timed_out``.
"""

import logging
import math
import multiprocessing
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Callable, Protocol

import jax
import numpy as np
import numpyro
from numpyro.infer import MCMC, NUTS, SVI, Predictive, Trace_ELBO
from numpyro.infer.autoguide import AutoLaplaceApproximation, AutoNormal

from rtcast.config import SamplerConfig
from rtcast.model import DETERMINISTIC_SITES
from rtcast.types import SamplerOutput, SamplerTiming

log = logging.getLogger(__name__)

# The negative binomial log density loses its gradient in single precision
# as the dispersion approaches the Poisson limit.
numpyro.enable_x64()

EXTRA_FIELDS = ("diverging", "num_steps")


class SamplingEngine(Protocol):
    def run(
        self,
        model: Callable,
        model_kwargs: dict,
        config: SamplerConfig,
    ) -> SamplerOutput:
        ...


class ChainTimeout(Exception):
    """A chain reached the execution deadline before finishing."""


def _deadline(config: SamplerConfig) -> float:
    return time.time() + config.max_execution_time


def _check_deadline(deadline: float, what: str) -> None:
    if time.time() >= deadline:
        raise ChainTimeout(f"Execution time limit reached during {what}")


def _run_chain(
    model: Callable,
    model_kwargs: dict,
    config: SamplerConfig,
    chain_id: int,
    deadline: float,
) -> dict:
    """Warm up and sample a single chain in batches.

    Returns:
        Dict with "samples" and "extra" (site -> (S, ...) arrays) and the
        warm-up and sampling wall-clock seconds.

    Raises:
        ChainTimeout: The deadline passed before the chain finished.
    """
    n_samples = config.samples_per_chain
    n_batches = min(config.sampling_batches, n_samples)
    batch_size = math.ceil(n_samples / n_batches)
    rng_key = jax.random.fold_in(jax.random.PRNGKey(config.seed), chain_id)

    kernel = NUTS(
        model,
        target_accept_prob=config.target_accept,
        max_tree_depth=config.max_tree_depth,
    )
    mcmc = MCMC(
        kernel,
        num_warmup=config.warmup,
        num_samples=batch_size,
        num_chains=1,
        progress_bar=False,
    )

    _check_deadline(deadline, "warm-up")
    t0 = time.time()
    if config.warmup > 0:
        mcmc.warmup(rng_key, extra_fields=EXTRA_FIELDS, **model_kwargs)
        rng_key = mcmc.post_warmup_state.rng_key
    warmup_time = time.time() - t0

    t0 = time.time()
    samples, extra = [], []
    for batch in range(n_batches):
        _check_deadline(deadline, f"sampling batch {batch + 1}/{n_batches}")
        mcmc.run(rng_key, extra_fields=EXTRA_FIELDS, **model_kwargs)
        samples.append(jax.device_get(mcmc.get_samples()))
        extra.append(jax.device_get(mcmc.get_extra_fields()))
        mcmc.post_warmup_state = mcmc.last_state
        rng_key = mcmc.last_state.rng_key

    def _concat(batches):
        return {
            k: np.concatenate([b[k] for b in batches])[:n_samples]
            for k in batches[0]
        }

    return {
        "samples": _concat(samples),
        "extra": _concat(extra),
        "warmup": warmup_time,
        "sampling": time.time() - t0,
    }


class NutsEngine:
    """Multi-chain NUTS sampling with a cooperative execution deadline."""

    def run(self, model, model_kwargs, config):
        deadline = _deadline(config)
        t_start = time.time()
        results: dict[int, dict] = {}
        timed_out = False

        if config.cores == 1 or config.chains == 1:
            for chain_id in range(config.chains):
                try:
                    results[chain_id] = _run_chain(
                        model, model_kwargs, config, chain_id, deadline
                    )
                except ChainTimeout as e:
                    log.warning(f"Chain {chain_id} dropped: {e}")
                    timed_out = True
                except Exception:
                    log.exception(f"Chain {chain_id} failed")
        else:
            n_workers = min(config.cores, config.chains)
            log.info(f"Running {config.chains} chains on {n_workers} processes")
            context = multiprocessing.get_context("spawn")
            with ProcessPoolExecutor(max_workers=n_workers, mp_context=context) as pool:
                futures = {
                    pool.submit(
                        _run_chain, model, model_kwargs, config, chain_id, deadline
                    ): chain_id
                    for chain_id in range(config.chains)
                }
                for future in as_completed(futures):
                    chain_id = futures[future]
                    try:
                        results[chain_id] = future.result()
                    except ChainTimeout as e:
                        log.warning(f"Chain {chain_id} dropped: {e}")
                        timed_out = True
                    except Exception:
                        log.exception(f"Chain {chain_id} failed")

        completed = [results[i] for i in sorted(results)]
        log.info(f"{len(completed)}/{config.chains} chains completed")

        samples, extra = {}, {}
        if completed:
            for key in completed[0]["samples"]:
                samples[key] = np.stack([c["samples"][key] for c in completed])
            for key in completed[0]["extra"]:
                extra[key] = np.stack([c["extra"][key] for c in completed])

        timing = SamplerTiming(
            warmup=max((c["warmup"] for c in completed), default=0.0),
            sampling=max((c["sampling"] for c in completed), default=0.0),
            total=time.time() - t_start,
        )
        return SamplerOutput(
            samples=samples,
            extra=extra,
            n_chains_requested=config.chains,
            timed_out=timed_out,
            timing=timing,
            method="sampling",
        )


class VariationalEngine:
    """Approximate posterior via SVI ("vb") or a Laplace approximation.

    Model or optimiser errors are logged and give empty samples, as a
    failed chain does for NutsEngine.
    """

    def run(self, model, model_kwargs, config):
        deadline = _deadline(config)
        t_start = time.time()
        timing = {"fit": 0.0}

        try:
            samples, timed_out = self._fit_and_draw(
                model, model_kwargs, config, deadline, timing
            )
        except Exception:
            log.exception(f"{config.method} approximation failed")
            samples, timed_out = {}, False

        total = time.time() - t_start
        return SamplerOutput(
            samples=samples,
            extra={},
            n_chains_requested=1,
            timed_out=timed_out,
            timing=SamplerTiming(timing["fit"], total - timing["fit"], total),
            method=config.method,
        )

    def _fit_and_draw(self, model, model_kwargs, config, deadline, timing):
        """Optimise the guide, then draw latents and deterministic sites.

        Returns:
            (samples, timed_out) where samples maps site -> (1, S, ...) and
            is empty when the fit timed out or diverged.
        """
        t0 = time.time()
        if config.method == "laplace":
            guide = AutoLaplaceApproximation(model)
        else:
            guide = AutoNormal(model)
        optimizer = numpyro.optim.Adam(step_size=config.vb_learning_rate)
        svi = SVI(model, guide, optimizer, loss=Trace_ELBO())

        rng_key = jax.random.PRNGKey(config.seed)
        fit_key, draw_key, predictive_key = jax.random.split(rng_key, 3)

        n_chunks = min(config.sampling_batches, config.vb_steps)
        chunk = math.ceil(config.vb_steps / n_chunks)
        state, losses = None, []
        done = 0
        while done < config.vb_steps:
            if time.time() >= deadline:
                log.warning(
                    f"Execution time limit reached after {done}/{config.vb_steps} "
                    "optimisation steps"
                )
                timing["fit"] = time.time() - t0
                return {}, True
            n_steps = min(chunk, config.vb_steps - done)
            result = svi.run(
                fit_key, n_steps, progress_bar=False, init_state=state, **model_kwargs
            )
            state = result.state
            losses.append(np.asarray(result.losses))
            done += n_steps
        timing["fit"] = time.time() - t0

        final_loss = float(np.concatenate(losses)[-1])
        if not np.isfinite(final_loss):
            log.error(f"{config.method} optimisation diverged (loss={final_loss})")
            return {}, False
        log.info(f"{config.method} optimisation finished, final loss {final_loss:.2f}")

        params = svi.get_params(state)
        latents = guide.sample_posterior(
            draw_key, params, sample_shape=(config.samples,), **model_kwargs
        )
        predictive = Predictive(
            model, posterior_samples=latents, return_sites=list(DETERMINISTIC_SITES)
        )
        derived = predictive(predictive_key, **model_kwargs)

        samples = {k: np.asarray(v)[None] for k, v in {**latents, **derived}.items()}
        samples.pop("reports_obs", None)
        return samples, False


def engine_for(config: SamplerConfig) -> SamplingEngine:
    """Default engine for a sampler method."""
    if config.method == "sampling":
        return NutsEngine()
    return VariationalEngine()
