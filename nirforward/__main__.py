"""Command line entry point: python -m nirforward MESH --frequency HZ."""

from __future__ import annotations

import argparse
import logging
import sys

import numpy as np

from nirforward import defaults
from nirforward.errors import ForwardModelError, InvalidArgument, UnknownSolver
from nirforward.forward import forward_spectral_fd
from nirforward.logging_config import setup_logging
from nirforward.mesh_io import save_result
from nirforward.solvers import SolverRegistry

logger = logging.getLogger("nirforward.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nirforward",
        description="Amplitude and phase of a spectral mesh at every enabled wavelength.",
    )
    parser.add_argument("mesh", help="Path to a .nirmesh archive")
    parser.add_argument("--frequency", type=float, required=True, help="Modulation frequency in Hz (0 = CW)")
    parser.add_argument("--solver", default=None, help=f"One of {SolverRegistry.list_available()} or an alias")
    parser.add_argument("--max-iterations", type=int, default=defaults.DEFAULT_MAX_ITERATIONS)
    parser.add_argument("--abs-tolerance", type=float, default=defaults.DEFAULT_ABS_TOLERANCE)
    parser.add_argument("--rel-tolerance", type=float, default=defaults.DEFAULT_REL_TOLERANCE)
    parser.add_argument("--divergence-tolerance", type=float, default=defaults.DEFAULT_DIVERGENCE_TOLERANCE)
    parser.add_argument("--gpu-index", type=int, default=defaults.DEFAULT_GPU_INDEX)
    parser.add_argument("--no-field", action="store_true", help="Do not keep the nodal fluence")
    parser.add_argument("--workers", type=int, default=defaults.DEFAULT_MAX_WORKERS)
    parser.add_argument("--continue-on-failure", action="store_true",
                        help="Mark failing wavelengths and keep going instead of aborting")
    parser.add_argument("--output", "-o", default=None, help="Write the result to this .npz file")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    options = {
        "max_iterations": args.max_iterations,
        "abs_tolerance": args.abs_tolerance,
        "rel_tolerance": args.rel_tolerance,
        "divergence_tolerance": args.divergence_tolerance,
        "gpu_index": args.gpu_index,
    }

    try:
        result = forward_spectral_fd(
            args.mesh,
            args.frequency,
            solver=args.solver,
            options=options,
            keep_field=not args.no_field,
            failure_policy="continue" if args.continue_on_failure else "abort",
            max_workers=args.workers,
        )
    except (InvalidArgument, UnknownSolver, FileNotFoundError) as e:
        logger.error("%s", e)
        return 2
    except ForwardModelError as e:
        logger.error("Forward run failed: %s", e)
        return 1

    for k, wavelength in enumerate(result.wv):
        amplitude = result.amplitude[:, k]
        phase = result.phase[:, k]
        finite = np.isfinite(amplitude)
        if finite.any():
            print(
                f"{wavelength:7.1f} nm  {result.status[k].value:8s}  "
                f"amplitude [{amplitude[finite].min():.3e}, {amplitude[finite].max():.3e}]  "
                f"phase [{phase[finite].min():.2f}, {phase[finite].max():.2f}] deg"
            )
        else:
            print(f"{wavelength:7.1f} nm  {result.status[k].value:8s}")

    if result.info is not None and not result.info.all_converged:
        logger.warning("Some iterative solves did not converge; inspect the convergence info")

    if args.output:
        save_result(result, args.output)

    return 1 if result.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
