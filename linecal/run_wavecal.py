#!/usr/bin/env python3
"""
Wavelength Calibration: Dispersion Solutions for a Directory of Lamp Spectra
===========================================================================

For every comparison-lamp spectrum in a directory:
    1. Extract emission lines (iterative Voigt fitting)
    2. Associate them with the atlas (anchor search + greedy assignment)
    3. Fit the dispersion polynomial to the surviving pairs

Files are processed in parallel; a file that fails is reported and skipped.
The per-file solutions are then reviewed (optionally interactively),
collected into a coefficient table keyed by observation day, screened for
outliers against their neighbours in time and saved.

Usage:
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05 --interactive --plots
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05 --exclude 59012.3 --override 59013.1 6300.1 0.05
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05 --dry-run
"""

import json
import logging
import time
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from scipy.optimize import OptimizeWarning

from .association import AssociationResult, associate_lines
from .config import LinecalConfig, get_config
from .dispersion import DispersionFit, DispersionSolution, fit_dispersion
from .errors import LinecalError
from .line_tools import ExtractionResult, extract_lines
from .review import Command, Navigator, console_reviewer
from .solutions import CoefficientTable
from .spectra import discover_spectra, load_atlas, load_spectrum

log = logging.getLogger(__name__)


# =============================================================================
# SINGLE SPECTRUM
# =============================================================================

@dataclass
class CalibrationResult:
    extraction: ExtractionResult
    association: AssociationResult
    fit: DispersionFit

    @property
    def solution(self) -> DispersionSolution:
        return self.fit.solution


def calibrate_spectrum(flux, guess: DispersionSolution, atlas,
                       config: LinecalConfig = None, name: str = 'spectrum') -> CalibrationResult:
    """
    Extraction -> association -> dispersion fit for one spectrum.

    Raises:
        LinecalError subclasses from any stage
    """
    config = config or get_config()
    extraction = extract_lines(flux, guess, atlas, config, name=name)
    association = associate_lines(extraction.centers, atlas, guess, config, name=name)
    fit = fit_dispersion(association.good_pixels, association.good_wavelengths,
                         config.fit_order, ref_pixel=guess.ref_pixel)
    log.info("%s: %d lines, %d rejected, rms %.4g", name, fit.n_lines,
             association.n_rejected, fit.rms)
    return CalibrationResult(extraction=extraction, association=association, fit=fit)


def process_spectrum(path: Path, obs_day: float, guess_coeffs, atlas,
                     ref_pixel: Optional[float] = None,
                     config: LinecalConfig = None) -> Dict[str, Any]:
    """
    Calibrate one spectrum file.

    Args:
        path: Spectrum CSV
        obs_day: Observation day used as the table key
        guess_coeffs: Initial dispersion coefficients (lowest order first)
        atlas: Reference wavelengths
        ref_pixel: Reference pixel; default is the centre of the detector

    Returns:
        Result dict; 'success' False with an 'error' message on failure
    """
    start = time.time()
    path = Path(path)
    try:
        flux = load_spectrum(path)
        ref = (len(flux) - 1) / 2.0 if ref_pixel is None else ref_pixel
        guess = DispersionSolution(guess_coeffs, ref)
        cal = calibrate_spectrum(flux, guess, atlas, config, name=path.stem)
    except LinecalError as e:
        log.warning("%s skipped: %s", path.name, e)
        return {'file': path.name, 'obs_day': obs_day, 'success': False,
                'error': str(e), 'time_sec': time.time() - start}

    return {
        'file': path.name,
        'obs_day': obs_day,
        'success': True,
        'n_lines': cal.fit.n_lines,
        'n_rejected': cal.association.n_rejected,
        'rms': cal.fit.rms,
        'shift': cal.association.shift,
        'coeffs': cal.solution.coeffs.tolist(),
        'ref_pixel': cal.solution.ref_pixel,
        'time_sec': time.time() - start,
        'calibration': cal,
    }


# =============================================================================
# BATCH
# =============================================================================

def _describe(result: Dict[str, Any]) -> str:
    coeffs = ', '.join(f'{c:.6g}' for c in result['coeffs'])
    return (f"\n{result['file']} (day {result['obs_day']:.5f}): {result['n_lines']} lines, "
            f"{result['n_rejected']} rejected, rms {result['rms']:.4g}\n  coeffs [{coeffs}]")


def review_solutions(results: List[Dict[str, Any]], reviewer=None,
                     interactive: bool = False, plots_dir: Optional[Path] = None):
    """
    Walk the successful results in observation-day order.

    `next` accepts a solution, `previous` revisits the one before, `run`
    accepts the rest without asking and `quit` stops, keeping what was
    accepted so far.

    Returns:
        (CoefficientTable of accepted solutions, aborted flag)
    """
    good = sorted((r for r in results if r.get('success')), key=lambda r: r['obs_day'])
    nav = Navigator(len(good), interactive=interactive)
    accepted = {}

    while not nav.done:
        result = good[nav.position]
        if plots_dir is not None and 'plots' not in result:
            from .plotting import plot_dispersion, plot_extraction
            cal, name = result['calibration'], Path(result['file']).stem
            result['plots'] = [plot_extraction(cal.extraction, name, plots_dir),
                               plot_dispersion(cal.fit, cal.association, name, plots_dir)]

        description = _describe(result)
        if result.get('plots'):
            description += '\n  plots: ' + ', '.join(result['plots'])

        command = nav.ask(reviewer, description)
        if command in (Command.NEXT, Command.RUN):
            accepted[nav.position] = result
        elif command is Command.PREVIOUS:
            accepted.pop(max(0, nav.position - 1), None)
        nav.step(command)

    if nav.quit:
        log.info("Review stopped at %d/%d; keeping %d accepted solutions",
                 nav.position, len(good), len(accepted))

    table = CoefficientTable()
    for result in accepted.values():
        cal = result['calibration']
        table.add(result['obs_day'], result['file'], cal.solution,
                  n_lines=cal.fit.n_lines, rms=cal.fit.rms)
    return table, nav.quit


def calibrate_directory(directory, atlas, guess_coeffs, ref_pixel: Optional[float] = None,
                        config: LinecalConfig = None, limit: Optional[int] = None,
                        log_file: Optional[Path] = None):
    """
    Calibrate every spectrum of `directory` in parallel.

    Returns:
        List of result dicts, one per file, sorted by observation day
    """
    config = config or get_config()
    spectra = discover_spectra(directory)
    if limit:
        spectra = spectra[:limit]

    results = []
    # Warning filters are process-global: set from this thread only, never in workers
    with warnings.catch_warnings(), ThreadPoolExecutor(max_workers=config.workers) as executor:
        warnings.simplefilter('ignore', OptimizeWarning)
        futures = {executor.submit(process_spectrum, path, day, guess_coeffs, atlas,
                                   ref_pixel, config): (path, day)
                   for path, day in spectra}

        for i, future in enumerate(as_completed(futures)):
            path, day = futures[future]
            try:
                result = future.result()
            except Exception as e:
                log.exception("Unexpected failure on %s", path)
                result = {'file': Path(path).name, 'obs_day': day, 'success': False,
                          'error': str(e), 'time_sec': 0.0}
            results.append(result)

            if result['success']:
                msg = (f"SUCCESS: {result['file']} | {result['n_lines']} lines, "
                       f"{result['n_rejected']} rejected | rms {result['rms']:.4g} | "
                       f"{result['time_sec']:.1f}s")
                print(f"[{i+1:3d}/{len(spectra)}] ✓ {msg}", flush=True)
            else:
                msg = f"FAILED: {result['file']} | {result['error'][:80]} | {result['time_sec']:.1f}s"
                print(f"[{i+1:3d}/{len(spectra)}] ✗ {msg}", flush=True)

            if log_file is not None:
                with open(log_file, 'a') as f:
                    f.write(f"{datetime.now().isoformat()} | {msg}\n")

    return sorted(results, key=lambda r: r['obs_day'])


def apply_edits(table: CoefficientTable, exclude=(), override=()) -> List[str]:
    """
    Apply hand edits to reviewed solutions.

    Args:
        exclude: Observation days to reject
        override: (obs_day, c0, c1, ...) sequences replacing a day's coefficients

    Returns:
        Messages for edits naming a day with no recorded solution
    """
    problems = []
    for day in exclude:
        try:
            table.exclude(day)
        except LinecalError as e:
            problems.append(str(e))
    for day, *coeffs in override:
        if not coeffs:
            problems.append(f"Override for day {day} has no coefficients")
            continue
        try:
            table.override(day, coeffs)
        except LinecalError as e:
            problems.append(str(e))
    for message in problems:
        log.warning(message)
    return problems


def _summary_records(results):
    return [{k: v for k, v in r.items() if k != 'calibration'} for r in results]


# =============================================================================
# COMMAND LINE INTERFACE
# =============================================================================

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="Dispersion solutions for a directory of comparison-lamp spectra",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05 --order 3 --workers 8
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05 --interactive --plots
    linecal-wavecal lamps/ --atlas thar.txt --guess 6300 0.05 --dry-run
        """
    )
    parser.add_argument("directory", type=str, help="Directory of spectrum CSV files")
    parser.add_argument("--atlas", type=str, required=True, help="Atlas line list")
    parser.add_argument("--guess", type=float, nargs='+', required=True,
                        help="Initial dispersion coefficients, lowest order first")
    parser.add_argument("--ref-pixel", type=float, default=None,
                        help="Reference pixel (default: detector centre)")
    parser.add_argument("--order", type=int, default=None, help="Dispersion polynomial order")
    parser.add_argument("--workers", type=int, default=None, help="Parallel workers")
    parser.add_argument("--interactive", action="store_true",
                        help="Review every solution before accepting it")
    parser.add_argument("--exclude", type=float, action="append", default=[], metavar="DAY",
                        help="Reject the solution of an observation day (repeatable)")
    parser.add_argument("--override", type=float, nargs='+', action="append", default=[],
                        metavar="VALUE",
                        help="Replace a day's coefficients: DAY C0 C1 ... (repeatable)")
    parser.add_argument("--plots", action="store_true", help="Save diagnostic plots")
    parser.add_argument("--output-dir", type=str, default=None, help="Custom output directory")
    parser.add_argument("--limit", type=int, default=None,
                        help="Limit number of spectra to process")
    parser.add_argument("--dry-run", action="store_true",
                        help="List spectra without processing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    config = get_config()
    if args.order is not None:
        config.fit_order = args.order
    if args.workers is not None:
        config.workers = args.workers
    config.validate()

    try:
        atlas = load_atlas(args.atlas)
        spectra = discover_spectra(args.directory)
    except LinecalError as e:
        print(f"Error: {e}")
        return 1
    print(f"Found {len(spectra)} spectra in {args.directory}; atlas has {len(atlas)} lines")

    if args.limit:
        spectra = spectra[:args.limit]
        print(f"  Limited to {len(spectra)} spectra")

    if args.dry_run:
        print("\n=== DRY RUN: Spectra to process ===")
        for path, day in spectra:
            print(f"  {path.name}  day {day:.5f}")
        return 0

    out_dir = Path(args.output_dir) if args.output_dir else config.output_dir
    out_dir.mkdir(exist_ok=True, parents=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = out_dir / f"wavecal_log_{timestamp}.txt"

    print("\n" + "="*70)
    print("WAVELENGTH CALIBRATION")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Order: {config.fit_order} | Continuum: {config.continuum_degree} | "
          f"Workers: {config.workers}")
    print(f"Output: {out_dir}")
    print("="*70)

    results = calibrate_directory(args.directory, atlas, args.guess, args.ref_pixel,
                                  config, limit=args.limit, log_file=log_file)

    reviewer = console_reviewer() if args.interactive else None
    table, aborted = review_solutions(results, reviewer=reviewer, interactive=args.interactive,
                                      plots_dir=out_dir / 'plots' if args.plots else None)
    for message in apply_edits(table, args.exclude, args.override):
        print(f"  Edit skipped: {message}")
    flagged = table.mark_outliers(config.neighbor_window, config.outlier_cut)

    table_file = table.save(out_dir / f"coefficients_{timestamp}.csv")
    out_file = out_dir / f"wavecal_{timestamp}.json"
    with open(out_file, 'w') as f:
        json.dump({'metadata': {'directory': str(args.directory), 'atlas': str(args.atlas),
                                'guess': args.guess, 'ref_pixel': args.ref_pixel,
                                'fit_order': config.fit_order, 'timestamp': timestamp},
                   'results': _summary_records(results)}, f, indent=2, default=str)

    if args.plots:
        from .plotting import plot_coefficients
        plot_coefficients(table, out_dir / 'plots', f"coefficients_{timestamp}.png")

    n_ok = sum(1 for r in results if r['success'])
    rms = [r['rms'] for r in results if r['success']]

    print("\n" + "="*70)
    print("SUMMARY")
    print(f"  Calibrated: {n_ok}/{len(results)}")
    print(f"  Failed: {len(results) - n_ok}")
    print(f"  Accepted: {len(table)}{' (review stopped early)' if aborted else ''}")
    print(f"  Flagged as outliers: {len(flagged)}")
    if rms:
        print(f"  Median rms: {np.median(rms):.4g}")
    print(f"\nCoefficients: {table_file}")
    print(f"Results: {out_file}")
    print(f"Log: {log_file}")
    print("="*70)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
