#!/usr/bin/env python3
"""
Prior Update: Distil Repeated Line Measurements into a Prior Template
=====================================================================

Reads a measurement table (one row per line parameter per observation) and
a baseline prior template, runs the robust filter chain and statistics per
(Doppler group, line) pair and writes the updated template.

The template is written only when --output is given, after the pass has
finished or the reviewer quit.

Usage:
    linecal-priors measurements.csv baseline.json --output priors.json
    linecal-priors measurements.csv baseline.json --interactive
    linecal-priors measurements.csv baseline.json --min-good 7 --output priors.json
"""

import logging
import sys
from datetime import datetime

from .config import get_config
from .errors import LinecalError
from .line_stats import update_priors
from .measurements import ACTIVE, load_measurements
from .priors import PriorTemplate
from .review import console_reviewer


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="Update a prior line-parameter template from repeated measurements",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    linecal-priors measurements.csv baseline.json --output priors.json
    linecal-priors measurements.csv baseline.json --interactive
    linecal-priors measurements.csv baseline.json --min-good 7 --output priors.json
        """
    )
    parser.add_argument("measurements", type=str, help="Measurement table (CSV)")
    parser.add_argument("baseline", type=str, help="Baseline prior template (JSON)")
    parser.add_argument("--output", type=str, default=None,
                        help="Write the updated template here (default: do not write)")
    parser.add_argument("--interactive", action="store_true",
                        help="Review every line before moving on")
    parser.add_argument("--min-good", type=int, default=None,
                        help="Minimum surviving samples for a parameter to become active")
    parser.add_argument("--specific-objects", action="store_true",
                        help="Keep object names distinct instead of grouping them as 'object'")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    config = get_config()
    if args.min_good is not None:
        config.min_good_samples = args.min_good
    if args.specific_objects:
        config.generic_object = False

    print("=" * 70)
    print("PRIOR UPDATE")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Measurements: {args.measurements}")
    print(f"Baseline: {args.baseline}")
    print(f"min_good_samples: {config.min_good_samples} | chi2_cut: {config.chi2_cut} | "
          f"doppler_cut: {config.doppler_cut}")
    print("=" * 70)

    try:
        table = load_measurements(args.measurements)
        baseline = PriorTemplate.load(args.baseline)
        reviewer = console_reviewer() if args.interactive else None
        result = update_priors(table, baseline, config, reviewer=reviewer,
                               interactive=args.interactive)
    except (LinecalError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    n_params = sum(len(u.params) for u in result.updates)
    n_active = sum(1 for u in result.updates for p in u.params.values() if p.status == ACTIVE)
    n_widths = sum(1 for gw in result.group_widths if gw.applied)

    print("\n" + "=" * 70)
    print("SUMMARY")
    print(f"  Groups: {len(result.registry)}")
    for key in result.registry.keys:
        print(f"    {result.registry.label(key)} [{result.registry.kind(key)}]")
    print(f"  Lines processed: {len(result.updates)}")
    print(f"  Parameters active: {n_active}/{n_params}")
    print(f"  Group widths applied: {n_widths}/{len(result.group_widths)}")
    print(f"  Notes: {len(result.notes)}")
    if result.aborted:
        print("  Stopped early by quit")

    if args.output:
        result.template.save(args.output)
        print(f"\nTemplate: {args.output}")
    else:
        print("\nTemplate not written (no --output)")
    print("=" * 70)
    return 0


if __name__ == "__main__":
    sys.exit(main())
