#!/usr/bin/env python3
"""
FARS Accident Analysis
======================
Summarizes fatal traffic accidents by month and year, and maps the
accidents of a single state for a given year.

Reads the yearly accident files published by the Fatality Analysis
Reporting System, one bz2-compressed CSV per year named
``accident_<year>.csv.bz2``.

Data Sources:
- Accidents: NHTSA FARS "accident" table, one file per year
- State outlines: US Census cartographic boundary file (cb_2018_us_state_20m)

Usage:
    python3 fars_analysis.py summarize 2013 2014 2015     # Uses ./ for data
    python3 fars_analysis.py summarize 2013 --data-dir data
    python3 fars_analysis.py map 1 2013                   # Alabama, 2013
    python3 fars_analysis.py map 6 2014 --output ca.png
"""

import argparse
import os
import sys
import warnings
from dataclasses import dataclass
from typing import Optional

import geopandas as gpd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy import stats

sns.set_theme(style="whitegrid", font_scale=1.1)

FILENAME_TEMPLATE = 'accident_{}.csv.bz2'

# FARS codes unknown coordinates as 99.9999 / 999.9999 and similar
LATITUDE_SENTINEL = 90
LONGITUDE_SENTINEL = 900

DEFAULT_DATA_DIR = os.environ.get('FARS_DATA_DIR', '.')
DEFAULT_OUTPUT_DIR = os.environ.get('FARS_OUTPUT_DIR', 'output')
STATE_BOUNDARIES = os.environ.get(
    'FARS_STATE_BOUNDARIES',
    'https://www2.census.gov/geo/tiger/GENZ2018/shp/cb_2018_us_state_20m.zip',
)

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
               'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


class InvalidStateError(ValueError):
    """The requested state code does not occur in the year's data."""

    def __init__(self, state_num):
        super().__init__(f"invalid STATE number: {state_num}")
        self.state_num = state_num


class NoDataError(ValueError):
    pass


@dataclass
class YearResult:
    """Outcome of loading one year: either a MONTH/year projection or the error."""
    year: int
    data: Optional[pd.DataFrame] = None
    error: Optional[Exception] = None

    @property
    def ok(self):
        return self.error is None


def make_filename(year):
    """Return the accident file name for a year, truncating non-integer input."""
    return FILENAME_TEMPLATE.format(int(year))


def _as_years(years):
    if np.isscalar(years):
        return [years]
    return list(years)


def _resolve(year, data_dir):
    filename = make_filename(year)
    if data_dir:
        return os.path.join(data_dir, filename)
    return filename


def fars_read(filename):
    """Read one FARS accident file into a DataFrame.

    Compression is inferred from the extension. Only the existence of the
    file is checked; parse errors propagate unchanged.
    """
    if not os.path.exists(filename):
        raise FileNotFoundError(f"file '{filename}' does not exist")
    return pd.read_csv(filename, low_memory=False)


def read_year(year, data_dir=None):
    """Load one year and project it to MONTH plus a constant year column."""
    year = int(year)
    try:
        data = fars_read(_resolve(year, data_dir))
    except FileNotFoundError as e:
        return YearResult(year=year, error=e)
    projection = data.assign(year=year)[['MONTH', 'year']]
    return YearResult(year=year, data=projection)


def fars_read_years(years, data_dir=None):
    """Return one MONTH/year DataFrame per requested year, None for missing years."""
    tables = []
    for result in (read_year(y, data_dir) for y in _as_years(years)):
        if not result.ok:
            warnings.warn(f"invalid year: {result.year}", stacklevel=2)
        tables.append(result.data)
    return tables


def fars_summarize_years(years, data_dir=None):
    """Count accidents per month, one column per successfully loaded year.

    Rows are the months present in the data, ascending. Year columns are
    sorted ascending; a month with no accidents in a year is NaN, not 0.
    Returns an empty frame with just a MONTH column when no year loads.
    """
    results = [read_year(y, data_dir) for y in _as_years(years)]
    for result in results:
        if not result.ok:
            warnings.warn(f"invalid year: {result.year}", stacklevel=2)
    frames = [r.data for r in results if r.ok]
    if not frames:
        return pd.DataFrame(columns=['MONTH'])

    combined = pd.concat(frames, ignore_index=True)
    counts = combined.groupby(['year', 'MONTH']).size().reset_index(name='n')

    summary = counts.pivot(index='MONTH', columns='year', values='n')
    summary = summary.sort_index().reindex(columns=sorted(summary.columns))
    summary.columns.name = None
    return summary.reset_index()


def sanitize_coordinates(df):
    """Return a copy with sentinel LATITUDE/LONGITUD values replaced by NaN."""
    clean = df.copy()
    clean['LONGITUD'] = clean['LONGITUD'].astype(float)
    clean['LATITUDE'] = clean['LATITUDE'].astype(float)
    clean.loc[clean['LONGITUD'] > LONGITUDE_SENTINEL, 'LONGITUD'] = np.nan
    clean.loc[clean['LATITUDE'] > LATITUDE_SENTINEL, 'LATITUDE'] = np.nan
    return clean


def bounding_box(df):
    """(lon_min, lon_max, lat_min, lat_max) of the non-null coordinates, or None."""
    lon = df['LONGITUD'].dropna()
    lat = df['LATITUDE'].dropna()
    if lon.empty or lat.empty:
        return None
    return lon.min(), lon.max(), lat.min(), lat.max()


def load_state_boundaries(source=None):
    """Load state outline polygons in WGS84 from any file or URL geopandas reads."""
    source = source or STATE_BOUNDARIES
    print(f"  Loading state boundaries from {source}")
    states = gpd.read_file(source)
    if states.crs is not None:
        states = states.to_crs('EPSG:4326')
    return states


def render_state_map(points, bbox, states, output_path, title=None):
    """Draw the state outlines inside bbox and overlay one dot per accident."""
    lon_min, lon_max, lat_min, lat_max = bbox

    fig, ax = plt.subplots(figsize=(10, 8))

    visible = states.cx[lon_min:lon_max, lat_min:lat_max]
    if not visible.empty:
        visible.boundary.plot(ax=ax, color='black', linewidth=0.6)

    ax.scatter(points['LONGITUD'], points['LATITUDE'],
               s=2, marker='.', color='#e74c3c')

    ax.set_xlim(lon_min, lon_max)
    ax.set_ylim(lat_min, lat_max)
    ax.set_xlabel('Longitude', fontsize=12)
    ax.set_ylabel('Latitude', fontsize=12)
    if title:
        ax.set_title(title, fontsize=14, fontweight='bold')

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"  Saved: {output_path}")


def fars_map_state(state_num, year, data_dir=None, output_path=None,
                   states=None):
    """Plot the accidents of one state for one year on a state outline map.

    A missing file is fatal here, and so is a state code absent from the
    year's data. If nothing is left to plot a message is printed and no
    figure is written.
    """
    data = fars_read(_resolve(year, data_dir))
    state_num = int(state_num)

    if state_num not in set(data['STATE'].astype(int).unique()):
        raise InvalidStateError(state_num)

    data_sub = data[data['STATE'].astype(int) == state_num]
    if data_sub.empty:
        print("no accidents to plot")
        return

    data_sub = sanitize_coordinates(data_sub)
    bbox = bounding_box(data_sub)
    if bbox is None:
        print("no valid coordinates to plot")
        return

    points = data_sub.dropna(subset=['LONGITUD', 'LATITUDE'])

    if output_path is None:
        os.makedirs(DEFAULT_OUTPUT_DIR, exist_ok=True)
        output_path = os.path.join(
            DEFAULT_OUTPUT_DIR, f'state_{state_num}_{int(year)}.png')
    if states is None:
        states = load_state_boundaries()

    print(f"  State {state_num}, {int(year)}: {len(data_sub):,} accidents, "
          f"{len(points):,} with coordinates")
    render_state_map(points, bbox, states, output_path,
                     title=f'FARS Accidents: State {state_num}, {int(year)}')


def _year_columns(summary):
    return [c for c in summary.columns if c != 'MONTH']


def month_seasonality(summary):
    """Chi-square test of each year's monthly counts against a flat distribution."""
    years = _year_columns(summary)
    if not years:
        raise NoDataError("summary has no year columns")

    rows = []
    for year in years:
        observed = summary[year].fillna(0).to_numpy(dtype=float)
        chi2, p = stats.chisquare(observed)
        rows.append({
            'year': year,
            'total': int(observed.sum()),
            'chi2': chi2,
            'p_value': p,
        })
    return pd.DataFrame(rows)


def compare_years(summary):
    """Test whether the month distribution differs between years.

    Returns (chi2, p_value, dof) from a month x year contingency table.
    """
    years = _year_columns(summary)
    if len(years) < 2:
        raise NoDataError("need at least two years to compare")

    table = summary[years].fillna(0).to_numpy(dtype=float)
    table = table[table.sum(axis=1) > 0]
    chi2, p, dof, _ = stats.chi2_contingency(table)
    return chi2, p, dof


def export_summary(summary, output_dir):
    csv_path = os.path.join(output_dir, 'summary_by_month.csv')
    summary.to_csv(csv_path, index=False)
    print(f"  Saved: {csv_path}")
    return csv_path


def plot_summary(summary, output_path):
    """Line chart of monthly accident counts, one line per year."""
    years = _year_columns(summary)
    if not years:
        raise NoDataError("summary has no year columns")

    long = summary.melt(id_vars='MONTH', value_vars=years,
                        var_name='year', value_name='accidents')
    long = long.dropna(subset=['accidents'])
    long['year'] = long['year'].astype(str)

    fig, ax = plt.subplots(figsize=(12, 7))
    sns.lineplot(x='MONTH', y='accidents', hue='year', data=long,
                 marker='o', ax=ax)
    ax.set_xticks(range(1, 13))
    ax.set_xticklabels(MONTH_NAMES)
    ax.set_xlabel('Month', fontsize=13, fontweight='bold')
    ax.set_ylabel('Fatal Accidents', fontsize=13, fontweight='bold')
    ax.set_title('Fatal Accidents per Month', fontsize=15, fontweight='bold')
    ax.legend(title='Year', fontsize=11, title_fontsize=12)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"  Saved: {output_path}")


def run_summary(years, data_dir, output_dir, plot=True):
    print("=" * 70)
    print("FARS MONTHLY ACCIDENT SUMMARY")
    print("=" * 70)

    print(f"\n[1] Loading years: {', '.join(str(int(y)) for y in years)}")
    summary = fars_summarize_years(years, data_dir=data_dir)
    years_loaded = _year_columns(summary)
    if not years_loaded:
        print("  No data loaded for the requested years.")
        return summary

    print("\n[2] Accidents per month")
    print(summary.to_string(index=False))

    print("\n[3] Exporting data...")
    os.makedirs(output_dir, exist_ok=True)
    export_summary(summary, output_dir)

    print("\n[4] Seasonality (chi-square vs. uniform months)")
    seasonality = month_seasonality(summary)
    for row in seasonality.itertuples(index=False):
        sig = "*" if row.p_value < 0.05 else "ns"
        print(f"  {row.year}: n={row.total:,}, "
              f"chi2={row.chi2:.2f}, p={row.p_value:.6f} {sig}")
    if len(years_loaded) >= 2:
        chi2, p, dof = compare_years(summary)
        print(f"\n  Month x year independence: chi2={chi2:.2f}, dof={dof}, "
              f"p={p:.6f}")

    if plot:
        print("\n[5] Creating visualizations...")
        plot_summary(summary, os.path.join(output_dir, 'fig_monthly_counts.png'))

    return summary


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='FARS Accident Analysis'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    summarize = subparsers.add_parser(
        'summarize', help='Count accidents per month for one or more years')
    summarize.add_argument('years', nargs='+', type=int)
    summarize.add_argument('--data-dir', default=DEFAULT_DATA_DIR,
                           help='Directory containing accident_<year>.csv.bz2 '
                                'files (default: FARS_DATA_DIR or ./)')
    summarize.add_argument('--output-dir', default=DEFAULT_OUTPUT_DIR,
                           help='Directory for output files (default: output/)')
    summarize.add_argument('--no-plot', action='store_true',
                           help='Skip the monthly counts chart')

    map_cmd = subparsers.add_parser(
        'map', help='Plot the accidents of one state for one year')
    map_cmd.add_argument('state', type=int, help='FARS state code')
    map_cmd.add_argument('year', type=int)
    map_cmd.add_argument('--data-dir', default=DEFAULT_DATA_DIR)
    map_cmd.add_argument('--output', default=None,
                         help='PNG path (default: output/state_<n>_<year>.png)')
    map_cmd.add_argument('--boundaries', default=None,
                         help='State boundary file or URL')

    args = parser.parse_args(argv)

    try:
        if args.command == 'summarize':
            run_summary(args.years, args.data_dir, args.output_dir,
                        plot=not args.no_plot)
        else:
            states = None
            if args.boundaries:
                states = load_state_boundaries(args.boundaries)
            fars_map_state(args.state, args.year, data_dir=args.data_dir,
                           output_path=args.output, states=states)
    except (FileNotFoundError, InvalidStateError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
