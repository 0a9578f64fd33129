"""
Descriptive figures for the outage health manuscript.

Figures produced (file names match the manuscript numbering):
1. Monthly statewide outage hours (line chart)
2. County outage hours, 2018 (choropleth, joined on FIPS)
3. County wildfire acreage, 2018 (choropleth, joined on county name)
4. LOESS regression of respiratory infections around outage dates

Each figure is generated independently; a failure in one is logged and does
not prevent the others.
"""

import string
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Optional

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import SymLogNorm
from matplotlib.figure import Figure
from matplotlib.ticker import FuncFormatter
import logging

from .exceptions import OutageHealthError
from .geography import join_measure, load_county_boundaries
from .smoothing import LoessResult, loess
from .utils.data_loader import FigureDataLoader, monthly_outage_totals, wildfire_totals

logger = logging.getLogger(__name__)

FIGURE_DPI = 300
LINE_SIZE = (8, 5)
MAP_SIZE = (8, 10)
LOESS_SIZE = (7, 5)

CHOROPLETH_CMAP = 'plasma'
MISSING_COLOR = '#e5e5e5'  # grey90
BORDER_COLOR = 'white'
LINE_COLOR = 'steelblue'
POINT_COLOR = 'darkred'

MONTHLY_FIGURE = "FigX_California_{year}_Monthly_Outages.png"
OUTAGE_MAP_FIGURE = "Fig2B_California_{year}_County_Outage_Map.png"
WILDFIRE_MAP_FIGURE = "Fig2A_California_{year}_Wildfire_Map.png"
LOESS_FIGURE = "Fig6{panel}_{county}_LOESS_RespiratoryInfections.png"


def short_scale(value: float, _pos=None) -> str:
    """Axis label with K/M/B/T suffixes (1.2M)."""
    magnitude = abs(value)
    for threshold, suffix in ((1e12, 'T'), (1e9, 'B'), (1e6, 'M'), (1e3, 'K')):
        if magnitude >= threshold:
            return f"{value / threshold:g}{suffix}"
    return f"{value:g}"


def comma(value: float, _pos=None) -> str:
    return f"{value:,.0f}"


@contextmanager
def _new_figure(figsize):
    """New figure and axes, closed again if drawing fails."""
    fig, ax = plt.subplots(figsize=figsize)
    try:
        yield fig, ax
    except BaseException:
        plt.close(fig)
        raise


def plot_monthly_outages(monthly: pd.DataFrame, title: str) -> Figure:
    """Line chart of TotalHoursOut by MonthName."""
    with _new_figure(LINE_SIZE) as (fig, ax):
        positions = np.arange(len(monthly))
        ax.plot(positions, monthly['TotalHoursOut'], color=LINE_COLOR, linewidth=2.5)
        ax.plot(positions, monthly['TotalHoursOut'], 'o', color=POINT_COLOR, markersize=7)

        ax.set_xticks(positions)
        ax.set_xticklabels(monthly['MonthName'].astype(str), rotation=45, ha='right')
        ax.yaxis.set_major_formatter(FuncFormatter(short_scale))
        ax.set_ylim(bottom=0)
        ax.margins(x=0.02)

        ax.set_title(title, fontweight='bold')
        ax.set_xlabel("Month")
        ax.set_ylabel("Total Customer Hours Out", fontweight='bold')
        ax.grid(True, alpha=0.3)
        fig.tight_layout()
    return fig


def plot_choropleth(
    joined: gpd.GeoDataFrame,
    column: str,
    title: str,
    legend_label: str,
    subtitle: Optional[str] = None,
    caption: Optional[str] = None
) -> Figure:
    """
    County map shaded by `column`.

    Counties with no value are filled with MISSING_COLOR. A symmetric-log
    colour scale keeps a few very large counties from washing out the rest.
    """
    with _new_figure(MAP_SIZE) as (fig, ax):
        values = joined[column]

        if values.notna().any():
            vmin = min(0.0, float(values.min()))
            vmax = max(1.0, float(values.max()))
            joined.plot(
                column=column,
                ax=ax,
                cmap=CHOROPLETH_CMAP,
                norm=SymLogNorm(linthresh=1.0, vmin=vmin, vmax=vmax, base=10),
                edgecolor=BORDER_COLOR,
                linewidth=0.3,
                legend=True,
                legend_kwds={'label': legend_label, 'shrink': 0.6, 'format': FuncFormatter(comma)},
                missing_kwds={'color': MISSING_COLOR, 'edgecolor': BORDER_COLOR, 'label': 'No data'},
            )
        else:
            logger.warning(f"No {column} values to map; drawing every county as missing")
            joined.plot(ax=ax, color=MISSING_COLOR, edgecolor=BORDER_COLOR, linewidth=0.3)

        fig.suptitle(title, fontweight='bold', x=0.05, ha='left')
        if subtitle:
            ax.set_title(subtitle, loc='left', fontsize=11)
        if caption:
            fig.text(0.95, 0.02, caption, ha='right', fontsize=8, style='italic')
        ax.set_axis_off()
    return fig


def plot_loess(result: LoessResult, title: str) -> Figure:
    """Scatter of observations with the LOESS fit and its 95% band."""
    with _new_figure(LOESS_SIZE) as (fig, ax):
        order = np.argsort(result.x)
        x = result.x[order]

        ax.scatter(result.x, result.y, alpha=0.6, color='black', s=18)
        ax.plot(x, result.fit[order], color=LINE_COLOR, linewidth=2)
        ax.fill_between(x, result.lower[order], result.upper[order], color=LINE_COLOR, alpha=0.2)

        ax.set_title(title, fontweight='bold')
        ax.set_xlabel("Days before and after outage")
        ax.set_ylabel("Respiratory infection hospitalizations")
        fig.tight_layout()
    return fig


class FigureRenderer:
    """
    Renders every descriptive figure into the configured figure directory.

    The directory is created on first save if it does not exist.
    """

    def __init__(self, config, loader: Optional[FigureDataLoader] = None):
        """
        Args:
            config: Study configuration object
            loader: Input loader (defaults to one built from config)
        """
        self.config = config
        self.loader = loader or FigureDataLoader(config)
        self.figure_dir = config.figure_path
        self.year = config.analysis_year
        self._boundaries = None

        logger.info(f"Figures will be written to {self.figure_dir}")

    @property
    def boundaries(self) -> gpd.GeoDataFrame:
        if self._boundaries is None:
            path = self.config.input_path(self.config.boundaries_file)
            self._boundaries = load_county_boundaries(str(path), self.config.state_fips)
        return self._boundaries

    def monthly_outages(self, daily: Optional[pd.DataFrame] = None) -> Path:
        daily = daily if daily is not None else self.loader.load_daily_outages()
        monthly = monthly_outage_totals(daily, self.year)
        fig = plot_monthly_outages(monthly, f"Monthly Power Outages in California ({self.year})")
        return self._save(fig, MONTHLY_FIGURE.format(year=self.year))

    def outage_map(
        self,
        county_outages: Optional[pd.DataFrame] = None,
        boundaries: Optional[gpd.GeoDataFrame] = None
    ) -> Path:
        county_outages = county_outages if county_outages is not None else self.loader.load_county_outages()
        boundaries = boundaries if boundaries is not None else self.boundaries

        joined = join_measure(boundaries, county_outages, 'FIPS', 'CustomerHoursOutTotal')
        fig = plot_choropleth(
            joined,
            'CustomerHoursOutTotal',
            title=f"California County Power Outage Hours ({self.year})",
            legend_label=f"Customer Hours Out ({self.year})",
            subtitle="Total customer hours without electricity by county",
            caption="Source: PowerOutage.us (processed by author)",
        )
        return self._save(fig, OUTAGE_MAP_FIGURE.format(year=self.year))

    def wildfire_map(
        self,
        fires: Optional[pd.DataFrame] = None,
        boundaries: Optional[gpd.GeoDataFrame] = None
    ) -> Path:
        fires = fires if fires is not None else self.loader.load_wildfires()
        boundaries = boundaries if boundaries is not None else self.boundaries

        totals = wildfire_totals(fires, self.year)
        joined = join_measure(boundaries, totals, 'COUNTY_UP', 'AcresBurnedTotal')
        fig = plot_choropleth(
            joined,
            'AcresBurnedTotal',
            title=f"California Major Wildfires ({self.year})",
            legend_label=f"Acres burned ({self.year})",
            subtitle="Total acres burned by county (>=300-acre fires)",
            caption="Source: CalFire Redbook (processed by author)",
        )
        return self._save(fig, WILDFIRE_MAP_FIGURE.format(year=self.year))

    def loess_plot(self, regression, title: str, filename: str) -> Path:
        """
        Args:
            regression: DataFrame with day_offset/outcome, or a file name in data_dir
            title: Plot title
            filename: Output PNG name
        """
        if isinstance(regression, (str, Path)):
            regression = self.loader.load_regression(str(regression))

        usable = regression.dropna(subset=['day_offset', 'outcome'])
        dropped = len(regression) - len(usable)
        if dropped:
            logger.info(f"Dropped {dropped} regression row(s) with missing values")

        result = loess(
            usable['day_offset'].to_numpy(),
            usable['outcome'].to_numpy(),
            span=self.config.loess_span,
            degree=self.config.loess_degree,
        )
        return self._save(plot_loess(result, title), filename)

    def render_all(self) -> Dict[str, Optional[Path]]:
        """
        Produce every figure.

        Returns:
            Mapping of figure name to saved path, or None where it failed
        """
        jobs: Dict[str, Callable[[], Path]] = {
            'monthly_outages': self.monthly_outages,
            'outage_map': self.outage_map,
            'wildfire_map': self.wildfire_map,
        }
        for panel, (county, filename) in zip(string.ascii_uppercase, self.config.regression_files.items()):
            jobs[f"loess_{county.lower()}"] = _bind_loess(
                self,
                filename,
                f"{county} County: LOESS Regression of Respiratory Infections",
                LOESS_FIGURE.format(panel=panel, county=county),
            )

        paths: Dict[str, Optional[Path]] = {}
        for name, job in jobs.items():
            try:
                paths[name] = job()
            except (OutageHealthError, OSError, ValueError, RuntimeError) as e:
                logger.error(f"Figure {name} failed: {e}")
                paths[name] = None

        made = sum(path is not None for path in paths.values())
        logger.info(f"Rendered {made} of {len(paths)} figures")
        return paths

    def _save(self, fig: Figure, filename: str) -> Path:
        path = self.figure_dir / filename
        try:
            self.figure_dir.mkdir(parents=True, exist_ok=True)
            fig.savefig(path, dpi=FIGURE_DPI, facecolor='white')
        finally:
            plt.close(fig)
        logger.info(f"  ✓ {path.name}")
        return path


def _bind_loess(renderer: FigureRenderer, source: str, title: str, filename: str) -> Callable[[], Path]:
    return lambda: renderer.loess_plot(source, title, filename)
