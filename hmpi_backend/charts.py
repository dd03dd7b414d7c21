# Map and chart rendering for persisted HMPI results
import io
import logging
from typing import Any, Dict, List, Tuple

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import folium

from .hmpi import SEVERITY_TIERS, SeverityTier, classify
from .normalizer import safe_float

logger = logging.getLogger(__name__)

INDIA_CENTER = [22.9734, 78.6569]
MAX_MAP_MARKERS = 500
AREA_KEYS = ('state', 'district')


def build_results_map(records: List[Dict[str, Any]]) -> str:
    """Folium map of stored results coloured by severity tier, as HTML"""
    m = folium.Map(location=INDIA_CENTER, zoom_start=5, tiles='OpenStreetMap')

    plotted = 0
    for record in records:
        if plotted >= MAX_MAP_MARKERS:
            break
        lat = safe_float(record.get('latitude'))
        lon = safe_float(record.get('longitude'))
        value = safe_float(record.get('hmpiValue'))
        if lat is None or lon is None or value is None:
            continue

        tier = classify(value)
        popup_html = f"""
        <div style="font-family: Arial; min-width: 200px;">
            <h4 style="margin: 0 0 10px 0;">{tier.status}</h4>
            <table style="width: 100%; font-size: 12px;">
                <tr><td><b>State:</b></td><td>{record.get('state', '')}</td></tr>
                <tr><td><b>District:</b></td><td>{record.get('district', '')}</td></tr>
                <tr><td><b>HMPI:</b></td><td>{value}</td></tr>
                <tr><td><b>Level:</b></td><td>{tier.level}</td></tr>
            </table>
        </div>
        """

        folium.CircleMarker(
            location=[lat, lon],
            radius=7,
            color=tier.color,
            fill=True,
            fill_color=tier.color,
            fill_opacity=0.6,
            weight=2,
            popup=folium.Popup(popup_html, max_width=320)
        ).add_to(m)
        plotted += 1

    logger.info(f"Rendered map with {plotted} markers")
    return m.get_root().render()


def aggregate_hmpi_by_area(records: List[Dict[str, Any]], by: str = 'state') -> List[Tuple[str, float]]:
    """Average hmpiValue per area key, sorted by descending average.
    by: one of 'state', 'district'
    """
    valid_by = by if by in AREA_KEYS else 'state'
    sums: Dict[str, float] = {}
    counts: Dict[str, int] = {}

    for r in records:
        key = str(r.get(valid_by, '') or 'Unknown')
        v = safe_float(r.get('hmpiValue'))
        if v is None:
            continue
        sums[key] = sums.get(key, 0.0) + v
        counts[key] = counts.get(key, 0) + 1

    averages: List[Tuple[str, float]] = [(k, sums[k] / counts[k]) for k in counts]
    averages.sort(key=lambda x: x[1], reverse=True)
    return averages


def tier_bands(y_max: float) -> List[Tuple[float, float, SeverityTier]]:
    """(lower, upper, tier) spans covering 0..y_max, open tier clipped to y_max"""
    bands = []
    lower = 0.0
    for tier in SEVERITY_TIERS:
        upper = tier.upper if tier.upper is not None else max(y_max, lower)
        if lower >= y_max:
            break
        bands.append((lower, min(upper, y_max), tier))
        lower = upper
    return bands


def render_hmpi_plot(agg_data: List[Tuple[str, float]], chart_type: str = 'bar',
                     by: str = 'state', top: int = 10) -> bytes:
    """Averaged HMPI per area drawn over the severity tier bands, as PNG bytes.

    Bars (or line markers) take the colour of the tier they fall in; the
    background shows every tier reached by the y-axis.
    """
    labels = [k for k, _ in agg_data]
    values = [v for _, v in agg_data]
    if chart_type not in ('bar', 'line'):
        chart_type = 'bar'

    fig_w = max(8, min(20, 0.6 * max(1, len(labels))))
    fig, ax = plt.subplots(figsize=(fig_w, 4.8), dpi=150)

    y_max = max(values + [SEVERITY_TIERS[0].upper]) * 1.15
    for lower, upper, tier in tier_bands(y_max):
        ax.axhspan(lower, upper, color=tier.color, alpha=0.15, zorder=0,
                   label=f"{tier.status} ({tier.range})")
        if tier.upper is not None and tier.upper < y_max:
            ax.axhline(tier.upper, color=tier.color, linewidth=0.8, linestyle='--', zorder=1)

    colors = [classify(v).color for v in values]
    if chart_type == 'bar':
        bars = ax.bar(labels, values, color=colors, edgecolor='#333333', zorder=2)
        if len(values) <= 20:
            ax.bar_label(bars, labels=[f"{v:.2f}" for v in values], fontsize=8)
    else:
        ax.plot(labels, values, linestyle='-', color='#555555', zorder=2)
        ax.scatter(labels, values, c=colors, edgecolors='#333333', s=40, zorder=3)

    ax.set_ylim(0, y_max)
    ax.set_title(f"Average HMPI by {by.capitalize()} (Top {top})")
    ax.set_ylabel('HMPI')
    ax.set_xlabel(by.capitalize())
    ax.tick_params(axis='x', labelrotation=45)
    ax.legend(loc='upper right', fontsize=7, title='Tier', title_fontsize=8)
    fig.tight_layout()

    buf = io.BytesIO()
    fig.savefig(buf, format='png', bbox_inches='tight')
    plt.close(fig)
    return buf.getvalue()
