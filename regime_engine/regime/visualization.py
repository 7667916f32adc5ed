"""
Regime visualization — plotly charts for a fitted regime model.

All functions return a dict with 'html' (plotly div) and 'data' (raw
values for JSON export).
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Union

import numpy as np
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from .analyzer import empirical_transition_matrix, regime_statistics
from .decoder import DecodingMode
from .errors import InputError

if TYPE_CHECKING:
    from .detector import FittedRegimeModel

logger = logging.getLogger(__name__)

_THREE_REGIME_COLORS = ["#2ecc71", "#95a5a6", "#e74c3c"]  # Bull, Sideways, Bear
_PALETTE = ["#3498db", "#e67e22", "#9b59b6", "#1abc9c", "#f1c40f", "#34495e", "#e84393"]


def _regime_colors(n_states: int) -> List[str]:
    if n_states == 3:
        return list(_THREE_REGIME_COLORS)
    return [_PALETTE[k % len(_PALETTE)] for k in range(n_states)]


def _json_floats(values) -> List[Optional[float]]:
    return [float(v) if np.isfinite(v) else None for v in np.asarray(values, dtype=np.float64)]


def _to_html(fig: go.Figure) -> str:
    return fig.to_html(full_html=False, include_plotlyjs="cdn")


def plot_regimes(
    model: "FittedRegimeModel",
    mode: Optional[Union[str, DecodingMode]] = None,
) -> Dict:
    """Observation series with each point coloured by its decoded regime.

    Parameters
    ----------
    model : FittedRegimeModel
        Trained model; its training observations are plotted.
    mode : {"viterbi", "smoothed"}, optional
        Decoding used for the colouring (default: the model's mode).

    Returns
    -------
    dict
        Keys: 'html' (str), 'data' (dict).
    """
    decoding = model.decode(mode)
    values = model.observations.values
    data = {
        "dates": [str(d) for d in model.index],
        "values": values.tolist(),
        "labels": decoding.labels.tolist(),
        "names": list(model.names),
        "mode": decoding.mode.value,
    }

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=model.index,
        y=values,
        mode="lines",
        name="Series",
        line=dict(color="rgba(0, 0, 0, 0.3)", width=0.8),
    ))
    for k, (name, color) in enumerate(zip(model.names, _regime_colors(model.n_states))):
        mask = decoding.states == k
        if not mask.any():
            continue
        fig.add_trace(go.Scatter(
            x=model.index[mask],
            y=values[mask],
            mode="markers",
            name=name,
            marker=dict(color=color, size=5),
        ))
    title = f"HMM Regime Detection: {model.series_name}" if model.series_name else "HMM Regime Detection"
    fig.update_layout(
        title=title,
        yaxis_title="Observation",
        xaxis_title="Time",
        template="plotly_white",
        height=400,
    )

    return {"html": _to_html(fig), "data": data}


def plot_regime_posteriors(
    model: "FittedRegimeModel",
    window: Optional[int] = None,
) -> Dict:
    """Series, stacked smoothed posteriors and posterior entropy.

    Parameters
    ----------
    model : FittedRegimeModel
        Trained model.
    window : int, optional
        Plot only the first ``window`` observations (default: at most 500).

    Returns
    -------
    dict
        Keys: 'html' (str), 'data' (dict).
    """
    T = model.n_obs
    window = min(500, T) if window is None else int(window)
    if window < 1:
        raise InputError(f"window must be >= 1, got {window}")
    window = min(window, T)

    decoding = model.smoothed()
    x = model.index[:window]
    values = model.observations.values[:window]
    posterior = model.posterior.iloc[:window]
    entropy = decoding.entropy.iloc[:window]

    data = {
        "dates": [str(d) for d in x],
        "values": values.tolist(),
        "dominant": decoding.labels.iloc[:window].tolist(),
        "posteriors": {name: posterior[name].tolist() for name in model.names},
        "entropy": entropy.tolist(),
        "max_entropy": float(np.log(model.n_states)),
        "window": window,
    }

    colors = _regime_colors(model.n_states)
    fig = make_subplots(
        rows=3, cols=1, shared_xaxes=True, vertical_spacing=0.06,
        subplot_titles=(
            "Series by Dominant Regime",
            "Smoothed Posterior Probabilities",
            "Posterior Entropy",
        ),
    )
    fig.add_trace(go.Scatter(
        x=x, y=values, mode="lines", name="Series",
        line=dict(color="black", width=1), showlegend=False,
    ), row=1, col=1)
    states = decoding.states[:window]
    for k, (name, color) in enumerate(zip(model.names, colors)):
        mask = states == k
        if mask.any():
            fig.add_trace(go.Scatter(
                x=x[mask], y=values[mask], mode="markers", name=name,
                marker=dict(color=color, size=4), legendgroup=name,
            ), row=1, col=1)
        fig.add_trace(go.Scatter(
            x=x, y=posterior[name].to_numpy(), mode="lines", name=name,
            stackgroup="posterior", line=dict(color=color, width=0.5),
            legendgroup=name, showlegend=False,
        ), row=2, col=1)
    fig.add_trace(go.Scatter(
        x=x, y=entropy.to_numpy(), mode="lines", name="Entropy",
        line=dict(color="#34495e", width=1.5), showlegend=False,
    ), row=3, col=1)
    fig.add_hline(
        y=data["max_entropy"], line_dash="dash", line_color="gray",
        annotation_text="ln K", row=3, col=1,
    )
    fig.update_yaxes(title_text="Observation", row=1, col=1)
    fig.update_yaxes(title_text="Probability", range=[0, 1], row=2, col=1)
    fig.update_yaxes(title_text="Entropy (nats)", row=3, col=1)
    fig.update_layout(template="plotly_white", height=800)

    return {"html": _to_html(fig), "data": data}


def plot_transition_matrix(model: "FittedRegimeModel") -> Dict:
    """Heatmap of the estimated transition matrix with cell values.

    Returns
    -------
    dict
        Keys: 'html' (str), 'data' (dict).
    """
    names = list(model.names)
    matrix = np.asarray(model.params.transition, dtype=np.float64)
    data = {"names": names, "matrix": matrix.tolist()}

    fig = go.Figure()
    fig.add_trace(go.Heatmap(
        z=matrix,
        x=names,
        y=names,
        zmin=0.0,
        zmax=1.0,
        colorscale="Viridis",
        text=[[f"{p:.2f}" for p in row] for row in matrix],
        texttemplate="%{text}",
    ))
    fig.update_layout(
        title="Transition Probability Matrix",
        xaxis_title="To",
        yaxis_title="From",
        yaxis=dict(autorange="reversed"),
        template="plotly_white",
        height=400,
    )

    return {"html": _to_html(fig), "data": data}


def plot_regime_statistics(
    model: "FittedRegimeModel",
    mode: Optional[Union[str, DecodingMode]] = None,
) -> Dict:
    """Four panels: per-regime histograms, mean ± std, average duration,
    observed transition frequencies.

    Parameters
    ----------
    model : FittedRegimeModel
        Trained model.
    mode : {"viterbi", "smoothed"}, optional
        Decoding the statistics are computed from.

    Returns
    -------
    dict
        Keys: 'html' (str), 'data' (dict).
    """
    decoding = model.decode(mode)
    names = list(model.names)
    y = model.observations.values
    stats = regime_statistics(y, decoding.states, names)
    observed = empirical_transition_matrix(decoding.states, names)

    data = {
        "names": names,
        "mode": decoding.mode.value,
        "returns_by_regime": {name: y[decoding.states == k].tolist() for k, name in enumerate(names)},
        "means": _json_floats(stats["mean"]),
        "stds": _json_floats(stats["std"]),
        "avg_duration": _json_floats(stats["avg_duration"]),
        "empirical_transitions": observed.to_numpy().tolist(),
    }

    colors = _regime_colors(model.n_states)
    fig = make_subplots(
        rows=2, cols=2,
        subplot_titles=(
            "Distribution by Regime",
            "Mean and Std Dev by Regime",
            "Average Regime Duration",
            "Observed Transitions",
        ),
    )
    for name, color in zip(names, colors):
        values = data["returns_by_regime"][name]
        if values:
            fig.add_trace(go.Histogram(
                x=values, nbinsx=20, name=name, marker_color=color,
                opacity=0.6, legendgroup=name,
            ), row=1, col=1)
    fig.add_trace(go.Bar(
        x=names,
        y=stats["mean"].to_numpy(),
        marker_color=colors,
        error_y=dict(type="data", array=stats["std"].fillna(0.0).to_numpy()),
        showlegend=False,
    ), row=1, col=2)
    fig.add_trace(go.Bar(
        x=names,
        y=stats["avg_duration"].to_numpy(),
        marker_color=colors,
        text=[f"{d:.1f}" if np.isfinite(d) else "" for d in stats["avg_duration"]],
        textposition="outside",
        showlegend=False,
    ), row=2, col=1)
    fig.add_trace(go.Heatmap(
        z=observed.to_numpy(),
        x=names,
        y=names,
        zmin=0.0,
        zmax=1.0,
        colorscale="Viridis",
        text=[[f"{p:.2f}" for p in row] for row in observed.to_numpy()],
        texttemplate="%{text}",
        showscale=False,
    ), row=2, col=2)
    fig.update_yaxes(autorange="reversed", row=2, col=2)
    fig.update_yaxes(title_text="Frequency", row=1, col=1)
    fig.update_yaxes(title_text="Mean", row=1, col=2)
    fig.update_yaxes(title_text="Time steps", row=2, col=1)
    fig.update_layout(barmode="overlay", template="plotly_white", height=700)

    logger.debug("Regime statistics chart built for %d regimes", len(names))
    return {"html": _to_html(fig), "data": data}
