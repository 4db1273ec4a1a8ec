"""
Plots for fitted paths and cross-validation results.

All functions accept either a path estimator (``ElasticNetPath``,
``CVElasticNetPath``, ``CVAElasticNetPath``) or the formula wrapper around
one. matplotlib is only imported when a plot is requested.
"""

from typing import Optional, Tuple

import numpy as np

XVARS = ('lambda', 'norm', 'dev')


def _pyplot():
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib is required for plotting. Install with: pip install matplotlib")
    return plt


def _unwrap(model):
    return getattr(model, 'model_', model)


def _axes(plt, ax, figsize, n=1):
    if ax is not None:
        return ax.figure, np.atleast_1d(ax)
    fig, axes = plt.subplots(1, n, figsize=figsize, squeeze=False)
    return fig, axes[0]


def plot_path(
    model,
    xvar: str = 'lambda',
    label: bool = False,
    ax=None,
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None,
):
    """
    Plot coefficient paths.

    Parameters
    ----------
    model : ElasticNetPath or GlmnetFormula
    xvar : {'lambda', 'norm', 'dev'}, default='lambda'
        x axis: log lambda, L1 norm of the coefficients, or fraction of
        deviance explained.
    label : bool, default=False
        Label each curve with its column name.
    ax : matplotlib Axes, optional
        Only for single-output families.
    figsize : tuple, default=(8, 6)
    save_path : str, optional

    Returns
    -------
    matplotlib.figure.Figure
    """
    if xvar not in XVARS:
        raise ValueError(f"xvar must be one of {XVARS}, got '{xvar}'")
    plt = _pyplot()
    path = _unwrap(model)
    coef_path = path.coef_path_  # (L, K, p)
    n_outputs = coef_path.shape[1]
    names = list(getattr(model, 'column_names_', None) or path.feature_names_in_)

    fig, axes = _axes(plt, ax, (figsize[0] * n_outputs, figsize[1]), n_outputs)
    outputs = path.classes_ if path.classes_ is not None and n_outputs > 1 else range(n_outputs)

    for k, (axk, output) in enumerate(zip(axes, outputs)):
        beta = coef_path[:, k, :]
        if xvar == 'lambda':
            x = np.log(path.lambda_)
            xlabel = 'Log Lambda'
        elif xvar == 'norm':
            x = np.abs(beta).sum(axis=1)
            xlabel = 'L1 Norm'
        else:
            x = path.dev_ratio_
            xlabel = 'Fraction Deviance Explained'

        active = np.flatnonzero(np.any(beta != 0, axis=0))
        colors = plt.cm.tab10(np.linspace(0, 1, max(len(active), 1)))
        for j, color in zip(active, colors):
            axk.plot(x, beta[:, j], color=color, linewidth=1.5)
            if label:
                axk.annotate(names[j], (x[-1], beta[-1, j]), fontsize=8)
        axk.axhline(y=0, color='gray', linestyle='--', alpha=0.5)
        axk.set_xlabel(xlabel)
        axk.set_ylabel('Coefficients')
        if n_outputs > 1:
            axk.set_title(f'Response: {output}')
        axk.grid(True, alpha=0.3)

    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig


def plot_cv(
    model,
    sign_lambda: int = 1,
    ax=None,
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None,
):
    """
    Plot the cross-validation curve with one-standard-error bars.

    Dashed vertical lines mark lambda.min and lambda.1se.

    Parameters
    ----------
    model : CVElasticNetPath or CVGlmnetFormula
    sign_lambda : {1, -1}, default=1
        Plot against ``sign_lambda * log(lambda)``.
    ax : matplotlib Axes, optional
    figsize : tuple, default=(8, 6)
    save_path : str, optional

    Returns
    -------
    matplotlib.figure.Figure
    """
    plt = _pyplot()
    cv = _unwrap(model)
    fig, axes = _axes(plt, ax, figsize)
    ax = axes[0]

    x = sign_lambda * np.log(cv.lambda_)
    ax.errorbar(x, cv.cvm_, yerr=cv.cvsd_, fmt='o', color='#e74c3c',
                ecolor='darkgray', markersize=4, capsize=2)
    ax.axvline(sign_lambda * np.log(cv.lambda_min_), color='gray', linestyle='--')
    ax.axvline(sign_lambda * np.log(cv.lambda_1se_), color='gray', linestyle='--')
    ax.set_xlabel('Log Lambda' if sign_lambda > 0 else '-Log Lambda')
    ax.set_ylabel(cv.name_)

    # number of nonzero coefficients along the top
    top = ax.secondary_xaxis('top')
    ticks = np.linspace(0, len(x) - 1, min(len(x), 8)).astype(int)
    top.set_xticks(x[ticks])
    top.set_xticklabels([str(int(cv.nzero_[i])) for i in ticks])
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig


def plot_cva(
    model,
    ax=None,
    legend: bool = True,
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None,
):
    """
    Plot the cross-validation curve of every alpha on one set of axes.

    Parameters
    ----------
    model : CVAElasticNetPath or CVAGlmnetFormula
    ax : matplotlib Axes, optional
    legend : bool, default=True
    figsize : tuple, default=(8, 6)
    save_path : str, optional

    Returns
    -------
    matplotlib.figure.Figure
    """
    plt = _pyplot()
    cva = _unwrap(model)
    fig, axes = _axes(plt, ax, figsize)
    ax = axes[0]

    colors = plt.cm.viridis(np.linspace(0, 1, len(cva.alpha_)))
    for alpha, cv, color in zip(cva.alpha_, cva.modlist_, colors):
        ax.plot(np.log(cv.lambda_), cv.cvm_, color=color, linewidth=1.5,
                label=f'alpha={alpha:.3g}')
    ax.set_xlabel('Log Lambda')
    ax.set_ylabel(cva.modlist_[0].name_)
    ax.grid(True, alpha=0.3)
    if legend:
        ax.legend(loc='center left', bbox_to_anchor=(1.02, 0.5), fontsize=8)

    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig


def minlossplot(
    model,
    cv_type: str = '1se',
    ax=None,
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None,
):
    """
    Plot the CV loss at lambda.1se (or lambda.min) against alpha.

    Parameters
    ----------
    model : CVAElasticNetPath or CVAGlmnetFormula
    cv_type : {'1se', 'min'}, default='1se'
    ax : matplotlib Axes, optional
    figsize : tuple, default=(8, 6)
    save_path : str, optional

    Returns
    -------
    matplotlib.figure.Figure
    """
    plt = _pyplot()
    cva = _unwrap(model)
    losses = cva.min_losses(cv_type)
    fig, axes = _axes(plt, ax, figsize)
    ax = axes[0]

    ax.plot(cva.alpha_, losses, 'o-', color='#3498db', linewidth=2)
    ax.set_xlabel('Alpha')
    ax.set_ylabel(f'CV loss at lambda.{cv_type}')
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig
